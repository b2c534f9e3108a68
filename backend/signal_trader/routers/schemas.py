"""Request / response schemas for the API routers"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ManualTriggerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    force_trigger: bool = Field(False, alias="forceTrigger")


class PaperPriceUpdate(BaseModel):
    symbol: str
    price: float = Field(..., gt=0)


class OrderListResponse(BaseModel):
    orders: List[Dict[str, Any]]
    count: int


class MonitoringStatusResponse(BaseModel):
    isActive: bool
    pendingOrdersCount: int
    monitoredSymbols: List[str]
    priceTargetsCount: int
    stopLossTargetsCount: int
    queueLength: int
    processingQueue: bool
    scheduledOrdersCount: int = 0
    connection: Optional[Dict[str, Any]] = None


class TradingConfigUpdate(BaseModel):
    symbol: Optional[str] = None
    timeframe: Optional[str] = None
    plus_di_threshold: Optional[float] = None
    minus_di_threshold: Optional[float] = None
    adx_minimum: Optional[float] = None
    take_profit_percent: Optional[float] = Field(None, gt=0)
    stop_loss_percent: Optional[float] = Field(None, gt=0)
    leverage: Optional[int] = Field(None, ge=1)
    order_quantity: Optional[float] = Field(None, gt=0)
    order_type: Optional[str] = None
    max_slippage: Optional[float] = Field(None, ge=0)
    order_timeout_minutes: Optional[int] = Field(None, ge=1)

    @field_validator("order_type")
    @classmethod
    def validate_order_type(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.upper()
        if v not in ("MARKET", "LIMIT"):
            raise ValueError("order_type must be MARKET or LIMIT")
        return v
