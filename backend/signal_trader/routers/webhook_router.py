"""
Webhook API routes

Handles signal intake and manual control of monitored orders:
- Inbound DI/ADX signals
- Manual trigger / trigger cancellation
- Real-time monitoring status
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from signal_trader.context import EngineContext
from signal_trader.routers.dependencies import get_engine
from signal_trader.routers.schemas import ManualTriggerRequest, MonitoringStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["webhook"])


@router.post("/webhook")
async def receive_webhook(
    payload: Dict[str, Any] = Body(...),
    engine: EngineContext = Depends(get_engine),
):
    """
    Process a trading signal.

    Required fields: symbol, plusDI, minusDI, adx, timeframe. Optional
    execution hints: executionMode, triggerPrice, triggerCondition,
    stopLoss, takeProfit, scheduledTime, quantity.
    """
    logger.info(f"Received signal: {payload}")
    return await engine.processor.process_signal(payload)


@router.post("/orders/{order_id}/trigger")
async def trigger_order(
    order_id: str,
    request: Optional[ManualTriggerRequest] = None,
    engine: EngineContext = Depends(get_engine),
):
    """Execute a waiting order now (forceTrigger executes any active order)"""
    force = request.force_trigger if request else False
    return await engine.processor.trigger_order(order_id, force=force)


@router.delete("/orders/{order_id}/trigger")
async def cancel_trigger_order(order_id: str, engine: EngineContext = Depends(get_engine)):
    """Stop monitoring an order and mark it cancelled"""
    return await engine.processor.cancel_trigger_order(order_id)


@router.get("/monitoring/status", response_model=MonitoringStatusResponse)
async def get_monitoring_status(engine: EngineContext = Depends(get_engine)):
    return engine.monitoring.get_monitoring_status()
