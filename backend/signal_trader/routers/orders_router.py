"""
Order history API routes
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from signal_trader.context import EngineContext
from signal_trader.exceptions import NotFoundError, ValidationError
from signal_trader.routers.dependencies import get_engine
from signal_trader.routers.schemas import OrderListResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("", response_model=OrderListResponse)
async def get_orders(
    status: Optional[str] = Query(None, description="Comma-separated statuses to include"),
    limit: int = Query(100, ge=1, le=1000),
    engine: EngineContext = Depends(get_engine),
):
    """Stored orders, newest first"""
    statuses = [s.strip() for s in status.split(",") if s.strip()] if status else None
    orders = await engine.store.get_all_orders(statuses=statuses)
    orders = orders[:limit]
    return {"orders": [o.to_dict() for o in orders], "count": len(orders)}


@router.get("/{order_id}")
async def get_order(order_id: str, engine: EngineContext = Depends(get_engine)):
    order = engine.monitoring.state_machine.get(order_id) or await engine.store.get_order(order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order.to_dict()


@router.delete("")
async def clear_orders(engine: EngineContext = Depends(get_engine)):
    """Delete the order history. Monitoring must be stopped first."""
    if engine.monitoring.is_active:
        raise ValidationError("Stop real-time monitoring before clearing orders")
    cleared = await engine.store.clear()
    return {"message": "All orders cleared", "count": cleared}
