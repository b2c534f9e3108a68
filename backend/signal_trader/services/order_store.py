"""
Order Store

Persists orders through the SQLAlchemy async session maker. Order history
is bounded: after each insert only the newest max_orders rows are kept.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from signal_trader.exceptions import NotFoundError
from signal_trader.models import OrderRecord
from signal_trader.trading_engine.types import Order

logger = logging.getLogger(__name__)

_COLUMNS = frozenset(c.name for c in OrderRecord.__table__.columns)


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def order_to_record(order: Order) -> OrderRecord:
    data = order.to_dict()
    return OrderRecord(**{k: v for k, v in data.items() if k in _COLUMNS})


def record_to_order(record: OrderRecord) -> Order:
    return Order.from_dict({name: getattr(record, name) for name in _COLUMNS})


class OrderStore:
    """
    Order persistence collaborator.

    Args:
        session_maker: async_sessionmaker bound to the application engine
        max_orders: Rows kept in history (newest first)
    """

    def __init__(self, session_maker: async_sessionmaker, max_orders: int = 100):
        self._session_maker = session_maker
        self.max_orders = max_orders

    async def get_all_orders(self, statuses: Optional[List[str]] = None) -> List[Order]:
        """All stored orders, newest first, optionally filtered by status"""
        async with self._session_maker() as db:
            query = select(OrderRecord).order_by(OrderRecord.created_at.desc())
            if statuses:
                query = query.where(OrderRecord.status.in_(statuses))
            result = await db.execute(query)
            return [record_to_order(r) for r in result.scalars().all()]

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._session_maker() as db:
            record = await db.get(OrderRecord, order_id)
            return record_to_order(record) if record else None

    async def add_order(self, order: Order) -> Order:
        """Insert an order, then trim history to max_orders"""
        async with self._session_maker() as db:
            db.add(order_to_record(order))
            await db.flush()

            overflow = await db.execute(
                select(OrderRecord.id)
                .order_by(OrderRecord.created_at.desc())
                .offset(self.max_orders)
            )
            stale_ids = list(overflow.scalars().all())
            if stale_ids:
                await db.execute(delete(OrderRecord).where(OrderRecord.id.in_(stale_ids)))
                logger.info(f"Trimmed {len(stale_ids)} orders from history (max {self.max_orders})")

            await db.commit()
        return order

    async def update_order(self, order_id: str, patch: Dict[str, Any]) -> Order:
        """
        Apply a partial update to a stored order.

        Raises:
            NotFoundError: no stored order with that id
            ValueError: patch names a field that is not persisted
        """
        unknown = set(patch) - _COLUMNS
        if unknown:
            raise ValueError(f"Unknown order fields: {', '.join(sorted(unknown))}")

        async with self._session_maker() as db:
            record = await db.get(OrderRecord, order_id)
            if record is None:
                raise NotFoundError(f"Order {order_id} not found")

            for key, value in patch.items():
                setattr(record, key, _column_value(value))
            if "updated_at" not in patch:
                record.updated_at = datetime.utcnow()

            await db.commit()
            return record_to_order(record)

    async def clear(self) -> int:
        async with self._session_maker() as db:
            result = await db.execute(delete(OrderRecord))
            await db.commit()
            logger.info(f"Cleared {result.rowcount} orders")
            return result.rowcount
