"""
Order State Machine

Owns the set of active (non-terminal) orders and every status change made to
them. Transitions are checked against a fixed table; terminal transitions
drop the order from tracking and from the trigger registry so no further
target can fire for it.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from signal_trader.constants import EXCHANGE_STATUS_MAP
from signal_trader.exceptions import InvalidTransitionError, OrderNotActiveError
from signal_trader.trading_engine.types import Order, OrderStatus

logger = logging.getLogger(__name__)

S = OrderStatus

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.PENDING: frozenset({
        S.PENDING, S.WAITING_TRIGGER, S.SCHEDULED, S.OPEN, S.EXECUTED, S.PARTIAL,
        S.FILLED, S.CANCELLING, S.CANCELLED, S.REJECTED, S.EXPIRED, S.UNKNOWN,
    }),
    S.WAITING_TRIGGER: frozenset({
        S.PENDING, S.OPEN, S.EXECUTED, S.PARTIAL, S.FILLED, S.CANCELLED,
        S.REJECTED, S.EXPIRED, S.UNKNOWN,
    }),
    S.SCHEDULED: frozenset({
        S.PENDING, S.OPEN, S.EXECUTED, S.CANCELLED, S.REJECTED, S.EXPIRED, S.UNKNOWN,
    }),
    S.PARTIAL: frozenset({
        S.PARTIAL, S.FILLED, S.CANCELLING, S.CANCELLED, S.EXPIRED, S.UNKNOWN,
        S.OPEN, S.EXECUTED,
    }),
    S.CANCELLING: frozenset({S.CANCELLED, S.FILLED, S.PARTIAL, S.UNKNOWN}),
    S.OPEN: frozenset({S.EXECUTED, S.CANCELLED, S.EXPIRED}),
    S.UNKNOWN: frozenset({
        S.PENDING, S.PARTIAL, S.FILLED, S.CANCELLING, S.CANCELLED, S.REJECTED,
        S.EXPIRED, S.UNKNOWN, S.OPEN, S.EXECUTED,
    }),
    # Terminal
    S.EXECUTED: frozenset(),
    S.FILLED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REJECTED: frozenset(),
    S.EXPIRED: frozenset(),
    S.ERROR: frozenset(),
}

# Statuses a queued execution may still act on
EXECUTABLE_STATUSES = frozenset({S.PENDING, S.WAITING_TRIGGER, S.SCHEDULED, S.PARTIAL, S.OPEN, S.UNKNOWN})


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class OrderStateMachine:
    """
    Tracks active orders and applies validated status transitions.

    Args:
        store: Persistence collaborator (update_order(order_id, patch))
        registry: TriggerRegistry; orders reaching a terminal status are removed from it
        on_status_change: Optional callback (order, previous_status) after each change
    """

    def __init__(self, store, registry, on_status_change: Optional[Callable[[Order, OrderStatus], Any]] = None):
        self._store = store
        self._registry = registry
        self._on_status_change = on_status_change
        self._active: Dict[str, Order] = {}

    # ========================================
    # TRACKING
    # ========================================

    def track(self, order: Order) -> None:
        if order.is_terminal:
            return
        self._active[order.id] = order

    def untrack(self, order_id: str) -> Optional[Order]:
        return self._active.pop(order_id, None)

    def get(self, order_id: str) -> Optional[Order]:
        return self._active.get(order_id)

    def active_orders(self) -> List[Order]:
        return list(self._active.values())

    def find_by_exchange_id(self, exchange_order_id: str) -> Optional[Order]:
        for order in self._active.values():
            if order.exchange_order_id is not None and str(order.exchange_order_id) == str(exchange_order_id):
                return order
        return None

    def clear(self) -> None:
        self._active.clear()

    # ========================================
    # TRANSITIONS
    # ========================================

    async def transition(self, order_id: str, status: OrderStatus, **changes) -> Order:
        """
        Move an active order to a new status and persist the change.
        Persistence failures are logged, never raised.

        Args:
            order_id: Active order id
            status: Requested status
            **changes: Additional Order fields to set in the same update

        Raises:
            OrderNotActiveError: order unknown or already terminal
            InvalidTransitionError: status change not allowed (order untouched)
        """
        order = self._active.get(order_id)
        if order is None:
            raise OrderNotActiveError(order_id)

        status = OrderStatus(status)
        if not can_transition(order.status, status):
            raise InvalidTransitionError(order_id, order.status.value, status.value)

        for key in changes:
            if not hasattr(order, key):
                raise ValueError(f"Unknown order field: {key}")

        previous = order.status
        now = datetime.utcnow()

        order.status = status
        for key, value in changes.items():
            setattr(order, key, value)
        order.updated_at = now

        patch = dict(changes)
        patch["status"] = status
        patch["updated_at"] = now
        if status == S.CANCELLED and order.cancelled_at is None:
            order.cancelled_at = now
            patch["cancelled_at"] = now

        if status.is_terminal:
            self._active.pop(order_id, None)
            self._registry.remove(order_id)

        if previous != status:
            logger.info(f"Order {order_id}: {previous.value} -> {status.value}")

        # Live order is authoritative; its row may already be trimmed from history
        try:
            await self._store.update_order(order_id, patch)
        except Exception as e:
            logger.error(f"Failed to persist {status.value} for order {order_id}: {e}", exc_info=True)

        self._notify(order, previous)
        return order

    def ensure_executable(self, order_id: str) -> Order:
        """
        Return the live order if an execution may still act on it.

        Raises:
            OrderNotActiveError: order unknown, terminal or being cancelled
        """
        order = self._active.get(order_id)
        if order is None:
            raise OrderNotActiveError(order_id)
        if order.status not in EXECUTABLE_STATUSES:
            raise OrderNotActiveError(order_id, order.status.value)
        return order

    async def mark_error(self, order: Order, reason: str) -> Order:
        """
        Put an order into the error status regardless of its current status.

        Never raises for persistence problems; those are logged.
        """
        previous = order.status
        now = datetime.utcnow()

        order.status = S.ERROR
        order.error_message = reason
        order.error_at = now
        order.updated_at = now

        self._active.pop(order.id, None)
        self._registry.remove(order.id)
        logger.error(f"Order {order.id} marked as error: {reason}")

        try:
            await self._store.update_order(order.id, {
                "status": S.ERROR,
                "error_message": reason,
                "error_at": now,
                "updated_at": now,
            })
        except Exception as e:
            logger.error(f"Failed to persist error status for order {order.id}: {e}", exc_info=True)

        self._notify(order, previous)
        return order

    async def apply_exchange_status(self, report: Dict[str, Any]) -> Optional[Order]:
        """
        Apply an exchange execution report to the matching active order.

        Report fields: i (exchange order id), X (status code), z (cumulative
        filled qty), L (last price), n (commission), N (commission asset).
        Unmapped status codes move the order to "unknown".

        Returns:
            The updated order, or None when no active order matches or the
            reported status cannot follow the current one
        """
        exchange_order_id = report.get("i")
        if exchange_order_id is None:
            return None

        order = self.find_by_exchange_id(exchange_order_id)
        if order is None:
            logger.debug(f"No active order for exchange order {exchange_order_id}")
            return None

        code = report.get("X")
        status = OrderStatus(EXCHANGE_STATUS_MAP.get(code, S.UNKNOWN.value))
        if status == S.UNKNOWN:
            logger.warning(f"Unmapped exchange status {code!r} for order {order.id}")

        if not can_transition(order.status, status):
            logger.debug(f"Ignoring exchange status {code} for order {order.id} in {order.status.value}")
            return None

        changes: Dict[str, Any] = {}
        executed_quantity = _to_float(report.get("z"))
        if executed_quantity is not None:
            changes["executed_quantity"] = executed_quantity
            changes["remaining_quantity"] = max(order.quantity - executed_quantity, 0.0)
        last_price = _to_float(report.get("L"))
        if last_price:
            changes["last_executed_price"] = last_price
        commission = _to_float(report.get("n"))
        if commission is not None:
            changes["commission"] = commission
        if report.get("N"):
            changes["commission_asset"] = report["N"]
        if status == S.FILLED and order.executed_at is None:
            changes["executed_at"] = datetime.utcnow()

        return await self.transition(order.id, status, **changes)

    def _notify(self, order: Order, previous: OrderStatus) -> None:
        if self._on_status_change is None:
            return
        try:
            self._on_status_change(order, previous)
        except Exception as e:
            logger.error(f"Status change listener failed for order {order.id}: {e}", exc_info=True)
