"""
Trigger Registry

Holds the price targets (entry trigger, stop-loss, take-profit) of every
monitored order, grouped by symbol. Each tick is checked against the
symbol's targets; a matching target is removed before its execution task is
dispatched, so a target fires at most once.

All methods are synchronous. Callers run them on the event loop without
awaiting in between, which keeps registry updates and subscription counts
consistent with each other.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from signal_trader.constants import EQUAL_CONDITION_TOLERANCE
from signal_trader.trading_engine.types import (
    ExecutionTask,
    Order,
    OrderSide,
    PriceTarget,
    TargetKind,
    TriggerCondition,
)

logger = logging.getLogger(__name__)

# Entry triggers and take-profits are evaluated before stop-losses
_FIRING_ORDER = {TargetKind.TRIGGER: 0, TargetKind.TAKE_PROFIT: 1, TargetKind.STOP_LOSS: 2}


def condition_met(condition: TriggerCondition, price: float, target_price: float) -> bool:
    """
    Evaluate a target condition against an observed price.

    above: price >= target, below: price <= target,
    equal: |price - target| < target * 0.1%
    """
    if condition == TriggerCondition.ABOVE:
        return price >= target_price
    if condition == TriggerCondition.BELOW:
        return price <= target_price
    if condition == TriggerCondition.EQUAL:
        return abs(price - target_price) < target_price * EQUAL_CONDITION_TOLERANCE
    return False


def build_targets(order: Order, include_trigger: bool = True) -> List[PriceTarget]:
    """Derive the price targets an order needs watched"""
    targets = []

    if include_trigger and order.trigger_price is not None:
        targets.append(PriceTarget(
            order_id=order.id,
            symbol=order.symbol,
            target_price=order.trigger_price,
            condition=order.trigger_condition or TriggerCondition.ABOVE,
            kind=TargetKind.TRIGGER,
        ))

    is_buy = order.side == OrderSide.BUY

    if order.stop_loss is not None:
        targets.append(PriceTarget(
            order_id=order.id,
            symbol=order.symbol,
            target_price=order.stop_loss,
            condition=TriggerCondition.BELOW if is_buy else TriggerCondition.ABOVE,
            kind=TargetKind.STOP_LOSS,
        ))

    if order.take_profit is not None:
        targets.append(PriceTarget(
            order_id=order.id,
            symbol=order.symbol,
            target_price=order.take_profit,
            condition=TriggerCondition.ABOVE if is_buy else TriggerCondition.BELOW,
            kind=TargetKind.TAKE_PROFIT,
        ))

    return targets


class TriggerRegistry:
    """
    Symbol-indexed price targets of monitored orders.

    Args:
        subscribe: Called with a symbol when an order starts depending on it
        release: Called with a symbol when an order stops depending on it
        dispatch: Receives each ExecutionTask produced by a firing target
    """

    def __init__(
        self,
        subscribe: Callable[[str], None],
        release: Callable[[str], None],
        dispatch: Callable[[ExecutionTask], object],
    ):
        self._subscribe = subscribe
        self._release = release
        self._dispatch = dispatch

        # symbol -> key -> target
        self._targets: Dict[str, Dict[tuple, PriceTarget]] = {}
        # order_id -> order being monitored
        self._orders: Dict[str, Order] = {}

    # ========================================
    # REGISTRATION
    # ========================================

    def add_order(self, order: Order, include_trigger: bool = True) -> List[PriceTarget]:
        """
        Start monitoring an order.

        Re-adding a monitored order replaces its targets; the symbol
        subscription is only requested the first time.

        Args:
            order: Live order (the registry keeps the reference)
            include_trigger: False for orders whose entry already executed,
                so only the protective stop-loss / take-profit are armed

        Returns:
            The targets now registered for the order
        """
        already_monitored = order.id in self._orders
        if already_monitored:
            self._drop_targets(order.id, order.symbol)

        self._orders[order.id] = order
        targets = build_targets(order, include_trigger=include_trigger)
        symbol_targets = self._targets.setdefault(order.symbol, {})
        for target in targets:
            symbol_targets[target.key] = target

        if not already_monitored:
            self._subscribe(order.symbol)

        logger.info(
            f"Monitoring order {order.id} on {order.symbol}: "
            f"{', '.join(t.kind.value for t in targets) or 'no targets'}"
        )
        return targets

    def remove(self, order_id: str) -> bool:
        """
        Stop monitoring an order, dropping all of its targets and releasing
        its symbol subscription. Safe to call for unknown orders.

        Returns:
            True if the order was being monitored
        """
        order = self._orders.pop(order_id, None)
        if order is None:
            return False

        self._drop_targets(order_id, order.symbol)
        self._release(order.symbol)
        logger.info(f"Stopped monitoring order {order_id}")
        return True

    def remove_target(self, order_id: str, kind: TargetKind) -> bool:
        order = self._orders.get(order_id)
        if order is None:
            return False
        symbol_targets = self._targets.get(order.symbol, {})
        removed = symbol_targets.pop((order.symbol, order_id, kind), None)
        if not symbol_targets:
            self._targets.pop(order.symbol, None)
        return removed is not None

    def _drop_targets(self, order_id: str, symbol: str) -> None:
        symbol_targets = self._targets.get(symbol)
        if not symbol_targets:
            return
        for key in [k for k, t in symbol_targets.items() if t.order_id == order_id]:
            del symbol_targets[key]
        if not symbol_targets:
            del self._targets[symbol]

    # ========================================
    # EVALUATION
    # ========================================

    def check(self, symbol: str, price: float, observed_at: Optional[datetime] = None) -> List[ExecutionTask]:
        """
        Evaluate every target on a symbol against an observed price.

        Matching targets are removed, then one ExecutionTask per hit is handed
        to the dispatch callable. Every target that matches on this tick
        fires, each independently.

        Returns:
            The dispatched tasks, in evaluation order
        """
        symbol_targets = self._targets.get(symbol)
        if not symbol_targets:
            return []

        observed_at = observed_at or datetime.utcnow()
        hits = sorted(
            (t for t in symbol_targets.values() if condition_met(t.condition, price, t.target_price)),
            key=lambda t: _FIRING_ORDER.get(t.kind, len(_FIRING_ORDER)),
        )
        if not hits:
            return []

        # Remove before dispatch: a second tick can no longer see these targets
        for target in hits:
            del symbol_targets[target.key]
        if not symbol_targets:
            del self._targets[symbol]

        tasks = []
        for target in hits:
            order = self._orders.get(target.order_id)
            if order is None:
                continue
            task = ExecutionTask(
                order=order.snapshot(),
                target=target,
                observed_price=price,
                observed_at=observed_at,
            )
            logger.info(
                f"{target.kind.value} target hit for order {target.order_id} on {symbol}: "
                f"price {price} {target.condition.value} {target.target_price}"
            )
            self._dispatch(task)
            tasks.append(task)
        return tasks

    # ========================================
    # QUERIES
    # ========================================

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def is_monitored(self, order_id: str) -> bool:
        return order_id in self._orders

    def targets_for(self, order_id: str) -> List[PriceTarget]:
        order = self._orders.get(order_id)
        if order is None:
            return []
        return [t for t in self._targets.get(order.symbol, {}).values() if t.order_id == order_id]

    def all_targets(self) -> List[PriceTarget]:
        return [t for targets in self._targets.values() for t in targets.values()]

    @property
    def monitored_orders_count(self) -> int:
        return len(self._orders)

    @property
    def price_targets_count(self) -> int:
        """Entry trigger and take-profit targets"""
        return sum(1 for t in self.all_targets() if t.kind in (TargetKind.TRIGGER, TargetKind.TAKE_PROFIT))

    @property
    def stop_loss_targets_count(self) -> int:
        return sum(1 for t in self.all_targets() if t.kind == TargetKind.STOP_LOSS)

    def clear(self) -> None:
        """Drop every order, releasing one subscription per order"""
        for order_id in list(self._orders):
            self.remove(order_id)
