"""
Signal Processor

Webhook pipeline: validates an inbound signal, builds and persists the
order, then hands it to the monitoring service according to its execution
mode (immediate, trigger or scheduled).
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict

from signal_trader.constants import SYMBOL_TRADING_STATUS
from signal_trader.exceptions import NotFoundError, OrderNotActiveError, ValidationError
from signal_trader.services.exchange_service import ensure_connected
from signal_trader.trading_engine.order_factory import create_order, initial_status_for
from signal_trader.trading_engine.signal_validator import missing_signal_fields, validate_signal
from signal_trader.trading_engine.types import ExecutionMode, Order, OrderStatus, Signal, TargetKind

logger = logging.getLogger(__name__)


def order_summary(order: Order) -> Dict[str, Any]:
    summary = {
        "id": order.id,
        "symbol": order.symbol,
        "side": order.side.value,
        "quantity": order.quantity,
        "executionMode": order.execution_mode.value,
        "status": order.status.value,
        "priceEntry": order.price_entry,
        "tpPrice": order.tp_price,
        "slPrice": order.sl_price,
    }
    if order.error_message:
        summary["errorMessage"] = order.error_message
    return summary


class SignalProcessor:
    """
    Turns webhook signals into monitored orders.

    Args:
        exchange: ExchangeClient
        store: OrderStore
        monitoring: MonitoringService
        settings: Settings (thresholds, risk parameters, connection test values)
    """

    def __init__(self, exchange, store, monitoring, settings, sleep=asyncio.sleep):
        self.exchange = exchange
        self.store = store
        self.monitoring = monitoring
        self.settings = settings
        self._sleep = sleep

    async def _ensure_connection(self) -> None:
        await ensure_connected(
            self.exchange,
            attempts=self.settings.connection_test_attempts,
            delay=self.settings.connection_test_delay_seconds,
            sleep=self._sleep,
        )

    async def process_signal(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process a webhook signal end to end.

        Raises:
            ValidationError: missing fields, invalid signal or inconsistent hints
            ExchangeUnavailableError: no exchange connection

        Returns:
            {message, order, validation, currentPrice}. Execution failures
            still return normally with the order in status "error".
        """
        missing = missing_signal_fields(payload)
        if missing:
            raise ValidationError(f"Missing signal fields: {', '.join(missing)}")

        signal = Signal.from_payload(payload)
        logger.info(f"Received signal for {signal.symbol} ({signal.timeframe}): "
                    f"+DI {signal.plus_di}, -DI {signal.minus_di}, ADX {signal.adx}")

        await self._ensure_connection()

        validation = validate_signal(signal, self.settings)
        if not validation.valid:
            logger.info(f"Signal not valid: {validation.reason}")
            raise ValidationError(validation.reason)

        self._check_execution_hints(signal)

        current_price = await self.exchange.get_price(signal.symbol)
        order = create_order(signal, validation, current_price, self.settings)
        await self.store.add_order(order)
        logger.info(f"Order saved: {order.id} ({order.side.value} {order.quantity} {order.symbol})")

        await self._execute_by_mode(order, current_price)

        return {
            "message": "Signal processed successfully",
            "order": order_summary(order),
            "validation": validation.to_dict(),
            "currentPrice": current_price,
        }

    def _check_execution_hints(self, signal: Signal) -> None:
        if signal.execution_mode == ExecutionMode.TRIGGER and signal.trigger_price is None:
            raise ValidationError("Trigger price is required for trigger orders")
        if signal.execution_mode == ExecutionMode.SCHEDULED and signal.scheduled_time is None:
            raise ValidationError("Scheduled time is required for scheduled orders")

    async def _execute_by_mode(self, order: Order, current_price: float) -> Order:
        if order.execution_mode == ExecutionMode.TRIGGER:
            return await self._setup_trigger(order)
        if order.execution_mode == ExecutionMode.SCHEDULED:
            return await self._schedule(order, current_price)
        return await self._execute_immediate(order, current_price)

    async def _execute_immediate(self, order: Order, current_price: float) -> Order:
        can_trade, reason = await self._check_market_status(order.symbol)
        if not can_trade:
            if order.trigger_price is not None:
                logger.info(f"Market not suitable for immediate trading ({reason}), switching to trigger mode")
                return await self._setup_trigger(order)
            self.monitoring.state_machine.track(order)
            return await self.monitoring.state_machine.mark_error(order, f"Cannot execute immediately: {reason}")

        logger.info(f"Executing immediate order {order.id}")
        return await self.monitoring.execute_now(order, current_price)

    async def _setup_trigger(self, order: Order) -> Order:
        self.monitoring.state_machine.track(order)
        await self.monitoring.state_machine.transition(
            order.id,
            initial_status_for(ExecutionMode.TRIGGER),
            execution_mode=ExecutionMode.TRIGGER,
            waiting_trigger_since=datetime.utcnow(),
        )
        self.monitoring.add_order_to_monitoring(order)
        logger.info(f"Trigger order setup complete: {order.id} (trigger {order.trigger_price})")
        return order

    async def _schedule(self, order: Order, current_price: float) -> Order:
        if order.scheduled_time <= datetime.utcnow():
            logger.info(f"Scheduled time for order {order.id} is in the past, executing immediately")
            return await self.monitoring.execute_now(order, current_price)

        self.monitoring.state_machine.track(order)
        await self.monitoring.state_machine.transition(order.id, initial_status_for(ExecutionMode.SCHEDULED))
        self.monitoring.schedule_order(order)
        logger.info(f"Order {order.id} scheduled for execution at {order.scheduled_time.isoformat()}")
        return order

    async def _check_market_status(self, symbol: str):
        try:
            status = await self.exchange.get_symbol_status(symbol)
        except Exception as e:
            logger.error(f"Error checking market status for {symbol}: {e}")
            return False, "Unable to check market status"

        if status is None:
            return False, "Symbol not found"
        if status != SYMBOL_TRADING_STATUS:
            return False, "Market not trading"
        return True, "OK"

    # ========================================
    # MANUAL CONTROL
    # ========================================

    async def _load_order(self, order_id: str) -> Order:
        order = self.monitoring.state_machine.get(order_id)
        if order is not None:
            return order
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    async def trigger_order(self, order_id: str, force: bool = False) -> Dict[str, Any]:
        """
        Execute an order's entry now, bypassing its trigger condition.

        Raises:
            NotFoundError: unknown order
            ValidationError: order not waiting for a trigger (unless force)
            OrderNotActiveError: order already terminal
        """
        logger.info(f"Manual trigger requested for order {order_id}")
        await self._ensure_connection()

        order = await self._load_order(order_id)
        if order.status != OrderStatus.WAITING_TRIGGER and not force:
            raise ValidationError(f"Order is not waiting for trigger (status: {order.status.value})")
        if order.is_terminal:
            raise OrderNotActiveError(order_id, order.status.value)

        current_price = await self.exchange.get_price(order.symbol)
        self.monitoring.registry.remove_target(order.id, TargetKind.TRIGGER)
        self.monitoring.scheduler.cancel(order.id)
        await self.monitoring.execute_now(order, current_price)

        return {
            "message": "Order triggered successfully",
            "orderId": order_id,
            "currentPrice": current_price,
            "status": order.status.value,
        }

    async def cancel_trigger_order(self, order_id: str) -> Dict[str, Any]:
        """
        Stop monitoring an order and mark it cancelled.

        Raises:
            NotFoundError: unknown order
            OrderNotActiveError: order already terminal
        """
        logger.info(f"Cancel trigger requested for order {order_id}")
        order = await self._load_order(order_id)
        if order.is_terminal:
            raise OrderNotActiveError(order_id, order.status.value)

        self.monitoring.cancel_order_monitoring(order_id)

        if self.monitoring.state_machine.get(order_id) is None:
            self.monitoring.state_machine.track(order)
        await self.monitoring.state_machine.transition(
            order_id,
            OrderStatus.CANCELLED,
        )

        return {"message": "Trigger order cancelled successfully", "orderId": order_id}
