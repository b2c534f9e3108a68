"""
Real-time Order Monitoring Service

Owns the trigger engine for one exchange connection:
- PriceFeedRouter streams prices for every symbol an order depends on
- TriggerRegistry turns ticks into execution tasks (at most once per target)
- ExecutionQueue places orders one at a time
- OrderStateMachine applies the results
- ReconnectionSupervisor recovers the connection when a stream drops
- Scheduler fires scheduled entries

Entry executions (trigger, immediate, scheduled, manual) and protective
exits (stop-loss, take-profit) all go through the same queue.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from signal_trader.constants import RESUMABLE_STATUSES
from signal_trader.exceptions import OrderNotActiveError
from signal_trader.price_feeds.base import PriceTick
from signal_trader.price_feeds.reconnection import ReconnectionSupervisor
from signal_trader.price_feeds.router import PriceFeedRouter
from signal_trader.services.event_bus import EventBus
from signal_trader.services.exchange_service import connect_with_retry
from signal_trader.trading_engine.execution_queue import ExecutionQueue
from signal_trader.trading_engine.scheduler import Scheduler
from signal_trader.trading_engine.state_machine import OrderStateMachine
from signal_trader.trading_engine.trigger_registry import TriggerRegistry
from signal_trader.trading_engine.types import (
    ExecutionTask,
    Order,
    OrderStatus,
    PriceTarget,
    TargetKind,
    TriggerCondition,
)

logger = logging.getLogger(__name__)

ENTRY_KINDS = (TargetKind.TRIGGER, TargetKind.ENTRY)


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def entry_task(order: Order, price: Optional[float], observed_at: Optional[datetime] = None) -> ExecutionTask:
    """Execution task for an order's entry outside of a price trigger"""
    return ExecutionTask(
        order=order.snapshot(),
        target=PriceTarget(
            order_id=order.id,
            symbol=order.symbol,
            target_price=price or 0.0,
            condition=TriggerCondition.ABOVE,
            kind=TargetKind.ENTRY,
        ),
        observed_price=price,
        observed_at=observed_at or datetime.utcnow(),
    )


def build_exchange_request(task: ExecutionTask) -> Dict[str, Any]:
    """
    Exchange order request for a task.

    Entry: the order's own side / type / quantity, priced at the order price
    or the observed price for LIMIT orders. Stop-loss: opposite side at
    MARKET. Take-profit: opposite side LIMIT at the observed price, GTC.
    """
    order = task.order

    if task.kind in ENTRY_KINDS:
        request = {
            "symbol": order.symbol,
            "side": order.side.value,
            "type": order.type,
            "quantity": order.quantity,
        }
        if order.type == "LIMIT":
            request["price"] = order.price if order.price is not None else task.observed_price
            request["timeInForce"] = order.time_in_force
        return request

    if task.kind == TargetKind.STOP_LOSS:
        return {
            "symbol": order.symbol,
            "side": order.side.opposite.value,
            "type": "MARKET",
            "quantity": order.quantity,
        }

    if task.kind == TargetKind.TAKE_PROFIT:
        return {
            "symbol": order.symbol,
            "side": order.side.opposite.value,
            "type": "LIMIT",
            "quantity": order.quantity,
            "price": task.observed_price,
            "timeInForce": "GTC",
        }

    raise ValueError(f"Unknown target kind: {task.kind}")


class MonitoringService:
    """
    Facade over the real-time trigger engine.

    Args:
        exchange: ExchangeClient
        store: OrderStore
        events: EventBus receiving engine events
        settings: Settings (pacing, reconnection and connection test values)
        scheduler: Optional Scheduler (tests inject one with a fake clock)
        shutdown_manager: Optional ShutdownManager tracking executions
        sleep: Sleep coroutine used by the queue pacing and reconnection backoff
    """

    def __init__(
        self,
        exchange,
        store,
        events: EventBus,
        settings,
        scheduler: Optional[Scheduler] = None,
        shutdown_manager=None,
        sleep=asyncio.sleep,
    ):
        self.exchange = exchange
        self.store = store
        self.events = events
        self.settings = settings
        self.shutdown_manager = shutdown_manager
        self._sleep = sleep

        self.router = PriceFeedRouter(
            exchange,
            on_tick=self.handle_price_update,
            on_stream_error=self._on_stream_error,
        )
        self.queue = ExecutionQueue(
            executor=self._execute_task,
            pacing_seconds=settings.queue_pacing_seconds,
            on_error=self._on_execution_error,
            shutdown_manager=shutdown_manager,
            sleep=sleep,
        )
        self.registry = TriggerRegistry(
            subscribe=self.router.subscribe,
            release=self.router.release,
            dispatch=self.queue.enqueue,
        )
        self.state_machine = OrderStateMachine(store, self.registry, on_status_change=self._on_status_change)
        self.supervisor = ReconnectionSupervisor(
            connect=self._reconnect,
            resubscribe=self.resume_monitoring,
            emit=self.events.emit,
            base_delay=settings.reconnect_base_delay_seconds,
            max_attempts=settings.max_reconnect_attempts,
            sleep=sleep,
        )
        self.scheduler = scheduler if scheduler is not None else Scheduler()

        self.is_active = False
        self._order_updates_task: Optional[asyncio.Task] = None

    # ========================================
    # LIFECYCLE
    # ========================================

    async def initialize(self) -> None:
        """
        Connect, reload persisted non-terminal orders and start monitoring.

        Raises:
            ExchangeConnectionError: the exchange could not be reached
        """
        if self.is_active:
            logger.info("Real-time monitoring already active")
            return

        logger.info("Initializing real-time order monitoring...")
        if self.shutdown_manager is not None:
            self.shutdown_manager.cancel_shutdown()

        await connect_with_retry(
            self.exchange,
            attempts=self.settings.connection_test_attempts,
            delay=self.settings.connection_test_delay_seconds,
            sleep=self._sleep,
        )
        self.supervisor.mark_connected()
        self.events.emit("connected", {"paperTrading": getattr(self.settings, "paper_trading", False)})

        self.is_active = True
        loaded = await self._load_resumable_orders()
        self.scheduler.start()
        self._start_order_updates()

        logger.info(f"Real-time monitoring initialized ({loaded} orders resumed)")
        self.events.emit("initialized", {"resumedOrders": loaded})

    async def _load_resumable_orders(self) -> int:
        try:
            orders = await self.store.get_all_orders(statuses=RESUMABLE_STATUSES)
        except Exception as e:
            logger.error(f"Error loading pending orders: {e}", exc_info=True)
            return 0

        for order in orders:
            if order.status == OrderStatus.SCHEDULED:
                self.state_machine.track(order)
                self.schedule_order(order)
            elif order.status == OrderStatus.OPEN:
                self.add_order_to_monitoring(order, include_trigger=False)
            else:
                self.add_order_to_monitoring(order)

        logger.info(f"Loaded {len(orders)} pending orders for monitoring")
        return len(orders)

    def _start_order_updates(self) -> None:
        stream = self.exchange.order_updates()
        if stream is None:
            return
        self._order_updates_task = asyncio.create_task(self._consume_order_updates(stream))

    async def _consume_order_updates(self, stream):
        try:
            async for report in stream:
                await self.handle_order_update(report)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Order update stream failed: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop monitoring. Persisted orders keep their status for the next start."""
        logger.info("Stopping real-time order monitoring...")
        self.is_active = False

        await self.supervisor.stop()
        await self.scheduler.stop()
        self.scheduler.clear()
        await self.queue.stop()

        self.registry.clear()
        self.state_machine.clear()
        await self.router.close()

        if self._order_updates_task is not None:
            self._order_updates_task.cancel()
            try:
                await self._order_updates_task
            except asyncio.CancelledError:
                pass
            self._order_updates_task = None

        logger.info("Real-time order monitoring stopped")
        self.events.emit("stopped", {})

    # ========================================
    # ORDER MONITORING
    # ========================================

    def add_order_to_monitoring(self, order: Order, include_trigger: bool = True) -> List[PriceTarget]:
        """Track an order and arm its price targets"""
        self.state_machine.track(order)
        targets = self.registry.add_order(order, include_trigger=include_trigger)
        self.events.emit("orderAddedToMonitoring", {
            "orderId": order.id,
            "symbol": order.symbol,
            "targets": [t.to_dict() for t in targets],
        })
        return targets

    def cancel_order_monitoring(self, order_id: str) -> bool:
        """
        Drop an order's price targets and scheduled entry.

        Tasks already queued for the order are not withdrawn.

        Returns:
            True if anything was being monitored for the order
        """
        removed = self.registry.remove(order_id)
        unscheduled = self.scheduler.cancel(order_id)
        if not (removed or unscheduled):
            logger.info(f"Order {order_id} not found in monitoring")
            return False

        logger.info(f"Cancelled monitoring for order {order_id}")
        self.events.emit("orderMonitoringCancelled", {"orderId": order_id})
        return True

    def schedule_order(self, order: Order) -> float:
        """
        Schedule an order's entry for its scheduled_time.

        Returns:
            Delay in seconds (computed once, here)
        """
        delay = (order.scheduled_time - datetime.utcnow()).total_seconds()
        order_id = order.id
        self.scheduler.schedule(order_id, delay, lambda: self._run_scheduled(order_id))
        return delay

    async def _run_scheduled(self, order_id: str) -> None:
        order = self.state_machine.get(order_id)
        if order is None:
            logger.info(f"Scheduled order {order_id} is no longer active")
            return

        logger.info(f"Executing scheduled order {order_id}")
        try:
            if not self.exchange.is_connected:
                await connect_with_retry(
                    self.exchange,
                    attempts=self.settings.connection_test_attempts,
                    delay=self.settings.connection_test_delay_seconds,
                    sleep=self._sleep,
                )
            price = await self.exchange.get_price(order.symbol)
        except Exception as e:
            logger.error(f"Error executing scheduled order {order_id}: {e}")
            await self.state_machine.mark_error(order, str(e))
            return

        await self.execute_now(order, price)

    async def execute_now(self, order: Order, price: Optional[float]) -> Order:
        """
        Queue an order's entry and wait for the execution to finish.

        Returns:
            The order after execution (status open, executed or error)
        """
        self.state_machine.track(order)
        future = self.queue.enqueue(entry_task(order, price))
        try:
            await asyncio.shield(future)
        except asyncio.CancelledError:
            if not future.cancelled():
                raise
            logger.warning(f"Execution of order {order.id} was dropped from the queue before it ran")
        except Exception as e:
            if not order.is_terminal:
                await self.state_machine.mark_error(order, str(e))
        return order

    # ========================================
    # EVENT HANDLERS
    # ========================================

    def handle_price_update(self, tick: PriceTick) -> List[ExecutionTask]:
        """Check a tick against the registry; matching targets are queued"""
        tasks = []
        if self.is_active:
            tasks = self.registry.check(tick.symbol, tick.price, tick.timestamp)
        self.events.emit("priceUpdate", tick.to_dict())
        return tasks

    async def handle_order_update(self, report: Dict[str, Any]) -> Optional[Order]:
        """Apply an exchange execution report to the matching order"""
        logger.info(f"Exchange order update: {report.get('i')} - {report.get('X')}")
        try:
            return await self.state_machine.apply_exchange_status(report)
        except Exception as e:
            logger.error(f"Error handling order update: {e}", exc_info=True)
            return None

    def resume_monitoring(self) -> List[str]:
        """Reopen price streams for every monitored symbol"""
        reopened = self.router.resubscribe_all()
        logger.info("Order monitoring resumed")
        self.events.emit("monitoringResumed", {"symbols": reopened})
        return reopened

    def _on_stream_error(self, symbol: str, error: Optional[Exception]) -> None:
        reason = str(error) if error else f"{symbol} price stream closed"
        self.events.emit("streamError", {"symbol": symbol, "error": reason})
        if self.is_active:
            self.supervisor.notify_disconnected(reason)

    async def _reconnect(self) -> None:
        await self.exchange.connect()
        await self.exchange.test_connection()

    def _on_status_change(self, order: Order, previous: OrderStatus) -> None:
        self.events.emit("orderStatusChanged", {
            "orderId": order.id,
            "previousStatus": previous.value,
            "status": order.status.value,
        })

    def _on_execution_error(self, task: ExecutionTask, error: Exception) -> None:
        self.events.emit("orderExecutionError", {
            "order": task.order.to_dict(),
            "error": str(error),
            "triggerPrice": task.observed_price,
            "orderType": task.kind.value,
        })

    # ========================================
    # EXECUTION
    # ========================================

    async def _execute_task(self, task: ExecutionTask) -> Optional[Order]:
        """
        Execute one queued task against the exchange.

        Returns:
            The updated order, or None when the task no longer applies
        """
        try:
            order = self.state_machine.ensure_executable(task.order_id)
        except OrderNotActiveError as e:
            logger.info(f"Skipping {task.kind.value} execution: {e.message}")
            return None

        is_entry = task.kind in ENTRY_KINDS
        if is_entry and order.status == OrderStatus.OPEN:
            logger.info(f"Skipping entry for order {order.id}: already executed")
            return None
        if not is_entry and order.status != OrderStatus.OPEN:
            logger.info(f"Skipping {task.kind.value} for order {order.id}: entry not executed ({order.status.value})")
            return None

        request = build_exchange_request(task)
        logger.info(f"Executing {task.kind.value} for order {order.id}: {request}")

        try:
            result = await self.exchange.place_order(request)
        except Exception as e:
            logger.error(f"Error executing order {order.id}: {e}")
            await self.state_machine.mark_error(order, str(e))
            self.events.emit("orderExecutionError", {
                "order": order.to_dict(),
                "error": str(e),
                "triggerPrice": task.observed_price,
                "orderType": task.kind.value,
            })
            return order

        protective = order.stop_loss is not None or order.take_profit is not None
        status = OrderStatus.OPEN if is_entry and protective else OrderStatus.EXECUTED

        await self.state_machine.transition(
            order.id,
            status,
            exchange_order_id=str(result.get("orderId")) if result.get("orderId") is not None else None,
            executed_price=_to_float(result.get("price")) or task.observed_price,
            executed_quantity=_to_float(result.get("executedQty")),
            executed_at=task.observed_at,
            executed_target=task.kind,
        )

        if status == OrderStatus.OPEN:
            self.registry.add_order(order, include_trigger=False)

        logger.info(f"Order {order.id} executed ({task.kind.value}) - now {status.value}")
        self.events.emit("orderExecuted", {
            "order": order.to_dict(),
            "exchangeOrder": result,
            "triggerPrice": task.observed_price,
            "orderType": task.kind.value,
        })
        return order

    # ========================================
    # STATUS
    # ========================================

    def get_monitoring_status(self) -> Dict[str, Any]:
        return {
            "isActive": self.is_active,
            "pendingOrdersCount": self.registry.monitored_orders_count,
            "monitoredSymbols": self.router.monitored_symbols,
            "priceTargetsCount": self.registry.price_targets_count,
            "stopLossTargetsCount": self.registry.stop_loss_targets_count,
            "queueLength": self.queue.length,
            "processingQueue": self.queue.processing,
            "scheduledOrdersCount": len(self.scheduler),
            "connection": self.supervisor.get_status(),
        }
