"""
Tests for backend/signal_trader/trading_engine/signal_processor.py

End-to-end signal handling on the paper exchange: validation, order
creation, execution modes and manual trigger control.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from signal_trader.exceptions import NotFoundError, OrderNotActiveError, ValidationError
from signal_trader.trading_engine.types import ExecutionMode, OrderStatus, TargetKind


def _iso(delta: timedelta) -> str:
    return (datetime.utcnow() + delta).isoformat()


class TestProcessSignalValidation:
    """Tests for rejected signals."""

    @pytest.mark.asyncio
    async def test_missing_fields(self, engine):
        """Failure case: missing indicator values are listed in the error."""
        with pytest.raises(ValidationError, match="Missing signal fields: plusDI, adx"):
            await engine.processor.process_signal({"symbol": "BTCUSDT", "minusDI": 10, "timeframe": "5m"})

    @pytest.mark.asyncio
    async def test_invalid_signal_creates_no_order(self, engine, signal_payload, paper_exchange):
        """Failure case: ADX below minimum is rejected before any state change."""
        with pytest.raises(ValidationError, match="ADX below minimum"):
            await engine.processor.process_signal(signal_payload(adx=5))

        assert await engine.store.get_all_orders() == []
        assert paper_exchange.orders == []

    @pytest.mark.asyncio
    async def test_no_clear_signal(self, engine, signal_payload):
        with pytest.raises(ValidationError, match="No clear signal"):
            await engine.processor.process_signal(signal_payload(plusDI=22, minusDI=21))

    @pytest.mark.asyncio
    async def test_trigger_mode_requires_price(self, engine, signal_payload):
        with pytest.raises(ValidationError, match="Trigger price is required"):
            await engine.processor.process_signal(signal_payload(executionMode="trigger"))

    @pytest.mark.asyncio
    async def test_scheduled_mode_requires_time(self, engine, signal_payload):
        with pytest.raises(ValidationError, match="Scheduled time is required"):
            await engine.processor.process_signal(signal_payload(executionMode="scheduled"))


class TestImmediateMode:
    """Tests for immediate execution."""

    @pytest.mark.asyncio
    async def test_buy_executes_and_arms_protection(self, engine, signal_payload, paper_exchange):
        """Happy path: BUY fills at once and its stop-loss / take-profit are monitored."""
        result = await engine.processor.process_signal(signal_payload())

        assert result["message"] == "Signal processed successfully"
        assert result["currentPrice"] == 100.0
        assert result["validation"] == {"valid": True, "action": "BUY", "reason": "Buy conditions met"}
        summary = result["order"]
        assert summary["side"] == "BUY"
        assert summary["status"] == "open"
        assert summary["tpPrice"] == "102.00"
        assert summary["slPrice"] == "99.00"

        assert paper_exchange.orders[-1]["side"] == "BUY"
        kinds = sorted(t.kind.value for t in engine.monitoring.registry.targets_for(summary["id"]))
        assert kinds == ["stopLoss", "takeProfit"]
        stored = await engine.store.get_order(summary["id"])
        assert stored.status == OrderStatus.OPEN
        assert stored.executed_target == TargetKind.ENTRY

    @pytest.mark.asyncio
    async def test_sell_signal(self, engine, signal_payload, paper_exchange):
        result = await engine.processor.process_signal(signal_payload(plusDI=10, minusDI=30))

        assert result["order"]["side"] == "SELL"
        assert result["order"]["tpPrice"] == "98.00"
        assert paper_exchange.orders[-1]["side"] == "SELL"

    @pytest.mark.asyncio
    async def test_execution_failure_still_processed(self, engine, signal_payload):
        """Failure case: a rejected placement returns normally with status error."""
        result = await engine.processor.process_signal(signal_payload(quantity=10000))

        assert result["message"] == "Signal processed successfully"
        assert result["order"]["status"] == "error"
        assert "insufficient USDT" in result["order"]["errorMessage"]
        assert engine.monitoring.registry.monitored_orders_count == 0

    @pytest.mark.asyncio
    async def test_market_closed_without_trigger_is_error(self, engine, signal_payload, paper_exchange):
        paper_exchange.get_symbol_status = AsyncMock(return_value="BREAK")

        result = await engine.processor.process_signal(signal_payload())

        assert result["order"]["status"] == "error"
        assert result["order"]["errorMessage"] == "Cannot execute immediately: Market not trading"
        assert paper_exchange.orders == []

    @pytest.mark.asyncio
    async def test_market_closed_with_trigger_switches_mode(self, engine, signal_payload, paper_exchange):
        """Edge case: a trigger price lets the order wait instead of failing."""
        paper_exchange.get_symbol_status = AsyncMock(return_value="HALT")

        result = await engine.processor.process_signal(signal_payload(triggerPrice=105))

        assert result["order"]["status"] == "waiting_trigger"
        assert result["order"]["executionMode"] == "trigger"
        assert engine.monitoring.registry.is_monitored(result["order"]["id"])

    @pytest.mark.asyncio
    async def test_unknown_symbol_reports_reason(self, engine, signal_payload, paper_exchange):
        paper_exchange.publish_price("SOLUSDT", 20.0)
        paper_exchange.get_symbol_status = AsyncMock(return_value=None)

        result = await engine.processor.process_signal(signal_payload(symbol="SOLUSDT"))

        assert result["order"]["errorMessage"] == "Cannot execute immediately: Symbol not found"

    @pytest.mark.asyncio
    async def test_reconnects_before_processing(self, engine, signal_payload, paper_exchange):
        await paper_exchange.disconnect()

        result = await engine.processor.process_signal(signal_payload())

        assert paper_exchange.is_connected
        assert result["order"]["status"] == "open"


class TestTriggerMode:
    """Tests for trigger execution mode."""

    @pytest.mark.asyncio
    async def test_waits_for_trigger(self, engine, signal_payload, paper_exchange):
        result = await engine.processor.process_signal(
            signal_payload(executionMode="trigger", triggerPrice=105, triggerCondition="above")
        )

        order_id = result["order"]["id"]
        assert result["order"]["status"] == "waiting_trigger"
        assert paper_exchange.orders == []
        assert engine.monitoring.registry.is_monitored(order_id)
        assert engine.monitoring.router.monitored_symbols == ["BTCUSDT"]
        stored = await engine.store.get_order(order_id)
        assert stored.status == OrderStatus.WAITING_TRIGGER
        assert stored.waiting_trigger_since is not None


class TestScheduledMode:
    """Tests for scheduled execution mode."""

    @pytest.mark.asyncio
    async def test_future_time_is_scheduled(self, engine, signal_payload, paper_exchange):
        result = await engine.processor.process_signal(
            signal_payload(executionMode="scheduled", scheduledTime=_iso(timedelta(minutes=5)))
        )

        order_id = result["order"]["id"]
        assert result["order"]["status"] == "scheduled"
        assert engine.monitoring.scheduler.has(order_id)
        assert paper_exchange.orders == []

    @pytest.mark.asyncio
    async def test_past_time_executes_now(self, engine, signal_payload, paper_exchange):
        """Edge case: a scheduled time already passed runs immediately."""
        result = await engine.processor.process_signal(
            signal_payload(executionMode="scheduled", scheduledTime=_iso(timedelta(minutes=-5)))
        )

        assert result["order"]["status"] == "open"
        assert len(paper_exchange.orders) == 1


class TestManualTrigger:
    """Tests for SignalProcessor.trigger_order()"""

    async def _waiting_order(self, engine, signal_payload):
        result = await engine.processor.process_signal(
            signal_payload(executionMode="trigger", triggerPrice=150)
        )
        return result["order"]["id"]

    @pytest.mark.asyncio
    async def test_trigger_waiting_order(self, engine, signal_payload, paper_exchange):
        """Happy path: manual trigger executes the entry and keeps protection armed."""
        order_id = await self._waiting_order(engine, signal_payload)

        result = await engine.processor.trigger_order(order_id)

        assert result["message"] == "Order triggered successfully"
        assert result["orderId"] == order_id
        assert result["currentPrice"] == 100.0
        assert result["status"] == "open"
        assert len(paper_exchange.orders) == 1
        kinds = sorted(t.kind.value for t in engine.monitoring.registry.targets_for(order_id))
        assert kinds == ["stopLoss", "takeProfit"]

    @pytest.mark.asyncio
    async def test_not_waiting_requires_force(self, engine, signal_payload):
        result = await engine.processor.process_signal(
            signal_payload(executionMode="scheduled", scheduledTime=_iso(timedelta(hours=1)))
        )
        order_id = result["order"]["id"]

        with pytest.raises(ValidationError, match="not waiting for trigger"):
            await engine.processor.trigger_order(order_id)

        forced = await engine.processor.trigger_order(order_id, force=True)
        assert forced["status"] == "open"
        assert not engine.monitoring.scheduler.has(order_id)

    @pytest.mark.asyncio
    async def test_unknown_order(self, engine):
        with pytest.raises(NotFoundError):
            await engine.processor.trigger_order("missing")

    @pytest.mark.asyncio
    async def test_terminal_order_rejected(self, engine, signal_payload):
        """Failure case: an executed or failed order cannot be triggered again."""
        result = await engine.processor.process_signal(signal_payload(quantity=10000))
        order_id = result["order"]["id"]

        with pytest.raises(OrderNotActiveError):
            await engine.processor.trigger_order(order_id, force=True)


class TestCancelTrigger:
    """Tests for SignalProcessor.cancel_trigger_order()"""

    @pytest.mark.asyncio
    async def test_cancel_waiting_order(self, engine, signal_payload):
        result = await engine.processor.process_signal(
            signal_payload(executionMode="trigger", triggerPrice=150)
        )
        order_id = result["order"]["id"]

        response = await engine.processor.cancel_trigger_order(order_id)

        assert response == {"message": "Trigger order cancelled successfully", "orderId": order_id}
        assert engine.monitoring.registry.all_targets() == []
        assert engine.monitoring.router.monitored_symbols == []
        stored = await engine.store.get_order(order_id)
        assert stored.status == OrderStatus.CANCELLED
        assert stored.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_cancel_scheduled_order(self, engine, signal_payload):
        result = await engine.processor.process_signal(
            signal_payload(executionMode="scheduled", scheduledTime=_iso(timedelta(hours=1)))
        )
        order_id = result["order"]["id"]

        await engine.processor.cancel_trigger_order(order_id)

        assert not engine.monitoring.scheduler.has(order_id)

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, engine):
        with pytest.raises(NotFoundError):
            await engine.processor.cancel_trigger_order("missing")

    @pytest.mark.asyncio
    async def test_cancel_terminal(self, engine, signal_payload):
        result = await engine.processor.process_signal(signal_payload(quantity=10000))
        with pytest.raises(OrderNotActiveError):
            await engine.processor.cancel_trigger_order(result["order"]["id"])


class TestExecutionModeDefault:
    @pytest.mark.asyncio
    async def test_default_mode_is_immediate(self, engine, signal_payload):
        result = await engine.processor.process_signal(signal_payload())
        assert result["order"]["executionMode"] == ExecutionMode.IMMEDIATE.value
