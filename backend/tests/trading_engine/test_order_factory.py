"""
Tests for backend/signal_trader/trading_engine/order_factory.py and the
Signal / Order types it builds on.
"""

from datetime import datetime

import pytest

from signal_trader.config import Settings
from signal_trader.exceptions import ValidationError
from signal_trader.trading_engine.order_factory import (
    calculate_prices,
    create_order,
    format_display_price,
    initial_status_for,
)
from signal_trader.trading_engine.types import (
    ExecutionMode,
    Order,
    OrderSide,
    OrderStatus,
    Signal,
    TriggerCondition,
    ValidationResult,
)

BUY = ValidationResult(valid=True, action=OrderSide.BUY, reason="Buy conditions met")
SELL = ValidationResult(valid=True, action=OrderSide.SELL, reason="Sell conditions met")


def _signal(**overrides):
    payload = {"symbol": "btcusdt", "plusDI": 30, "minusDI": 10, "adx": 25, "timeframe": "5m"}
    payload.update(overrides)
    return Signal.from_payload(payload)


class TestCalculatePrices:
    """Tests for calculate_prices()"""

    def test_buy_levels(self):
        """Happy path: BUY take-profit above, stop-loss below the entry."""
        tp, sl = calculate_prices(100.0, 2.0, 1.0, OrderSide.BUY)
        assert tp == pytest.approx(102.0)
        assert sl == pytest.approx(99.0)

    def test_sell_levels(self):
        """Happy path: SELL take-profit below, stop-loss above the entry."""
        tp, sl = calculate_prices(100.0, 2.0, 1.0, OrderSide.SELL)
        assert tp == pytest.approx(98.0)
        assert sl == pytest.approx(101.0)

    def test_full_precision_kept(self):
        """Edge case: levels are not rounded, only display strings are."""
        tp, _ = calculate_prices(123.456, 2.0, 1.0, OrderSide.BUY)
        assert tp == pytest.approx(125.92512)
        assert format_display_price(tp) == "125.93"


class TestInitialStatus:
    """Tests for initial_status_for()"""

    def test_statuses_per_mode(self):
        assert initial_status_for(ExecutionMode.IMMEDIATE) == OrderStatus.PENDING
        assert initial_status_for(ExecutionMode.TRIGGER) == OrderStatus.WAITING_TRIGGER
        assert initial_status_for(ExecutionMode.SCHEDULED) == OrderStatus.SCHEDULED


class TestCreateOrder:
    """Tests for create_order()"""

    def test_buy_order_fields(self):
        """Happy path: entry 100, tp 2%, sl 1% gives 102.00 / 99.00."""
        config = Settings(_env_file=None)
        order = create_order(_signal(), BUY, 100.0, config)

        assert order.symbol == "BTCUSDT"
        assert order.side == OrderSide.BUY
        assert order.status == OrderStatus.PENDING
        assert order.type == "MARKET"
        assert order.price is None
        assert order.quantity == config.order_quantity
        assert order.take_profit == pytest.approx(102.0)
        assert order.stop_loss == pytest.approx(99.0)
        assert order.price_entry == "100.00"
        assert order.tp_price == "102.00"
        assert order.sl_price == "99.00"
        assert order.leverage == "10x"
        assert order.timeframe == "5m"
        assert order.signal_data == {"plusDI": 30.0, "minusDI": 10.0, "adx": 25.0}

    def test_ids_are_unique(self):
        """Happy path: every order gets its own id."""
        config = Settings(_env_file=None)
        ids = {create_order(_signal(), BUY, 100.0, config).id for _ in range(20)}
        assert len(ids) == 20

    def test_limit_order_priced_at_current_price(self):
        """Happy path: LIMIT orders carry the current price."""
        config = Settings(_env_file=None, order_type="limit")
        order = create_order(_signal(), SELL, 250.5, config)
        assert order.type == "LIMIT"
        assert order.price == 250.5

    def test_signal_hints_override_computed_levels(self):
        """Edge case: explicit stopLoss / takeProfit win over the percentages."""
        config = Settings(_env_file=None)
        order = create_order(_signal(stopLoss=95, takeProfit="110.5"), BUY, 100.0, config)
        assert order.stop_loss == 95.0
        assert order.take_profit == 110.5
        assert order.sl_price == "95.00"
        assert order.tp_price == "110.50"

    def test_execution_hints_copied(self):
        """Happy path: trigger hints and quantity flow onto the order."""
        config = Settings(_env_file=None)
        signal = _signal(
            executionMode="trigger",
            triggerPrice=105,
            triggerCondition="below",
            quantity=0.5,
        )
        order = create_order(signal, BUY, 100.0, config)
        assert order.execution_mode == ExecutionMode.TRIGGER
        assert order.trigger_price == 105.0
        assert order.trigger_condition == TriggerCondition.BELOW
        assert order.quantity == 0.5


class TestSignalFromPayload:
    """Tests for Signal.from_payload()"""

    def test_numeric_strings_accepted(self):
        """Happy path: numeric strings are parsed."""
        signal = _signal(plusDI="30.5")
        assert signal.plus_di == 30.5

    def test_defaults(self):
        """Happy path: no hints means immediate execution."""
        signal = _signal()
        assert signal.execution_mode == ExecutionMode.IMMEDIATE
        assert signal.trigger_price is None
        assert signal.allow_partial_fill is True

    def test_invalid_number_rejected(self):
        """Failure case: non-numeric indicator values raise ValidationError."""
        with pytest.raises(ValidationError, match="plusDI"):
            _signal(plusDI="abc")

    def test_invalid_trigger_condition_rejected(self):
        """Failure case: unknown trigger conditions raise ValidationError."""
        with pytest.raises(ValidationError, match="triggerCondition"):
            _signal(triggerCondition="sideways")

    def test_scheduled_time_normalized_to_naive_utc(self):
        """Edge case: timezone-aware timestamps become naive UTC."""
        signal = _signal(executionMode="scheduled", scheduledTime="2030-01-01T12:00:00+02:00")
        assert signal.scheduled_time == datetime(2030, 1, 1, 10, 0, 0)

    def test_scheduled_time_z_suffix(self):
        signal = _signal(scheduledTime="2030-01-01T12:00:00Z")
        assert signal.scheduled_time == datetime(2030, 1, 1, 12, 0, 0)


class TestOrderSerialization:
    """Tests for Order.to_dict() / Order.from_dict()"""

    def test_round_trip_restores_enums(self):
        """Happy path: enum fields come back as enums."""
        order = create_order(_signal(triggerPrice=101, triggerCondition="equal"), BUY, 100.0, Settings(_env_file=None))
        restored = Order.from_dict(order.to_dict())
        assert restored.side == OrderSide.BUY
        assert restored.trigger_condition == TriggerCondition.EQUAL
        assert restored.status == OrderStatus.PENDING
        assert restored.take_profit == order.take_profit

    def test_snapshot_is_detached(self):
        """Edge case: mutating the live order does not change a snapshot."""
        order = create_order(_signal(), BUY, 100.0, Settings(_env_file=None))
        snapshot = order.snapshot()
        order.quantity = 99
        order.signal_data["adx"] = 0
        assert snapshot.quantity != 99
        assert snapshot.signal_data["adx"] == 25.0
