"""
Tests for backend/signal_trader/services/event_bus.py
"""

import pytest
from unittest.mock import MagicMock

from signal_trader.services.event_bus import EventBus


class TestEmit:
    """Tests for EventBus.emit()"""

    def test_sync_handlers_called_with_event_and_payload(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe("orderExecuted", handler)

        bus.emit("orderExecuted", {"orderId": "a"})

        handler.assert_called_once_with("orderExecuted", {"orderId": "a"})

    def test_only_matching_event(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe("reconnected", handler)

        bus.emit("streamError", {})

        handler.assert_not_called()

    def test_subscribe_all_receives_everything(self):
        bus = EventBus()
        seen = []
        bus.subscribe_all(lambda event, payload: seen.append(event))

        bus.emit("connected")
        bus.emit("priceUpdate", {"price": 1})

        assert seen == ["connected", "priceUpdate"]

    def test_failing_handler_does_not_stop_others(self):
        """Failure case: one broken subscriber is logged, the rest still run."""
        bus = EventBus()
        survivor = MagicMock()
        bus.subscribe("orderExecuted", MagicMock(side_effect=RuntimeError("boom")))
        bus.subscribe("orderExecuted", survivor)

        bus.emit("orderExecuted", {})

        survivor.assert_called_once()

    def test_unsubscribe(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe("connected", handler)
        bus.unsubscribe("connected", handler)
        bus.unsubscribe("connected", handler)

        bus.emit("connected")

        handler.assert_not_called()
        assert bus.handler_count("connected") == 0

    def test_missing_payload_defaults_to_empty(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe("stopped", handler)
        bus.emit("stopped")
        handler.assert_called_once_with("stopped", {})


class TestAsyncHandlers:
    """Tests for coroutine subscribers."""

    @pytest.mark.asyncio
    async def test_async_handler_scheduled_and_drained(self):
        bus = EventBus()
        received = []

        async def handler(event, payload):
            received.append(payload)

        bus.subscribe("priceUpdate", handler)
        bus.emit("priceUpdate", {"price": 100.0})
        assert received == []

        await bus.drain()
        assert received == [{"price": 100.0}]

    @pytest.mark.asyncio
    async def test_async_handler_failure_is_contained(self):
        bus = EventBus()

        async def broken(event, payload):
            raise RuntimeError("socket closed")

        bus.subscribe("priceUpdate", broken)
        bus.emit("priceUpdate", {})

        await bus.drain()
