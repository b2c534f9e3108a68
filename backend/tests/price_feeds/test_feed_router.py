"""
Tests for backend/signal_trader/price_feeds/router.py

Runs the router against the paper exchange so subscriptions, tick delivery
and stream drops go through real async iterators.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from signal_trader.exceptions import StreamError
from signal_trader.price_feeds.router import PriceFeedRouter


async def _settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
async def router_setup(paper_exchange):
    ticks = []
    on_stream_error = MagicMock()
    router = PriceFeedRouter(paper_exchange, on_tick=ticks.append, on_stream_error=on_stream_error)
    yield router, ticks, on_stream_error
    await router.close()


class TestReferenceCounting:
    """Tests for PriceFeedRouter.subscribe() / release()"""

    @pytest.mark.asyncio
    async def test_one_stream_per_symbol(self, router_setup, paper_exchange):
        """Happy path: two dependents share one stream and one delivery per tick."""
        router, ticks, _ = router_setup

        assert router.subscribe("BTCUSDT") == 1
        assert router.subscribe("BTCUSDT") == 2
        await _settle()
        paper_exchange.publish_price("BTCUSDT", 101.0)
        await _settle()

        assert [t.price for t in ticks] == [101.0]
        assert router.monitored_symbols == ["BTCUSDT"]
        assert router.is_streaming("BTCUSDT")

    @pytest.mark.asyncio
    async def test_release_to_zero_closes_stream(self, router_setup, paper_exchange):
        """Happy path: the last release closes the stream."""
        router, ticks, _ = router_setup
        router.subscribe("BTCUSDT")
        router.subscribe("BTCUSDT")
        await _settle()

        assert router.release("BTCUSDT") == 1
        assert router.is_streaming("BTCUSDT")
        assert router.release("BTCUSDT") == 0
        await _settle()

        assert router.subscription_count("BTCUSDT") == 0
        assert router.monitored_symbols == []
        assert not router.is_streaming("BTCUSDT")
        paper_exchange.publish_price("BTCUSDT", 105.0)
        await _settle()
        assert ticks == []

    @pytest.mark.asyncio
    async def test_release_unknown_symbol(self, router_setup):
        router, _, _ = router_setup
        assert router.release("DOGEUSDT") == 0

    @pytest.mark.asyncio
    async def test_ticks_forwarded_in_arrival_order(self, router_setup, paper_exchange):
        router, ticks, _ = router_setup
        router.subscribe("BTCUSDT")
        await _settle()

        for price in (101.0, 99.5, 103.25):
            paper_exchange.publish_price("BTCUSDT", price)
        await _settle()

        assert [t.price for t in ticks] == [101.0, 99.5, 103.25]

    @pytest.mark.asyncio
    async def test_subscribe_while_disconnected_is_deferred(self, router_setup, paper_exchange):
        """Edge case: without a connection the count is kept and the stream opens on resubscribe."""
        router, _, on_stream_error = router_setup
        await paper_exchange.disconnect()

        assert router.subscribe("BTCUSDT") == 1
        assert not router.is_streaming("BTCUSDT")

        on_stream_error.assert_called_once()
        symbol, error = on_stream_error.call_args[0]
        assert symbol == "BTCUSDT"
        assert isinstance(error, StreamError)
        assert error.symbol == "BTCUSDT"

        await paper_exchange.connect()
        assert router.resubscribe_all() == ["BTCUSDT"]
        assert router.is_streaming("BTCUSDT")


class TestStreamFailures:
    """Tests for stream drops and handler errors."""

    @pytest.mark.asyncio
    async def test_dropped_stream_reports_error(self, router_setup, paper_exchange):
        """Failure case: a stream ending while wanted notifies the error callback."""
        router, _, on_stream_error = router_setup
        router.subscribe("BTCUSDT")
        await _settle()

        paper_exchange.simulate_disconnect()
        await _settle()

        on_stream_error.assert_called_once_with("BTCUSDT", None)
        assert not router.is_streaming("BTCUSDT")
        assert router.subscription_count("BTCUSDT") == 1

    @pytest.mark.asyncio
    async def test_resubscribe_after_reconnect(self, router_setup, paper_exchange):
        router, ticks, _ = router_setup
        router.subscribe("BTCUSDT")
        await _settle()
        paper_exchange.simulate_disconnect()
        await _settle()

        await paper_exchange.connect()
        assert router.resubscribe_all() == ["BTCUSDT"]
        await _settle()
        paper_exchange.publish_price("BTCUSDT", 110.0)
        await _settle()

        assert [t.price for t in ticks] == [110.0]
        assert router.resubscribe_all() == []

    @pytest.mark.asyncio
    async def test_open_failure_reports_error(self, paper_exchange):
        """Failure case: a stream that cannot open reports its exception."""
        on_stream_error = MagicMock()
        exchange = MagicMock()
        exchange.is_connected = True

        async def broken_stream():
            raise ConnectionError("socket refused")
            yield  # pragma: no cover

        exchange.subscribe_price_stream = MagicMock(return_value=broken_stream())
        router = PriceFeedRouter(exchange, on_tick=MagicMock(), on_stream_error=on_stream_error)

        router.subscribe("BTCUSDT")
        await _settle()

        symbol, error = on_stream_error.call_args[0]
        assert symbol == "BTCUSDT"
        assert isinstance(error, ConnectionError)

    @pytest.mark.asyncio
    async def test_handler_error_keeps_stream_alive(self, paper_exchange):
        """Edge case: a failing tick handler does not end the stream."""
        received = []

        def on_tick(tick):
            received.append(tick.price)
            if tick.price == 101.0:
                raise ValueError("bad tick")

        router = PriceFeedRouter(paper_exchange, on_tick=on_tick)
        router.subscribe("BTCUSDT")
        await _settle()

        paper_exchange.publish_price("BTCUSDT", 101.0)
        paper_exchange.publish_price("BTCUSDT", 102.0)
        await _settle()

        assert received == [101.0, 102.0]
        assert router.is_streaming("BTCUSDT")
        await router.close()

    @pytest.mark.asyncio
    async def test_release_after_drop_does_not_report(self, router_setup, paper_exchange):
        """Edge case: no error callback once nobody wants the symbol."""
        router, _, on_stream_error = router_setup
        router.subscribe("BTCUSDT")
        await _settle()

        router.release("BTCUSDT")
        await _settle()

        on_stream_error.assert_not_called()
