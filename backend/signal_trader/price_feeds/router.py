"""
Price Feed Router

Reference-counted price stream subscriptions. The first order depending on a
symbol opens its stream; the last one leaving closes it. Each open stream is
consumed by one task that forwards ticks, in arrival order, to the tick
handler.

When a stream fails or ends while the symbol is still wanted, the consumer
is dropped and the stream error callback is notified (normally the
ReconnectionSupervisor through the monitoring service). A stream that cannot
open because the exchange is disconnected is reported the same way.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from signal_trader.exceptions import StreamError
from signal_trader.price_feeds.base import PriceTick

logger = logging.getLogger(__name__)


class PriceFeedRouter:
    """
    Routes live price streams from the exchange to a tick handler.

    Args:
        exchange: ExchangeClient providing subscribe_price_stream()
        on_tick: Called with every PriceTick (may return an awaitable)
        on_stream_error: Called with (symbol, exception or None) when a
            wanted stream drops
    """

    def __init__(
        self,
        exchange,
        on_tick: Callable[[PriceTick], Any],
        on_stream_error: Optional[Callable[[str, Optional[Exception]], Any]] = None,
    ):
        self._exchange = exchange
        self._on_tick = on_tick
        self._on_stream_error = on_stream_error

        self._counts: Dict[str, int] = {}
        self._consumers: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()

    # ========================================
    # SUBSCRIPTIONS
    # ========================================

    def subscribe(self, symbol: str) -> int:
        """
        Add one dependent on a symbol; opens the stream for the first one.

        Returns:
            The new reference count
        """
        count = self._counts.get(symbol, 0) + 1
        self._counts[symbol] = count
        if count == 1:
            self._open(symbol)
        return count

    def release(self, symbol: str) -> int:
        """
        Remove one dependent on a symbol; closes the stream at zero.

        Returns:
            The remaining reference count
        """
        count = self._counts.get(symbol)
        if count is None:
            return 0

        count -= 1
        if count > 0:
            self._counts[symbol] = count
            return count

        del self._counts[symbol]
        self._close(symbol)
        return 0

    def subscription_count(self, symbol: str) -> int:
        return self._counts.get(symbol, 0)

    @property
    def monitored_symbols(self) -> List[str]:
        return sorted(self._counts)

    def is_streaming(self, symbol: str) -> bool:
        consumer = self._consumers.get(symbol)
        return consumer is not None and not consumer.done()

    def resubscribe_all(self) -> List[str]:
        """
        Reopen streams for every subscribed symbol without a live consumer.

        Returns:
            Symbols whose stream was reopened
        """
        reopened = []
        for symbol in self.monitored_symbols:
            if not self.is_streaming(symbol):
                self._open(symbol)
                reopened.append(symbol)
        if reopened:
            logger.info(f"Resubscribed price streams: {', '.join(reopened)}")
        return reopened

    async def close(self) -> None:
        """Stop every consumer. Reference counts are kept."""
        consumers = list(self._consumers.values())
        self._consumers.clear()
        for consumer in consumers:
            consumer.cancel()
        if consumers:
            await asyncio.gather(*consumers, return_exceptions=True)
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========================================
    # STREAM CONSUMERS
    # ========================================

    def _open(self, symbol: str) -> None:
        if not self._exchange.is_connected:
            logger.error(f"Exchange not connected - price stream for {symbol} deferred until reconnect")
            self._report_deferred(symbol)
            return
        if self.is_streaming(symbol):
            return

        consumer = asyncio.get_running_loop().create_task(self._consume(symbol))
        self._consumers[symbol] = consumer
        logger.info(f"Subscribed to {symbol} price stream")

    def _close(self, symbol: str) -> None:
        consumer = self._consumers.pop(symbol, None)
        if consumer is not None:
            consumer.cancel()
        if self._exchange.is_connected:
            self._spawn(self._unsubscribe(symbol))
        logger.info(f"Unsubscribed from {symbol} price stream")

    async def _unsubscribe(self, symbol: str):
        try:
            await self._exchange.unsubscribe_price_stream(symbol)
        except Exception as e:
            logger.warning(f"Failed to close {symbol} price stream: {e}")

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _consume(self, symbol: str):
        error: Optional[Exception] = None
        try:
            async for tick in self._exchange.subscribe_price_stream(symbol):
                try:
                    result = self._on_tick(tick)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"Error handling {symbol} price tick: {e}", exc_info=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
            logger.warning(f"{symbol} price stream failed: {e}")
        else:
            logger.warning(f"{symbol} price stream ended")

        if self._consumers.get(symbol) is asyncio.current_task():
            del self._consumers[symbol]

        if symbol in self._counts and self._on_stream_error is not None:
            try:
                result = self._on_stream_error(symbol, error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Stream error handler failed for {symbol}: {e}", exc_info=True)

    def _report_deferred(self, symbol: str) -> None:
        """Hand a stream that could not open to the error callback so reconnection starts"""
        if self._on_stream_error is None:
            return
        error = StreamError(f"Exchange not connected - {symbol} price stream deferred", symbol=symbol)
        try:
            result = self._on_stream_error(symbol, error)
        except Exception as e:
            logger.error(f"Stream error handler failed for {symbol}: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            self._spawn(self._await_handler(symbol, result))

    async def _await_handler(self, symbol: str, pending):
        try:
            await pending
        except Exception as e:
            logger.error(f"Stream error handler failed for {symbol}: {e}", exc_info=True)
