"""
Paper Trading Exchange Client

Simulates an exchange in-process: prices are published into the client,
price streams fan them out to subscribers, and orders fill immediately at
the limit price (LIMIT) or the last published price (MARKET).
"""

import asyncio
import itertools
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from signal_trader.exceptions import ExchangeUnavailableError, ExecutionError, StreamError
from signal_trader.exchange_clients.base import ExchangeClient
from signal_trader.price_feeds.base import PriceStream, PriceTick

logger = logging.getLogger(__name__)

# Checked longest first so "BTCUSDT" splits as BTC / USDT
KNOWN_QUOTE_ASSETS = ["USDT", "USDC", "BUSD", "FDUSD", "USD", "BTC", "ETH", "BNB"]

# Queue sentinel: the stream was closed (disconnect or unsubscribe)
_STREAM_CLOSED = None


def split_symbol(symbol: str) -> Tuple[str, str]:
    """Split an exchange symbol into (base, quote) assets."""
    for quote in sorted(KNOWN_QUOTE_ASSETS, key=len, reverse=True):
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)], quote
    raise ValueError(f"Cannot determine quote asset for {symbol}")


class PaperTradingClient(ExchangeClient):
    """
    Simulated exchange client for paper trading.

    Orders are checked against virtual balances and fill in full on
    placement. Every fill is also published as an execution report on
    order_updates().
    """

    def __init__(
        self,
        initial_prices: Optional[Dict[str, float]] = None,
        balances: Optional[Dict[str, float]] = None,
        symbol_statuses: Optional[Dict[str, str]] = None,
    ):
        self._prices: Dict[str, float] = {k.upper(): float(v) for k, v in (initial_prices or {}).items()}
        self.balances: Dict[str, float] = dict(balances) if balances else {
            "USDT": 100000.0,
            "BTC": 1.0,
            "ETH": 10.0,
        }
        self._symbol_statuses = {k.upper(): v for k, v in (symbol_statuses or {}).items()}
        self._connected = False
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}
        self._report_queues: List[asyncio.Queue] = []
        self._order_ids = itertools.count(1)
        self.orders: List[Dict[str, Any]] = []

    # ========================================
    # CONNECTION
    # ========================================

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        logger.info("Paper exchange connected")

    async def disconnect(self) -> None:
        self._connected = False
        self._close_all_streams()
        logger.info("Paper exchange disconnected")

    async def test_connection(self) -> bool:
        if not self._connected:
            raise ExchangeUnavailableError("Paper exchange not connected")
        return True

    def simulate_disconnect(self) -> None:
        """Drop the session; open price streams end as if the socket closed."""
        logger.warning("Paper exchange simulating connection loss")
        self._connected = False
        self._close_all_streams()

    def _close_all_streams(self) -> None:
        for queues in self._subscribers.values():
            for queue in queues:
                queue.put_nowait(_STREAM_CLOSED)
        self._subscribers.clear()

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise ExchangeUnavailableError("Exchange connection not established")

    # ========================================
    # MARKET DATA
    # ========================================

    async def get_price(self, symbol: str) -> float:
        self._ensure_connected()
        price = self._prices.get(symbol.upper())
        if price is None:
            raise ExchangeUnavailableError(f"No price available for {symbol}")
        return price

    async def get_symbol_status(self, symbol: str) -> Optional[str]:
        self._ensure_connected()
        symbol = symbol.upper()
        if symbol in self._symbol_statuses:
            return self._symbol_statuses[symbol]
        return "TRADING" if symbol in self._prices else None

    def publish_price(self, symbol: str, price: float, timestamp: Optional[datetime] = None) -> PriceTick:
        """Record a new price and push it to every open stream for the symbol."""
        symbol = symbol.upper()
        previous = self._prices.get(symbol)
        self._prices[symbol] = float(price)
        change = (price - previous) if previous else None
        tick = PriceTick(
            symbol=symbol,
            price=float(price),
            timestamp=timestamp or datetime.utcnow(),
            change=change,
            change_percent=(change / previous * 100) if previous else None,
        )
        for queue in self._subscribers.get(symbol, []):
            queue.put_nowait(tick)
        return tick

    def subscribe_price_stream(self, symbol: str) -> PriceStream:
        return self._price_stream(symbol.upper())

    async def _price_stream(self, symbol: str) -> AsyncIterator[PriceTick]:
        if not self._connected:
            raise StreamError(f"Cannot open price stream for {symbol}: not connected", symbol=symbol)

        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(symbol, []).append(queue)
        logger.info(f"Paper price stream opened for {symbol}")
        try:
            while True:
                tick = await queue.get()
                if tick is _STREAM_CLOSED:
                    return
                yield tick
        finally:
            queues = self._subscribers.get(symbol)
            if queues and queue in queues:
                queues.remove(queue)

    async def unsubscribe_price_stream(self, symbol: str) -> None:
        for queue in self._subscribers.pop(symbol.upper(), []):
            queue.put_nowait(_STREAM_CLOSED)
        logger.info(f"Paper price stream closed for {symbol}")

    # ========================================
    # TRADING
    # ========================================

    async def place_order(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_connected()

        symbol = str(request.get("symbol", "")).upper()
        side = str(request.get("side", "")).upper()
        order_type = str(request.get("type", "MARKET")).upper()

        if side not in ("BUY", "SELL"):
            raise ExecutionError(f"Order placement error: invalid side {side!r}")

        try:
            quantity = float(request.get("quantity") or 0)
        except (TypeError, ValueError):
            raise ExecutionError(f"Order placement error: invalid quantity {request.get('quantity')!r}")
        if quantity <= 0:
            raise ExecutionError("Order placement error: quantity must be positive")

        if order_type == "LIMIT":
            if request.get("price") is None:
                raise ExecutionError("Order placement error: LIMIT orders require a price")
            fill_price = float(request["price"])
        else:
            fill_price = self._prices.get(symbol)
            if fill_price is None:
                raise ExecutionError(f"Order placement error: no market for {symbol}")

        try:
            base, quote = split_symbol(symbol)
        except ValueError as e:
            raise ExecutionError(f"Order placement error: {e}")

        notional = quantity * fill_price
        if side == "BUY":
            if self.balances.get(quote, 0.0) < notional:
                raise ExecutionError(f"Order placement error: insufficient {quote} balance")
            self.balances[quote] = self.balances.get(quote, 0.0) - notional
            self.balances[base] = self.balances.get(base, 0.0) + quantity
        else:
            if self.balances.get(base, 0.0) < quantity:
                raise ExecutionError(f"Order placement error: insufficient {base} balance")
            self.balances[base] = self.balances.get(base, 0.0) - quantity
            self.balances[quote] = self.balances.get(quote, 0.0) + notional

        result = {
            "orderId": next(self._order_ids),
            "symbol": symbol,
            "side": side,
            "type": order_type,
            "price": f"{fill_price:.8f}",
            "origQty": f"{quantity:.8f}",
            "executedQty": f"{quantity:.8f}",
            "status": "FILLED",
            "timeInForce": request.get("timeInForce", "GTC"),
            "transactTime": int(datetime.utcnow().timestamp() * 1000),
        }
        self.orders.append(result)
        logger.info(f"Paper order filled: {side} {quantity} {symbol} @ {fill_price} (#{result['orderId']})")

        report = {
            "i": result["orderId"],
            "s": symbol,
            "X": "FILLED",
            "z": result["executedQty"],
            "L": result["price"],
            "n": "0",
            "N": quote,
        }
        for queue in self._report_queues:
            queue.put_nowait(report)

        return result

    async def get_account_info(self) -> Dict[str, Any]:
        self._ensure_connected()
        return {
            "accountType": "SPOT",
            "canTrade": True,
            "canWithdraw": False,
            "canDeposit": False,
            "balances": [
                {"asset": asset, "free": f"{amount:.8f}", "locked": "0.00000000"}
                for asset, amount in self.balances.items()
                if amount > 0
            ],
        }

    def order_updates(self) -> Optional[AsyncIterator[Dict[str, Any]]]:
        return self._order_update_stream()

    async def _order_update_stream(self) -> AsyncIterator[Dict[str, Any]]:
        queue: asyncio.Queue = asyncio.Queue()
        self._report_queues.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._report_queues.remove(queue)
