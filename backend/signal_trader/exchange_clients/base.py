"""
ExchangeClient Abstract Base Class

This module defines the interface the engine consumes from an exchange.
The engine never talks to the network directly: it asks for prices, places
orders and reads price streams through these methods only.

Design Philosophy:
- Prices and quantities are floats in quote / base currency
- place_order raises ExecutionError when the exchange rejects the order
- Price streams are async iterators that end (or raise) when the
  connection drops; the PriceFeedRouter turns that into a reconnection
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from signal_trader.price_feeds.base import PriceStream


class ExchangeClient(ABC):
    """Abstract base class for exchange clients"""

    # ========================================
    # CONNECTION
    # ========================================

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Open the exchange session. Raises on failure."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the session and all price streams."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """
        Check the exchange is reachable and the account can be read.

        Raises:
            Exception: when the exchange is unreachable or the credentials fail
        """
        pass

    # ========================================
    # MARKET DATA
    # ========================================

    @abstractmethod
    async def get_price(self, symbol: str) -> float:
        """Fetch the latest traded price for a symbol."""
        pass

    @abstractmethod
    async def get_symbol_status(self, symbol: str) -> Optional[str]:
        """
        Get the trading status of a symbol (e.g. "TRADING", "HALT").

        Returns:
            Status string, or None if the symbol is not listed
        """
        pass

    @abstractmethod
    def subscribe_price_stream(self, symbol: str) -> PriceStream:
        """
        Open a live price stream for a symbol.

        Returns:
            Async iterator of PriceTick, indefinite until unsubscribed or
            the connection drops
        """
        pass

    @abstractmethod
    async def unsubscribe_price_stream(self, symbol: str) -> None:
        pass

    # ========================================
    # TRADING
    # ========================================

    @abstractmethod
    async def place_order(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Place an order.

        Args:
            request: {symbol, side, type, quantity, price?, timeInForce,
                      stopPrice?, icebergQty?}

        Returns:
            {orderId, symbol, side, price, executedQty, status, ...}

        Raises:
            ExecutionError: order rejected by the exchange
        """
        pass

    @abstractmethod
    async def get_account_info(self) -> Dict[str, Any]:
        """Return {canTrade, balances[]} (balances with free or locked > 0)."""
        pass

    def order_updates(self) -> Optional[AsyncIterator[Dict[str, Any]]]:
        """
        Stream of exchange execution reports, if the client supports one.

        Reports carry {i: exchange order id, s: symbol, X: status code,
        z: cumulative filled qty, L: last price, n: commission, N: asset}.
        """
        return None
