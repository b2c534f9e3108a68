"""
Exchange Client Abstraction Layer

The trigger engine only talks to exchanges through the ExchangeClient
abstract base class: prices, symbol status, price streams, order placement
and account info.

Usage:
    from signal_trader.exchange_clients.factory import create_exchange_client

    exchange = create_exchange_client(settings)  # PaperTradingClient by default
"""

from signal_trader.exchange_clients.base import ExchangeClient

__all__ = ["ExchangeClient"]
