"""
Exchange Client Factory

Creates the exchange client the engine runs against. Paper trading is the
default; a live client class can be supplied by the deployment and is only
built when credentials are configured.
"""

from typing import Callable, Optional

from signal_trader.exceptions import ConfigurationError
from signal_trader.exchange_clients.base import ExchangeClient
from signal_trader.exchange_clients.paper_trading_client import PaperTradingClient


def create_exchange_client(
    settings,
    live_client_factory: Optional[Callable[..., ExchangeClient]] = None,
) -> ExchangeClient:
    """
    Create the exchange client described by settings.

    Args:
        settings: Settings with paper_trading, credentials and use_testnet
        live_client_factory: Callable(api_key=, api_secret=, testnet=) returning
            a live ExchangeClient

    Returns:
        ExchangeClient instance (PaperTradingClient when paper trading)

    Raises:
        ConfigurationError: live trading requested without credentials or
            without a live client implementation
    """
    if settings.paper_trading:
        return PaperTradingClient(initial_prices=settings.paper_initial_prices)

    if not settings.exchange_api_key or not settings.exchange_api_secret:
        raise ConfigurationError("Exchange API credentials are required when paper trading is disabled")

    if live_client_factory is None:
        raise ConfigurationError("No live exchange client configured - enable paper_trading or provide one")

    return live_client_factory(
        api_key=settings.exchange_api_key,
        api_secret=settings.exchange_api_secret,
        testnet=settings.use_testnet,
    )
