"""
Price Feeds

Live price stream routing and connection recovery:
- PriceFeedRouter: reference-counted per-symbol stream consumers
- ReconnectionSupervisor: exponential backoff reconnection
"""

from signal_trader.price_feeds.base import PriceStream, PriceTick

__all__ = ["PriceStream", "PriceTick"]
