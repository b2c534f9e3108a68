"""
Base Price Feed Types

Defines the tick structure delivered by exchange price streams and the
shape of a per-symbol stream consumed by the PriceFeedRouter.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Optional


@dataclass(frozen=True)
class PriceTick:
    """Single price observation from a live stream"""
    symbol: str
    price: float
    timestamp: datetime = field(default_factory=datetime.utcnow)
    change: Optional[float] = None
    change_percent: Optional[float] = None
    volume: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "timestamp": self.timestamp.isoformat(),
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
        }


# A price stream yields ticks until unsubscribed or the connection drops.
PriceStream = AsyncIterator[PriceTick]
