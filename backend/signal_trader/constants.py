"""
Application Constants

Centralized constants for signal fields, order statuses and exchange codes.
"""

from typing import Dict, List

# Fields every inbound signal must carry (wire names)
REQUIRED_SIGNAL_FIELDS: List[str] = ["symbol", "plusDI", "minusDI", "adx", "timeframe"]

# Relative tolerance for the "equal" trigger condition (0.1%)
EQUAL_CONDITION_TOLERANCE = 0.001

# Decimal places used for display fields (price_entry, tp_price, sl_price)
DISPLAY_PRECISION = 2

# Statuses loaded back into monitoring at startup
RESUMABLE_STATUSES = ["pending", "partial", "waiting_trigger", "scheduled", "open"]

# Exchange order status code -> internal order status
EXCHANGE_STATUS_MAP: Dict[str, str] = {
    "NEW": "pending",
    "PARTIALLY_FILLED": "partial",
    "FILLED": "filled",
    "CANCELED": "cancelled",
    "PENDING_CANCEL": "cancelling",
    "REJECTED": "rejected",
    "EXPIRED": "expired",
}

# Exchange symbol status that allows trading
SYMBOL_TRADING_STATUS = "TRADING"

# Default time in force for limit orders
DEFAULT_TIME_IN_FORCE = "GTC"
