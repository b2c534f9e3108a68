"""
Signal validation

Turns pre-computed +DI / -DI / ADX values into a BUY / SELL decision.
Pure functions, no side effects.
"""

from typing import Any, Dict, List

from signal_trader.constants import REQUIRED_SIGNAL_FIELDS
from signal_trader.trading_engine.types import OrderSide, ValidationResult


def missing_signal_fields(payload: Dict[str, Any]) -> List[str]:
    """Return required wire fields that are absent or null in the payload"""
    return [f for f in REQUIRED_SIGNAL_FIELDS if payload.get(f) is None]


def validate_signal(signal, config) -> ValidationResult:
    """
    Validate a directional signal against the configured thresholds.

    Args:
        signal: Object with plus_di, minus_di and adx attributes
        config: Object with plus_di_threshold, minus_di_threshold and adx_minimum

    Returns:
        ValidationResult with the action to take, or the reason it was rejected

    Note: the SELL branch compares minus_di against plus_di_threshold and
    plus_di against minus_di_threshold, mirroring the BUY branch.
    """
    plus_di = signal.plus_di
    minus_di = signal.minus_di
    adx = signal.adx

    if adx < config.adx_minimum:
        return ValidationResult(valid=False, action=None, reason="ADX below minimum")

    if plus_di > config.plus_di_threshold and minus_di < config.minus_di_threshold:
        return ValidationResult(valid=True, action=OrderSide.BUY, reason="Buy conditions met")

    if minus_di > config.plus_di_threshold and plus_di < config.minus_di_threshold:
        return ValidationResult(valid=True, action=OrderSide.SELL, reason="Sell conditions met")

    return ValidationResult(valid=False, action=None, reason="No clear signal")
