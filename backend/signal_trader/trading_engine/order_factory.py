"""
Order construction from validated signals

Computes take-profit / stop-loss levels from the entry price and builds the
Order the engine will track. The initial status for an execution mode is the
caller's decision (see initial_status_for).
"""

import uuid
from typing import Tuple

from signal_trader.constants import DISPLAY_PRECISION
from signal_trader.trading_engine.types import (
    ExecutionMode,
    Order,
    OrderSide,
    OrderStatus,
    Signal,
    ValidationResult,
)

_INITIAL_STATUS = {
    ExecutionMode.IMMEDIATE: OrderStatus.PENDING,
    ExecutionMode.TRIGGER: OrderStatus.WAITING_TRIGGER,
    ExecutionMode.SCHEDULED: OrderStatus.SCHEDULED,
}


def calculate_prices(
    entry_price: float,
    take_profit_percent: float,
    stop_loss_percent: float,
    action: OrderSide,
) -> Tuple[float, float]:
    """
    Calculate take-profit and stop-loss prices at full precision.

    Returns:
        (take_profit_price, stop_loss_price)
    """
    if action == OrderSide.BUY:
        tp_price = entry_price * (1 + take_profit_percent / 100)
        sl_price = entry_price * (1 - stop_loss_percent / 100)
    else:
        tp_price = entry_price * (1 - take_profit_percent / 100)
        sl_price = entry_price * (1 + stop_loss_percent / 100)
    return tp_price, sl_price


def format_display_price(value: float) -> str:
    return f"{value:.{DISPLAY_PRECISION}f}"


def initial_status_for(mode: ExecutionMode) -> OrderStatus:
    return _INITIAL_STATUS.get(mode, OrderStatus.PENDING)


def create_order(
    signal: Signal,
    validation: ValidationResult,
    current_price: float,
    config,
) -> Order:
    """
    Build a pending Order for a valid signal.

    Explicit stop_loss / take_profit hints on the signal win over the computed
    levels. Limit orders are priced at the current price.
    """
    tp_price, sl_price = calculate_prices(
        current_price,
        config.take_profit_percent,
        config.stop_loss_percent,
        validation.action,
    )

    take_profit = signal.take_profit if signal.take_profit is not None else tp_price
    stop_loss = signal.stop_loss if signal.stop_loss is not None else sl_price
    order_type = config.order_type

    return Order(
        id=uuid.uuid4().hex,
        symbol=signal.symbol,
        side=validation.action,
        type=order_type,
        quantity=signal.quantity or config.order_quantity,
        price=current_price if order_type == "LIMIT" else None,
        status=OrderStatus.PENDING,
        execution_mode=signal.execution_mode,
        trigger_price=signal.trigger_price,
        trigger_condition=signal.trigger_condition,
        stop_loss=stop_loss,
        take_profit=take_profit,
        scheduled_time=signal.scheduled_time,
        timeframe=signal.timeframe,
        leverage=f"{config.leverage}x",
        price_entry=format_display_price(current_price),
        tp_price=format_display_price(take_profit),
        sl_price=format_display_price(stop_loss),
        signal_data={
            "plusDI": signal.plus_di,
            "minusDI": signal.minus_di,
            "adx": signal.adx,
        },
        trailing_stop=signal.trailing_stop,
        max_slippage=signal.max_slippage if signal.max_slippage is not None else config.max_slippage,
        allow_partial_fill=signal.allow_partial_fill,
        timeout_minutes=signal.timeout_minutes or config.order_timeout_minutes,
    )
