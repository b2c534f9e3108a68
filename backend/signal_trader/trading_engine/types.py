"""
Trading engine domain types

Signals, orders, price targets and execution tasks shared by the
validator, factory, registry, queue and state machine.
"""

import copy
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from signal_trader.exceptions import ValidationError


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderStatus(str, Enum):
    PENDING = "pending"
    WAITING_TRIGGER = "waiting_trigger"
    SCHEDULED = "scheduled"
    PARTIAL = "partial"
    OPEN = "open"  # entry executed, protective targets still armed
    EXECUTED = "executed"
    FILLED = "filled"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"
    ERROR = "error"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    OrderStatus.EXECUTED,
    OrderStatus.FILLED,
    OrderStatus.CANCELLED,
    OrderStatus.REJECTED,
    OrderStatus.EXPIRED,
    OrderStatus.ERROR,
})


class ExecutionMode(str, Enum):
    IMMEDIATE = "immediate"
    TRIGGER = "trigger"
    SCHEDULED = "scheduled"


class TriggerCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    EQUAL = "equal"


class TargetKind(str, Enum):
    TRIGGER = "trigger"
    STOP_LOSS = "stopLoss"
    TAKE_PROFIT = "takeProfit"
    ENTRY = "entry"  # immediate / scheduled / manual execution, never registered


def _optional_float(payload: Dict[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid numeric value for {key}: {value!r}")


def _parse_datetime(value: Any, key: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid datetime for {key}: {value!r}")
    # Stored and compared as naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _enum_value(enum_cls, value: Any, key: str):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {key}: {value!r} (expected one of: {allowed})")


@dataclass
class Signal:
    """Inbound directional signal. DI/ADX values arrive pre-computed."""
    symbol: str
    plus_di: float
    minus_di: float
    adx: float
    timeframe: str

    # Execution hints
    trigger_price: Optional[float] = None
    trigger_condition: Optional[TriggerCondition] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    execution_mode: ExecutionMode = ExecutionMode.IMMEDIATE
    scheduled_time: Optional[datetime] = None

    quantity: Optional[float] = None
    trailing_stop: Optional[float] = None
    max_slippage: Optional[float] = None
    allow_partial_fill: bool = True
    timeout_minutes: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Signal":
        """
        Build a Signal from a webhook payload (camelCase wire names).

        Required fields are assumed present; see missing_signal_fields().
        """
        timeout = _optional_float(payload, "timeoutMinutes")
        return cls(
            symbol=str(payload["symbol"]).upper(),
            plus_di=_optional_float(payload, "plusDI"),
            minus_di=_optional_float(payload, "minusDI"),
            adx=_optional_float(payload, "adx"),
            timeframe=str(payload["timeframe"]),
            trigger_price=_optional_float(payload, "triggerPrice"),
            trigger_condition=_enum_value(TriggerCondition, payload.get("triggerCondition"), "triggerCondition"),
            stop_loss=_optional_float(payload, "stopLoss"),
            take_profit=_optional_float(payload, "takeProfit"),
            execution_mode=(
                _enum_value(ExecutionMode, payload.get("executionMode"), "executionMode")
                or ExecutionMode.IMMEDIATE
            ),
            scheduled_time=_parse_datetime(payload.get("scheduledTime"), "scheduledTime"),
            quantity=_optional_float(payload, "quantity"),
            trailing_stop=_optional_float(payload, "trailingStop"),
            max_slippage=_optional_float(payload, "maxSlippage"),
            allow_partial_fill=payload.get("allowPartialFill") is not False,
            timeout_minutes=int(timeout) if timeout else None,
        )


@dataclass
class ValidationResult:
    valid: bool
    action: Optional[OrderSide]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "action": self.action.value if self.action else None,
            "reason": self.reason,
        }


@dataclass
class Order:
    """
    Order owned by the engine while active.

    take_profit / stop_loss / trigger_price keep full precision for target
    comparisons; price_entry / tp_price / sl_price are rounded display strings.
    """
    id: str
    symbol: str
    side: OrderSide
    quantity: float
    type: str = "MARKET"
    price: Optional[float] = None
    status: OrderStatus = OrderStatus.PENDING
    execution_mode: ExecutionMode = ExecutionMode.IMMEDIATE

    trigger_price: Optional[float] = None
    trigger_condition: Optional[TriggerCondition] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    scheduled_time: Optional[datetime] = None
    time_in_force: str = "GTC"

    # Display / signal context
    timeframe: Optional[str] = None
    leverage: Optional[str] = None
    price_entry: Optional[str] = None
    tp_price: Optional[str] = None
    sl_price: Optional[str] = None
    signal_data: Dict[str, Any] = field(default_factory=dict)
    trailing_stop: Optional[float] = None
    max_slippage: Optional[float] = None
    allow_partial_fill: bool = True
    timeout_minutes: Optional[int] = None

    # Exchange results
    exchange_order_id: Optional[str] = None
    executed_price: Optional[float] = None
    executed_quantity: Optional[float] = None
    remaining_quantity: Optional[float] = None
    last_executed_price: Optional[float] = None
    commission: Optional[float] = None
    commission_asset: Optional[str] = None
    executed_target: Optional[TargetKind] = None
    error_message: Optional[str] = None

    # Timestamps (naive UTC)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    executed_at: Optional[datetime] = None
    error_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    waiting_trigger_since: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "Order":
        """Detached copy for queued tasks and event payloads."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["side"] = OrderSide(values["side"])
        values["status"] = OrderStatus(values.get("status") or OrderStatus.PENDING.value)
        values["execution_mode"] = ExecutionMode(values.get("execution_mode") or ExecutionMode.IMMEDIATE.value)
        if values.get("trigger_condition"):
            values["trigger_condition"] = TriggerCondition(values["trigger_condition"])
        if values.get("executed_target"):
            values["executed_target"] = TargetKind(values["executed_target"])
        if values.get("signal_data") is None:
            values["signal_data"] = {}
        return cls(**values)


@dataclass(frozen=True)
class PriceTarget:
    """Watched price condition. order_id is a back-reference, not ownership."""
    order_id: str
    symbol: str
    target_price: float
    condition: TriggerCondition
    kind: TargetKind

    @property
    def key(self):
        return (self.symbol, self.order_id, self.kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "symbol": self.symbol,
            "targetPrice": self.target_price,
            "condition": self.condition.value,
            "orderType": self.kind.value,
        }


@dataclass(frozen=True)
class ExecutionTask:
    """Snapshot captured at trigger time; later order mutations don't leak in."""
    order: Order
    target: PriceTarget
    observed_price: Optional[float]
    observed_at: datetime

    @property
    def order_id(self) -> str:
        return self.order.id

    @property
    def kind(self) -> TargetKind:
        return self.target.kind
