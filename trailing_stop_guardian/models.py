"""Data models for Trailing Stop Guardian."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Deque, Dict, Optional


class Side(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def stop_side(self) -> "OrderSide":
        """Order side of the stop that protects a position on this side."""
        return OrderSide.SELL if self is Side.LONG else OrderSide.BUY


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    STOP = "stop"
    LIMIT = "limit"
    MARKET = "market"


class TimeInForce(str, Enum):
    GTC = "gtc"


class AlertType(str, Enum):
    STOP_PLACEMENT_FAILED = "stop_placement_failed"
    RETRACEMENT_CLOSE = "retracement_close"
    SERVICE_DEGRADED = "service_degraded"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    URGENT = "urgent"
    CRITICAL = "critical"


class AlertChannel(str, Enum):
    TELEGRAM = "telegram"
    SMS = "sms"
    PHONE_CALL = "phone_call"


@dataclass(frozen=True)
class Bar:
    """A closed OHLC bar."""
    open_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    time_right: datetime
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "open_time": self.open_time.isoformat(),
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "time_right": self.time_right.isoformat(),
        }


@dataclass(frozen=True)
class Position:
    """Open position as reported by the position feed."""
    id: str
    symbol: str
    account: str
    side: Side
    quantity: Decimal


@dataclass(frozen=True)
class Order:
    """Open order as reported by the order gateway."""
    id: str
    symbol: str
    side: OrderSide
    order_type: OrderType
    trigger_price: Optional[Decimal] = None


@dataclass(frozen=True)
class OrderResult:
    """Outcome of a gateway command."""
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, order_id: Optional[str] = None) -> "OrderResult":
        return cls(success=True, order_id=order_id)

    @classmethod
    def failed(cls, error: str) -> "OrderResult":
        return cls(success=False, error=error)


@dataclass
class WatchedPosition:
    """Trailing state for one position under management."""
    id: str
    symbol: str
    account: str
    side: Side
    quantity: Decimal
    lag_buffer: Deque[Decimal] = field(default_factory=deque)
    active_stop_order_id: Optional[str] = None
    last_stop_price: Optional[Decimal] = None
    elapsed_bars: int = 0

    @classmethod
    def from_position(cls, position: Position) -> "WatchedPosition":
        return cls(
            id=position.id,
            symbol=position.symbol,
            account=position.account,
            side=position.side,
            quantity=position.quantity,
        )

    @property
    def has_stop(self) -> bool:
        return self.active_stop_order_id is not None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "active_stop_order_id": self.active_stop_order_id,
            "last_stop_price": str(self.last_stop_price) if self.last_stop_price is not None else None,
            "lag_buffer": [str(p) for p in self.lag_buffer],
            "elapsed_bars": self.elapsed_bars,
        }

    def __str__(self) -> str:
        return f"{self.id} ({self.side.value} {self.quantity} {self.symbol}, bars={self.elapsed_bars})"


@dataclass
class Alert:
    """Alert to be sent to the operator."""
    alert_type: AlertType
    severity: Severity
    symbol: str
    message: str
    position_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    suggested_action: Optional[str] = None

    def format_message(self) -> str:
        """Format alert message for delivery."""
        emoji = {
            Severity.INFO: "ℹ️",
            Severity.WARNING: "⚠️",
            Severity.URGENT: "🚨",
            Severity.CRITICAL: "🔴",
        }.get(self.severity, "")

        lines = [
            f"{emoji} {self.severity.value.upper()}: {self.alert_type.value.replace('_', ' ').title()}",
            f"Symbol: {self.symbol}",
            self.message,
        ]

        if self.position_id:
            lines.append(f"Position: {self.position_id}")
        if self.details.get("stop_price") is not None:
            lines.append(f"Stop: {self.details['stop_price']}")
        if self.details.get("close") is not None:
            lines.append(f"Close: {self.details['close']}")
        if self.details.get("error"):
            lines.append(f"Error: {self.details['error']}")
        if self.suggested_action:
            lines.append(f"Action: {self.suggested_action}")

        return "\n".join(lines)


@dataclass(frozen=True)
class StopPlan:
    """Result of planning one bar for one position."""
    stop_price: Decimal
    lag_buffer: Deque[Decimal]
    breached: bool

    @property
    def placeable(self) -> bool:
        return not self.breached
