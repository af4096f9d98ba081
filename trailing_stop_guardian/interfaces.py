"""Collaborator interfaces consumed by the reconciliation engine."""

from datetime import timedelta
from decimal import Decimal
from typing import Callable, List, Protocol

from .models import Bar, Order, OrderResult, OrderSide, Position, TimeInForce

BarCallback = Callable[[Bar], None]
PositionCallback = Callable[[Position], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None:
        """Stop delivery and release the underlying resources."""


class BarClock(Protocol):
    def subscribe(self, symbol: str, period: timedelta, callback: BarCallback) -> Subscription:
        """Deliver each closed bar for ``symbol``/``period`` to ``callback``."""


class PositionFeed(Protocol):
    def subscribe(self, on_opened: PositionCallback, on_closed: PositionCallback) -> Subscription:
        """Deliver position open/close notifications."""

    def list_open_positions(self, symbol: str) -> List[Position]:
        """Positions currently open for ``symbol``."""


class OrderGateway(Protocol):
    def place_stop_order(
        self,
        account: str,
        symbol: str,
        position_id: str,
        side: OrderSide,
        trigger_price: Decimal,
        quantity: Decimal,
        time_in_force: TimeInForce = TimeInForce.GTC,
    ) -> OrderResult:
        ...

    def cancel_order(self, order_id: str) -> OrderResult:
        ...

    def close_position(self, position_id: str) -> OrderResult:
        ...

    def list_open_orders(self, symbol: str) -> List[Order]:
        ...
