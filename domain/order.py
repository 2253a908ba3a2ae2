"""
Domain: Order aggregate and its lifecycle.

Contract excerpts implemented here:
- An Order is one purchase attempt: a header (buyer, total, status, code,
  expiry) plus line items.
- total_amount equals the sum of line subtotals at creation time, and each
  subtotal is unit_price * quantity.
- unit_price is a snapshot taken at order time; later catalog price changes
  never touch it.
- expires_at is only meaningful while status is PENDING_PAYMENT.
- Status moves only along ALLOWED_TRANSITIONS; terminal states never change.

This module contains only pure domain entities/value objects: no I/O, no database, no frameworks.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from .errors import InvalidStateTransitionError
from .time import require_utc_timestamp

AUTO_CANCEL_NOTE: str = "auto-cancelled: payment window elapsed"

_ORDER_CODE_ALPHABET: str = string.ascii_uppercase + string.digits
_ORDER_CODE_LENGTH: int = 6

# Money columns are numeric(14, 2).
_CENT: Decimal = Decimal("0.01")


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    WAITING_APPROVAL = "WAITING_APPROVAL"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Mapping[OrderStatus, frozenset] = {
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.WAITING_APPROVAL, OrderStatus.CANCELLED}),
    OrderStatus.WAITING_APPROVAL: frozenset({OrderStatus.COMPLETED, OrderStatus.REJECTED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def generate_order_code(prefix: str = "MMO") -> str:
    """Return a short token like 'MMO-AB12CD' to embed in the bank transfer memo."""

    suffix = "".join(secrets.choice(_ORDER_CODE_ALPHABET) for _ in range(_ORDER_CODE_LENGTH))
    return f"{prefix}-{suffix}"


@dataclass(frozen=True, slots=True)
class OrderLine:
    """A requested (product, quantity, price) triple, before it belongs to an order."""

    product_id: int
    quantity: int
    unit_price: Decimal

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be a positive integer")
        if self.unit_price < 0:
            raise ValueError("unit_price must not be negative")
        if self.unit_price != self.unit_price.quantize(_CENT):
            raise ValueError("unit_price must have at most 2 decimal places")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True, slots=True)
class OrderItem:
    """Persisted line item of an order."""

    order_id: UUID
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    product_name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be a positive integer")
        if self.subtotal != self.unit_price * self.quantity:
            raise ValueError("subtotal must equal unit_price * quantity")


@dataclass(frozen=True, slots=True)
class Order:
    """
    Immutable snapshot of an order header and its line items.

    Transitions return a new instance; they never mutate the snapshot that
    was read from storage.
    """

    id: UUID
    order_code: str
    buyer_id: UUID
    total_amount: Decimal
    status: OrderStatus
    expires_at: datetime
    created_at: datetime
    admin_note: Optional[str] = None
    items: Tuple[OrderItem, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        require_utc_timestamp("expires_at", self.expires_at)
        require_utc_timestamp("created_at", self.created_at)
        if self.total_amount < 0:
            raise ValueError("total_amount must not be negative")

    def is_overdue(self, now: datetime) -> bool:
        """True when the payment window elapsed and the order still awaits payment."""

        require_utc_timestamp("now", now)
        return self.status == OrderStatus.PENDING_PAYMENT and now > self.expires_at

    def seconds_remaining(self, now: datetime) -> int:
        """Countdown shown to the buyer; 0 once the window closed or payment is no longer expected."""

        require_utc_timestamp("now", now)
        if self.status != OrderStatus.PENDING_PAYMENT:
            return 0
        return max(0, int((self.expires_at - now).total_seconds()))

    def require_status(self, expected: OrderStatus, target: OrderStatus) -> None:
        if self.status != expected:
            raise InvalidStateTransitionError(self.id, self.status.value, target.value)

    def transition_to(self, target: OrderStatus, *, admin_note: Optional[str] = None) -> "Order":
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateTransitionError(self.id, self.status.value, target.value)
        return replace(
            self,
            status=target,
            admin_note=admin_note if admin_note is not None else self.admin_note,
        )

    def with_items(self, items: Iterable[OrderItem]) -> "Order":
        return replace(self, items=tuple(items))


def total_for(lines: Iterable[OrderLine]) -> Decimal:
    return sum((line.subtotal for line in lines), Decimal("0"))


def expiry_for(created_at: datetime, payment_window: timedelta) -> datetime:
    require_utc_timestamp("created_at", created_at)
    if payment_window <= timedelta(0):
        raise ValueError("payment_window must be positive")
    return created_at + payment_window


def merge_lines(lines: Iterable[OrderLine]) -> List[OrderLine]:
    """
    Collapse repeated products into one line each.

    Two lines for the same product at different prices are ambiguous and rejected.
    """

    merged: dict[int, OrderLine] = {}
    for line in lines:
        existing = merged.get(line.product_id)
        if existing is None:
            merged[line.product_id] = line
            continue
        if existing.unit_price != line.unit_price:
            raise ValueError(f"Conflicting prices for product {line.product_id}")
        merged[line.product_id] = OrderLine(
            product_id=line.product_id,
            quantity=existing.quantity + line.quantity,
            unit_price=line.unit_price,
        )
    return list(merged.values())


__all__ = [
    "ALLOWED_TRANSITIONS",
    "AUTO_CANCEL_NOTE",
    "Order",
    "OrderItem",
    "OrderLine",
    "OrderStatus",
    "expiry_for",
    "generate_order_code",
    "merge_lines",
    "total_for",
]
