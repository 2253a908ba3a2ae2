"""
Domain: Inventory units (the unit of fulfillment).

Contract excerpts implemented here:
- Each sellable digital account is one InventoryUnit belonging to a product.
- Availability: a unit counts toward stock iff its status is AVAILABLE.
- A unit moves AVAILABLE -> DELIVERED exactly once, at order completion, and
  is then permanently bound to exactly one order.

This module contains only pure domain entities/value objects: no I/O, no database, no frameworks.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional
from uuid import UUID

from .time import require_utc_timestamp


class UnitStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    # Kept for rows written by older warehouse tooling; the order workflow
    # allocates straight from AVAILABLE to DELIVERED.
    RESERVED = "RESERVED"
    DELIVERED = "DELIVERED"


@dataclass(frozen=True, slots=True)
class InventoryUnit:
    """
    Immutable snapshot of one sellable account.

    `content` is the opaque payload handed to the buyer (e.g. "user|pass|2fa").
    """

    id: UUID
    product_id: int
    content: str
    status: UnitStatus
    order_id: Optional[UUID] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)
        if self.status == UnitStatus.DELIVERED and self.order_id is None:
            raise ValueError("A delivered unit must be bound to an order")
        if self.status == UnitStatus.AVAILABLE and self.order_id is not None:
            raise ValueError("An available unit cannot be bound to an order")

    @property
    def is_available(self) -> bool:
        return self.status == UnitStatus.AVAILABLE

    def deliver(self, order_id: UUID) -> "InventoryUnit":
        """Return a new unit bound to `order_id`; a unit can only be delivered once."""

        if self.status != UnitStatus.AVAILABLE:
            raise ValueError(f"Inventory unit {self.id} is not available (status: {self.status.value})")
        return replace(self, status=UnitStatus.DELIVERED, order_id=order_id)


def normalize_import_batch(contents: Iterable[str]) -> List[str]:
    """
    Clean a warehouse import batch: one account per entry.

    Surrounding whitespace is stripped, blank entries are dropped and
    duplicates within the batch keep their first occurrence.
    """

    seen: set[str] = set()
    cleaned: List[str] = []
    for raw in contents:
        text = raw.strip()
        if not text or text in seen:
            continue
        seen.add(text)
        cleaned.append(text)
    return cleaned


def render_delivery_file(units: Iterable[InventoryUnit]) -> str:
    """Newline-joined delivered contents, the format buyers download."""

    return "\n".join(unit.content for unit in units)


__all__ = [
    "InventoryUnit",
    "UnitStatus",
    "normalize_import_batch",
    "render_delivery_file",
]
