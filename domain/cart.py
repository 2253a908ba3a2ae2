"""
Domain: session-scoped shopping cart.

The cart is a plain value owned by one buyer session and handed to
OrderService.create_order. Persisting it across page reloads belongs to the
client tier.

Rules:
- Quantities are clamped into [1, stock] on add and update.
- Adding a product already in the cart increases its quantity (still clamped).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import List

from .order import OrderLine


@dataclass(frozen=True, slots=True)
class CartLine:
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int
    stock: int

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


def _clamp(quantity: int, stock: int) -> int:
    return max(1, min(quantity, stock))


@dataclass(slots=True)
class Cart:
    lines: List[CartLine] = field(default_factory=list)

    def _index(self, product_id: int) -> int:
        for idx, line in enumerate(self.lines):
            if line.product_id == product_id:
                return idx
        return -1

    def add(self, line: CartLine) -> None:
        if line.stock <= 0:
            raise ValueError(f"Product {line.product_id} is out of stock")

        idx = self._index(line.product_id)
        if idx < 0:
            self.lines.append(replace(line, quantity=_clamp(line.quantity, line.stock)))
            return

        existing = self.lines[idx]
        self.lines[idx] = replace(
            existing,
            stock=line.stock,
            quantity=_clamp(existing.quantity + line.quantity, line.stock),
        )

    def update_quantity(self, product_id: int, quantity: int) -> None:
        idx = self._index(product_id)
        if idx < 0:
            raise KeyError(product_id)
        line = self.lines[idx]
        self.lines[idx] = replace(line, quantity=_clamp(quantity, line.stock))

    def remove(self, product_id: int) -> None:
        self.lines = [line for line in self.lines if line.product_id != product_id]

    def clear(self) -> None:
        self.lines = []

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines)

    def total_price(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0"))

    def to_order_lines(self) -> List[OrderLine]:
        return [
            OrderLine(product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price)
            for line in self.lines
        ]


__all__ = ["Cart", "CartLine"]
