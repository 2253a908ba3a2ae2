"""
Domain: error taxonomy for the order workflow.

Every failure the buyer or the admin can hit is one of these types. Routers
translate them to HTTP responses; services never swallow them.

A payment that has not shown up in the bank feed yet is NOT an exception:
it is a negative VerificationResult (see services/payment_verifier.py).
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID


class OrderSystemError(Exception):
    """Base class for all order workflow errors."""


class ConfigurationError(OrderSystemError):
    """A required credential or setting is missing. Not retryable by the buyer."""


class StorageError(OrderSystemError, RuntimeError):
    """The database rejected or failed a read/write. Safe to retry."""


class OrderNotFoundError(OrderSystemError):
    def __init__(self, order_id: UUID):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class StockUnavailableError(OrderSystemError):
    """Raised at order creation when live stock is below the requested quantity."""

    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Product {product_id} only has {available} unit(s) left "
            f"(requested {requested})"
        )


class InsufficientStockError(OrderSystemError):
    """
    Raised at approval time when a line item cannot be fully allocated.

    Distinct from StockUnavailableError: the order was valid when created but
    other demand consumed the units before an admin approved it.
    """

    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient inventory for product {product_id}. "
            f"Requested: {requested}, Available: {available}"
        )


class InvalidStateTransitionError(OrderSystemError):
    def __init__(
        self,
        order_id: UUID,
        current: str,
        target: str,
        detail: Optional[str] = None,
    ):
        self.order_id = order_id
        self.current = current
        self.target = target
        message = f"Order {order_id} cannot move from {current} to {target}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DeliveryNotAvailableError(OrderSystemError):
    """Delivered accounts were requested for an order that has not been completed."""

    def __init__(self, order_id: UUID, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} has no delivered accounts (status: {status})")


class OrderCodeConflictError(OrderSystemError):
    """Every generated order code collided with an existing one."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique order code after {attempts} attempts")


class UpstreamConnectivityError(OrderSystemError):
    """The bank transaction feed was unreachable or answered with a non-2xx status."""

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.status_code = status_code
        self.detail = detail
        if status_code is not None:
            super().__init__(f"Payment feed error (HTTP {status_code}): {detail}")
        else:
            super().__init__(f"Payment feed unreachable: {detail}")


class ResponseFormatError(OrderSystemError):
    """The bank transaction feed answered with a payload we cannot interpret."""


__all__ = [
    "OrderSystemError",
    "ConfigurationError",
    "StorageError",
    "OrderNotFoundError",
    "StockUnavailableError",
    "InsufficientStockError",
    "InvalidStateTransitionError",
    "DeliveryNotAvailableError",
    "OrderCodeConflictError",
    "UpstreamConnectivityError",
    "ResponseFormatError",
]
