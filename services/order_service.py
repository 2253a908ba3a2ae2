"""
Order lifecycle service.

Drives an order through its state machine:

    PENDING_PAYMENT --confirm_payment--> WAITING_APPROVAL --approve--> COMPLETED
          |                                      |
          +--payment window elapsed--> CANCELLED +--reject--> REJECTED

Handles:
- Live stock validation and atomic creation of header + line items
- Order code generation with bounded regeneration on collision
- Payment confirmation through the bank feed (services.payment_verifier)
- Admin approval (atomic inventory delivery) and rejection
- Server-side expiry sweep, independent of any buyer session

Every status change is a conditional write on the current status, and the
order returned to the caller is the row the database wrote, never a local
guess.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple
from uuid import UUID

from config import Settings, get_settings
from domain.cart import Cart
from domain.errors import (
    DeliveryNotAvailableError,
    InsufficientStockError,
    InvalidStateTransitionError,
    OrderCodeConflictError,
    OrderNotFoundError,
    StockUnavailableError,
)
from domain.inventory import InventoryUnit, render_delivery_file
from domain.order import (
    AUTO_CANCEL_NOTE,
    Order,
    OrderLine,
    OrderStatus,
    expiry_for,
    generate_order_code,
    merge_lines,
    total_for,
)
from domain.time import require_utc_timestamp, utc_now
from repositories import inventory_repository, order_repository
from services.payment_verifier import VerificationResult, verify_payment

logger = logging.getLogger(__name__)

Verifier = Callable[..., VerificationResult]


@dataclass(frozen=True, slots=True)
class PaymentConfirmation:
    """
    Result of a buyer's "I have paid" action.

    matched: True if the transfer was found and the order now awaits approval
    message: plain-language text for the buyer
    order: the order as currently stored
    """
    matched: bool
    message: str
    order: Order


@dataclass(frozen=True, slots=True)
class ApprovalResult:
    order: Order
    delivered_units: List[InventoryUnit]


@dataclass(frozen=True, slots=True)
class OrderDetail:
    """Order with line items and, once COMPLETED, the delivered accounts."""
    order: Order
    delivered_units: List[InventoryUnit]


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utc_now()
    require_utc_timestamp("now", now)
    return now


def _raise_lost_race(order_id: UUID, target: OrderStatus) -> None:
    """A conditional update matched nothing: report what the order is now."""

    current = order_repository.get_order(order_id, with_items=False)
    if current is None:
        raise OrderNotFoundError(order_id)
    raise InvalidStateTransitionError(
        order_id,
        current.status.value,
        target.value,
        detail="the order was changed by another request",
    )


def _require_order(order_id: UUID, *, with_items: bool = False) -> Order:
    order = order_repository.get_order(order_id, with_items=with_items)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def create_order(
    buyer_id: UUID,
    lines: Sequence[OrderLine],
    *,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    code_factory: Optional[Callable[[], str]] = None,
) -> Order:
    """
    Create a PENDING_PAYMENT order for the given lines.

    Process:
    1. Merge repeated products and validate quantities/prices
    2. Check live AVAILABLE stock for every product
    3. Generate an order code and insert header + items atomically
    4. On order code collision, regenerate (bounded by ORDER_CODE_MAX_ATTEMPTS)

    No inventory is reserved here; units are only bound at approval.

    Raises:
        ValueError: empty order
        StockUnavailableError: a product has fewer units than requested
        OrderCodeConflictError: every generated code collided
        StorageError: database failure (nothing is persisted)
    """
    settings = settings or get_settings()
    now = _resolve_now(now)
    code_factory = code_factory or (lambda: generate_order_code(settings.order_code_prefix))

    merged = merge_lines(lines)
    if not merged:
        raise ValueError("Cannot create an order without items")

    for line in merged:
        available = inventory_repository.count_available(line.product_id)
        if available < line.quantity:
            logger.info(
                "Order rejected: insufficient stock",
                extra={"product_id": line.product_id, "requested": line.quantity, "available": available},
            )
            raise StockUnavailableError(line.product_id, line.quantity, available)

    total = total_for(merged)
    expires_at = expiry_for(now, settings.payment_window)

    for attempt in range(1, settings.order_code_max_attempts + 1):
        order_code = code_factory()
        order = order_repository.insert_order_with_items(
            order_code=order_code,
            buyer_id=buyer_id,
            lines=merged,
            total_amount=total,
            expires_at=expires_at,
            created_at=now,
        )
        if order is not None:
            logger.info(
                "Order created",
                extra={
                    "order_id": str(order.id),
                    "order_code": order.order_code,
                    "buyer_id": str(buyer_id),
                    "total_amount": str(order.total_amount),
                    "expires_at": order.expires_at.isoformat(),
                },
            )
            return order

        logger.warning("Order code collision, regenerating", extra={"order_code": order_code, "attempt": attempt})

    raise OrderCodeConflictError(settings.order_code_max_attempts)


def create_order_from_cart(
    buyer_id: UUID,
    cart: Cart,
    *,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Order:
    """Create an order from a session cart. The cart itself is left untouched."""

    if cart.is_empty:
        raise ValueError("Cart is empty")
    return create_order(buyer_id, cart.to_order_lines(), now=now, settings=settings)


def confirm_payment(
    order_id: UUID,
    order_code: str,
    expected_amount: Decimal,
    *,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    verifier: Optional[Verifier] = None,
) -> PaymentConfirmation:
    """
    Check the bank feed for the order's transfer and, if found, move the
    order to WAITING_APPROVAL.

    A "not found yet" answer leaves the order untouched and can be retried.
    The amount checked is never below the stored order total.

    Raises:
        OrderNotFoundError: unknown order id
        InvalidStateTransitionError: order is not PENDING_PAYMENT, or its
            payment window elapsed (the order is cancelled first)
        ValueError: order_code does not belong to this order
        ConfigurationError, UpstreamConnectivityError, ResponseFormatError: feed problems
    """
    settings = settings or get_settings()
    verifier = verifier or verify_payment
    now = _resolve_now(now)

    order = _require_order(order_id)
    order.require_status(OrderStatus.PENDING_PAYMENT, OrderStatus.WAITING_APPROVAL)

    if order_code.strip().upper() != order.order_code.upper():
        raise ValueError("Order code does not match this order")

    if order.is_overdue(now):
        current = cancel_if_overdue(order_id, now=now)
        raise InvalidStateTransitionError(
            order_id,
            current.status.value,
            OrderStatus.WAITING_APPROVAL.value,
            detail="the payment window has elapsed",
        )

    amount = max(Decimal(expected_amount), order.total_amount)
    result = verifier(order.order_code, amount, settings=settings)

    if not result.matched:
        return PaymentConfirmation(matched=False, message=result.message, order=order)

    updated = order_repository.update_status(
        order_id,
        expected=OrderStatus.PENDING_PAYMENT,
        target=OrderStatus.WAITING_APPROVAL,
    )
    if updated is None:
        _raise_lost_race(order_id, OrderStatus.WAITING_APPROVAL)

    logger.info("Order awaiting approval", extra={"order_id": str(order_id), "order_code": order.order_code})
    return PaymentConfirmation(
        matched=True,
        message="Payment confirmed. Your order is waiting for admin approval.",
        order=updated,
    )


def approve_order(order_id: UUID) -> ApprovalResult:
    """
    Approve a WAITING_APPROVAL order: deliver inventory for every line and
    mark it COMPLETED, all in one database transaction.

    Raises:
        OrderNotFoundError, InvalidStateTransitionError
        InsufficientStockError: a line could not be fully allocated; nothing
            was delivered and the order is still WAITING_APPROVAL
    """
    try:
        order, units = order_repository.approve_order(order_id)
    except InsufficientStockError as e:
        logger.warning(
            "Approval blocked by insufficient stock",
            extra={
                "order_id": str(order_id),
                "product_id": e.product_id,
                "requested": e.requested,
                "available": e.available,
            },
        )
        raise

    logger.info("Order approved", extra={"order_id": str(order_id), "delivered_units": len(units)})
    return ApprovalResult(order=order, delivered_units=units)


def reject_order(order_id: UUID, reason: str) -> Order:
    """
    Reject a WAITING_APPROVAL order with a mandatory reason shown to the buyer.

    Raises:
        ValueError: blank reason
        OrderNotFoundError, InvalidStateTransitionError
    """
    note = (reason or "").strip()
    if not note:
        raise ValueError("A rejection reason is required")

    order = _require_order(order_id)
    order.require_status(OrderStatus.WAITING_APPROVAL, OrderStatus.REJECTED)

    updated = order_repository.update_status(
        order_id,
        expected=OrderStatus.WAITING_APPROVAL,
        target=OrderStatus.REJECTED,
        admin_note=note,
    )
    if updated is None:
        _raise_lost_race(order_id, OrderStatus.REJECTED)

    logger.info("Order rejected", extra={"order_id": str(order_id), "reason": note})
    return updated


def expire_overdue_orders(*, now: Optional[datetime] = None) -> List[Order]:
    """
    Cancel every PENDING_PAYMENT order whose payment window has elapsed.

    Safe to run concurrently from several processes; returns only the orders
    this call cancelled.
    """
    now = _resolve_now(now)
    cancelled = order_repository.cancel_expired(now, AUTO_CANCEL_NOTE)
    for order in cancelled:
        logger.info(
            "Order auto-cancelled",
            extra={"order_id": str(order.id), "order_code": order.order_code, "expires_at": order.expires_at.isoformat()},
        )
    return cancelled


def cancel_if_overdue(order_id: UUID, *, now: Optional[datetime] = None) -> Order:
    """
    Single-order expiry check, triggered when the buyer's countdown hits zero.

    A no-op (returns the stored order) if the window has not elapsed or the
    order already left PENDING_PAYMENT.
    """
    now = _resolve_now(now)
    order = _require_order(order_id)
    if not order.is_overdue(now):
        return order

    updated = order_repository.update_status(
        order_id,
        expected=OrderStatus.PENDING_PAYMENT,
        target=OrderStatus.CANCELLED,
        admin_note=AUTO_CANCEL_NOTE,
    )
    if updated is None:
        return _require_order(order_id)

    logger.info("Order auto-cancelled", extra={"order_id": str(order_id), "order_code": order.order_code})
    return updated


def get_order_detail(order_id: UUID, *, buyer_id: Optional[UUID] = None) -> OrderDetail:
    """
    Order header, line items and (if COMPLETED) delivered accounts.

    When `buyer_id` is given, orders of other buyers are reported as not found.
    """
    order = _require_order(order_id, with_items=True)
    if buyer_id is not None and order.buyer_id != buyer_id:
        raise OrderNotFoundError(order_id)

    units: List[InventoryUnit] = []
    if order.status == OrderStatus.COMPLETED:
        units = inventory_repository.list_units_for_order(order_id)
    return OrderDetail(order=order, delivered_units=units)


def list_orders_for_buyer(buyer_id: UUID) -> List[Order]:
    return order_repository.list_orders(buyer_id=buyer_id)


def list_orders_for_admin(
    *,
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Order]:
    """
    Admin order list, newest first. Runs the expiry sweep before reading so
    the list never shows stale PENDING_PAYMENT orders.

    `search` is either a full buyer id (exact match) or a case-insensitive
    substring of the order code. Both filters run in the database, so older
    orders are found even when they fall outside the newest page.
    """
    expire_overdue_orders(now=now)

    needle = (search or "").strip()
    if not needle:
        return order_repository.list_orders(status=status)

    try:
        buyer_id = UUID(needle)
    except ValueError:
        return order_repository.list_orders(status=status, code_contains=needle)
    return order_repository.list_orders(status=status, buyer_id=buyer_id)


def export_delivered_content(order_id: UUID, buyer_id: UUID) -> Tuple[str, str]:
    """
    Build the buyer's download of delivered accounts.

    Returns:
        (filename, content) where filename is "<order_code>.txt" and content
        has one account per line
    """
    detail = get_order_detail(order_id, buyer_id=buyer_id)
    if detail.order.status != OrderStatus.COMPLETED or not detail.delivered_units:
        raise DeliveryNotAvailableError(order_id, detail.order.status.value)
    return f"{detail.order.order_code}.txt", render_delivery_file(detail.delivered_units)


__all__ = [
    "ApprovalResult",
    "OrderDetail",
    "PaymentConfirmation",
    "approve_order",
    "cancel_if_overdue",
    "confirm_payment",
    "create_order",
    "create_order_from_cart",
    "expire_overdue_orders",
    "export_delivered_content",
    "get_order_detail",
    "list_orders_for_admin",
    "list_orders_for_buyer",
    "reject_order",
]
