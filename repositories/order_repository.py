"""
Order repository (persistence).

This module provides *only* persistence operations for the Order aggregate
(`orders` header rows and `order_items` lines). Status changes are
conditional updates (compare-and-swap on the current status): a write that
matches no row means another request already moved the order, and the
caller gets None instead of a silently applied transition.

Multi-row atomic work (create header + lines, approve + allocate) is done by
Postgres functions; see sql/functions.sql.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from domain.errors import InsufficientStockError, InvalidStateTransitionError, OrderNotFoundError, StorageError
from domain.inventory import InventoryUnit
from domain.order import Order, OrderItem, OrderLine, OrderStatus
from domain.time import parse_utc_datetime, to_iso_utc
from repositories import client as db_client
from repositories.inventory_repository import row_to_unit
from repositories.query import call_function, run_query

# Supabase table names. Keep these aligned with sql/schema.sql.
_ORDERS_TABLE: str = "orders"
_ORDER_ITEMS_TABLE: str = "order_items"


def _row_to_item(row: Mapping[str, Any]) -> OrderItem:
    product = row.get("products")
    product_name = product.get("name") if isinstance(product, Mapping) else None
    return OrderItem(
        order_id=UUID(str(row["order_id"])),
        product_id=int(row["product_id"]),
        quantity=int(row["quantity"]),
        unit_price=Decimal(str(row["unit_price"])),
        subtotal=Decimal(str(row["subtotal"])),
        product_name=product_name,
    )


def _row_to_order(row: Mapping[str, Any], items: Sequence[OrderItem] = ()) -> Order:
    """Convert a Supabase row into an Order."""

    return Order(
        id=UUID(str(row["id"])),
        order_code=str(row["order_code"]),
        buyer_id=UUID(str(row["user_id"])),
        total_amount=Decimal(str(row["total_amount"])),
        status=OrderStatus(str(row["status"])),
        expires_at=parse_utc_datetime(row["expires_at"]),
        created_at=parse_utc_datetime(row["created_at"]),
        admin_note=row.get("admin_note"),
        items=tuple(items),
    )


def insert_order_with_items(
    *,
    order_code: str,
    buyer_id: UUID,
    lines: Sequence[OrderLine],
    total_amount: Decimal,
    expires_at: datetime,
    created_at: datetime,
) -> Optional[Order]:
    """
    Insert an order header and its line items in one transaction.

    Returns:
    - The created Order with its items
    - None if `order_code` is already taken (caller regenerates and retries)
    """

    result = call_function(
        "create_order_with_items",
        {
            "p_user_id": str(buyer_id),
            "p_order_code": order_code,
            "p_total_amount": str(total_amount),
            "p_status": OrderStatus.PENDING_PAYMENT.value,
            "p_expires_at": to_iso_utc(expires_at, name="expires_at"),
            "p_created_at": to_iso_utc(created_at, name="created_at"),
            "p_items": [
                {
                    "product_id": line.product_id,
                    "quantity": line.quantity,
                    "unit_price": str(line.unit_price),
                    "subtotal": str(line.subtotal),
                }
                for line in lines
            ],
        },
    )

    if not result.get("success"):
        if result.get("error") in ("ORDER_CODE_CONFLICT", "UNIQUE_VIOLATION"):
            return None
        raise StorageError(f"Failed to create order: {result.get('error')} {result.get('message') or ''}".strip())

    items = [_row_to_item(row) for row in result.get("items") or []]
    return _row_to_order(result["order"], items)


def list_order_items(order_id: UUID) -> List[OrderItem]:
    query = (
        db_client.get_supabase()
        .table(_ORDER_ITEMS_TABLE)
        .select("*, products(name)")
        .eq("order_id", str(order_id))
    )
    return [_row_to_item(row) for row in run_query(query, "fetch order items")]


def get_order(order_id: UUID, *, with_items: bool = True) -> Optional[Order]:
    """
    Fetch one order by id.

    Returns:
    - Order (with line items unless with_items=False) or None if not found
    """

    query = (
        db_client.get_supabase()
        .table(_ORDERS_TABLE)
        .select("*")
        .eq("id", str(order_id))
        .limit(1)
    )
    rows = run_query(query, "fetch order")
    if not rows:
        return None

    items = list_order_items(order_id) if with_items else ()
    return _row_to_order(rows[0], items)


def list_orders(
    *,
    buyer_id: Optional[UUID] = None,
    status: Optional[OrderStatus] = None,
    code_contains: Optional[str] = None,
    limit: int = 200,
) -> List[Order]:
    """
    List order headers, newest first. Line items are not loaded.

    `code_contains` is a case-insensitive substring match on order_code,
    applied by the database before `limit`.
    """

    query = db_client.get_supabase().table(_ORDERS_TABLE).select("*")
    if buyer_id is not None:
        query = query.eq("user_id", str(buyer_id))
    if status is not None:
        query = query.eq("status", status.value)
    if code_contains:
        # % and _ are LIKE wildcards; order codes never contain them.
        needle = code_contains.replace("%", "").replace("_", "")
        query = query.ilike("order_code", f"%{needle}%")
    query = query.order("created_at", desc=True).limit(limit)

    return [_row_to_order(row) for row in run_query(query, "list orders")]


def update_status(
    order_id: UUID,
    *,
    expected: OrderStatus,
    target: OrderStatus,
    admin_note: Optional[str] = None,
) -> Optional[Order]:
    """
    Move an order from `expected` to `target` status.

    Must only update if the stored status is still `expected`.

    Returns:
    - The updated Order header (no items) as written by the database
    - None if the order does not exist or is no longer in `expected`
    """

    payload: dict[str, Any] = {"status": target.value}
    if admin_note is not None:
        payload["admin_note"] = admin_note

    query = (
        db_client.get_supabase()
        .table(_ORDERS_TABLE)
        .update(payload)
        .eq("id", str(order_id))
        .eq("status", expected.value)
    )
    rows = run_query(query, "update order status")
    if not rows:
        return None
    return _row_to_order(rows[0])


def cancel_expired(now: datetime, admin_note: str) -> List[Order]:
    """
    Cancel every PENDING_PAYMENT order whose expires_at is before `now`.

    The status filter is part of the UPDATE itself, so an order that was
    confirmed after a stale read is never cancelled, and running this from
    several processes at once cancels each order exactly once.
    """

    query = (
        db_client.get_supabase()
        .table(_ORDERS_TABLE)
        .update({"status": OrderStatus.CANCELLED.value, "admin_note": admin_note})
        .eq("status", OrderStatus.PENDING_PAYMENT.value)
        .lt("expires_at", to_iso_utc(now, name="now"))
    )
    return [_row_to_order(row) for row in run_query(query, "cancel expired orders")]


def approve_order(order_id: UUID) -> Tuple[Order, List[InventoryUnit]]:
    """
    Approve a WAITING_APPROVAL order and deliver its inventory atomically.

    Calls approve_order() which:
    - Locks the order row and checks status = WAITING_APPROVAL
    - For each line item locks `quantity` AVAILABLE units (FOR UPDATE SKIP LOCKED)
    - Aborts with no changes if any line is short
    - Marks all units DELIVERED, binds them to the order, sets status COMPLETED

    Raises:
        OrderNotFoundError, InvalidStateTransitionError, InsufficientStockError, StorageError
    """

    result = call_function("approve_order", {"p_order_id": str(order_id)})

    if result.get("success"):
        units = [row_to_unit(row) for row in result.get("units") or []]
        return _row_to_order(result["order"]), units

    error = result.get("error")
    if error == "NOT_FOUND":
        raise OrderNotFoundError(order_id)
    if error == "INVALID_STATE":
        raise InvalidStateTransitionError(
            order_id,
            str(result.get("status")),
            OrderStatus.COMPLETED.value,
        )
    if error == "INSUFFICIENT_STOCK":
        raise InsufficientStockError(
            product_id=int(result["product_id"]),
            requested=int(result["requested"]),
            available=int(result["available"]),
        )
    raise StorageError(f"Failed to approve order: {error} {result.get('message') or ''}".strip())


__all__ = [
    "approve_order",
    "cancel_expired",
    "get_order",
    "insert_order_with_items",
    "list_order_items",
    "list_orders",
    "update_status",
]
