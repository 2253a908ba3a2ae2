"""
Inventory repository (persistence).

This module provides *only* persistence operations for InventoryUnit rows.
Allocation (select AVAILABLE units, mark DELIVERED, bind order) is a single
call to the `allocate_inventory` Postgres function so that concurrent
requests cannot hand the same unit to two orders.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from domain.errors import InsufficientStockError, StorageError
from domain.inventory import InventoryUnit, UnitStatus, normalize_import_batch
from domain.time import parse_utc_datetime, to_iso_utc, utc_now
from repositories import client as db_client
from repositories.query import call_function, run_count, run_query

logger = logging.getLogger(__name__)

# Supabase table name for inventory units.
# Keep this aligned with sql/schema.sql.
_INVENTORY_TABLE: str = "inventory"

# Default PostgREST max-rows; pages are requested at this size.
_PAGE_SIZE: int = 1000


def row_to_unit(row: Mapping[str, Any]) -> InventoryUnit:
    """Convert a Supabase row into an InventoryUnit."""

    order_id = row.get("order_id")
    created_at = row.get("created_at")
    return InventoryUnit(
        id=UUID(str(row["id"])),
        product_id=int(row["product_id"]),
        content=str(row["content"]),
        status=UnitStatus(str(row["status"])),
        order_id=UUID(str(order_id)) if order_id is not None else None,
        created_at=parse_utc_datetime(created_at) if created_at is not None else None,
    )


def count_available(product_id: int) -> int:
    """Number of AVAILABLE units for a product: the stock figure shown to buyers."""

    query = (
        db_client.get_supabase()
        .table(_INVENTORY_TABLE)
        .select("id", count="exact")
        .eq("product_id", product_id)
        .eq("status", UnitStatus.AVAILABLE.value)
        .limit(1)
    )
    return run_count(query, "count available inventory")


def stock_summary() -> Dict[int, int]:
    """Available unit count per product (products with no stock are omitted)."""

    supabase = db_client.get_supabase()

    count_query = (
        supabase.table(_INVENTORY_TABLE)
        .select("id", count="exact")
        .eq("status", UnitStatus.AVAILABLE.value)
        .limit(1)
    )
    total_count = run_count(count_query, "count available inventory")

    # PostgREST caps every response at max-rows, so page through with range()
    all_rows: List[Dict[str, Any]] = []
    offset = 0
    while offset < total_count:
        query_page = (
            supabase.table(_INVENTORY_TABLE)
            .select("product_id")
            .eq("status", UnitStatus.AVAILABLE.value)
            .order("id")
            .range(offset, offset + _PAGE_SIZE - 1)
        )
        page_rows = run_query(query_page, "summarize inventory")
        if not page_rows:
            break

        all_rows.extend(page_rows)
        offset += len(page_rows)

    return dict(Counter(int(row["product_id"]) for row in all_rows))


def list_units_for_order(order_id: UUID) -> List[InventoryUnit]:
    """Units bound to an order (empty unless the order was approved)."""

    query = (
        db_client.get_supabase()
        .table(_INVENTORY_TABLE)
        .select("*")
        .eq("order_id", str(order_id))
        .order("product_id")
    )
    return [row_to_unit(row) for row in run_query(query, "fetch delivered inventory")]


def import_units(
    product_id: int,
    contents: Iterable[str],
    created_at: Optional[datetime] = None,
) -> List[InventoryUnit]:
    """
    Insert new AVAILABLE units for a product (warehouse import).

    Blank lines and duplicates inside the batch are dropped before insert.
    """

    cleaned = normalize_import_batch(contents)
    if not cleaned:
        return []

    created_iso = to_iso_utc(created_at or utc_now(), name="created_at")
    payload = [
        {
            "product_id": product_id,
            "content": content,
            "status": UnitStatus.AVAILABLE.value,
            "order_id": None,
            "created_at": created_iso,
        }
        for content in cleaned
    ]

    query = db_client.get_supabase().table(_INVENTORY_TABLE).insert(payload)
    rows = run_query(query, "import inventory")

    logger.info(
        "Inventory imported",
        extra={"product_id": product_id, "units": len(rows), "submitted": len(cleaned)},
    )
    return [row_to_unit(row) for row in rows]


def allocate_units(order_id: UUID, product_id: int, quantity: int) -> List[InventoryUnit]:
    """
    Atomically deliver `quantity` AVAILABLE units of a product to an order.

    Calls allocate_inventory() which:
    - Returns the already-bound units if this order was allocated this product before
    - Locks candidate rows (FOR UPDATE SKIP LOCKED)
    - Fails without changes if fewer than `quantity` are available
    - Marks the units DELIVERED and sets order_id

    Raises:
        InsufficientStockError: fewer than `quantity` units were available
        StorageError: the database call failed
    """

    if quantity <= 0:
        raise ValueError("quantity must be a positive integer")

    result = call_function(
        "allocate_inventory",
        {
            "p_order_id": str(order_id),
            "p_product_id": product_id,
            "p_quantity": quantity,
        },
    )

    if result.get("success"):
        return [row_to_unit(row) for row in result.get("units") or []]

    if result.get("error") == "INSUFFICIENT_STOCK":
        raise InsufficientStockError(
            product_id=int(result.get("product_id", product_id)),
            requested=int(result.get("requested", quantity)),
            available=int(result.get("available", 0)),
        )

    raise StorageError(
        f"Failed to allocate inventory: {result.get('error')} {result.get('message') or ''}".strip()
    )


__all__ = [
    "allocate_units",
    "count_available",
    "import_units",
    "list_units_for_order",
    "row_to_unit",
    "stock_summary",
]
