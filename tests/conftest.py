"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides an in-memory stand-in for the
Supabase client. The stand-in implements the query-builder subset the
repositories use plus the three Postgres functions from sql/functions.sql,
including their all-or-nothing behavior and the order_code unique index.
"""

from __future__ import annotations

import re
import sys
from copy import deepcopy
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import pytest
from postgrest.exceptions import APIError

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import Settings  # noqa: E402


def _sort_key(value: Any) -> Any:
    if isinstance(value, str) and "T" in value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def _same(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is b
    return str(a) == str(b)


class _Response:
    def __init__(self, data: Any, count: Optional[int] = None):
        self.data = data
        self.count = count


class _Query:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._order: Optional[tuple[str, bool]] = None
        self._limit: Optional[int] = None
        self._offset: int = 0
        self._count: Optional[str] = None

    def select(self, columns: str = "*", count: Optional[str] = None) -> "_Query":
        self._op = "select"
        self._count = count
        return self

    def insert(self, payload: Any) -> "_Query":
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload: Dict[str, Any]) -> "_Query":
        self._op = "update"
        self._payload = payload
        return self

    def eq(self, column: str, value: Any) -> "_Query":
        self._filters.append(lambda row: _same(row.get(column), value))
        return self

    def lt(self, column: str, value: Any) -> "_Query":
        self._filters.append(
            lambda row: row.get(column) is not None and _sort_key(row[column]) < _sort_key(value)
        )
        return self

    def ilike(self, column: str, pattern: str) -> "_Query":
        regex = re.compile(
            "".join(".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern),
            re.IGNORECASE | re.DOTALL,
        )
        self._filters.append(lambda row: row.get(column) is not None and regex.fullmatch(str(row[column])) is not None)
        return self

    def order(self, column: str, desc: bool = False) -> "_Query":
        self._order = (column, desc)
        return self

    def limit(self, n: int) -> "_Query":
        self._limit = n
        return self

    def range(self, start: int, end: int) -> "_Query":
        self._offset = start
        self._limit = end - start + 1
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        return [row for row in self._db.tables[self._table] if all(f(row) for f in self._filters)]

    def execute(self) -> _Response:
        self._db.check_failure(self._table)

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = [self._db.insert_row(self._table, row) for row in payload]
            return _Response(deepcopy(inserted))

        rows = self._matching()

        if self._op == "update":
            for row in rows:
                row.update(self._payload)
            return _Response(deepcopy(rows))

        if self._order is not None:
            column, desc = self._order
            rows = sorted(rows, key=lambda r: _sort_key(r.get(column)), reverse=desc)
        count = len(rows) if self._count else None
        rows = rows[self._offset:]
        if self._limit is not None:
            rows = rows[: self._limit]
        if self._db.max_rows is not None:
            rows = rows[: self._db.max_rows]
        return _Response(deepcopy(rows), count=count)


class _RpcCall:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict[str, Any]):
        self._db = db
        self._name = name
        self._params = params

    def execute(self) -> _Response:
        self._db.check_failure(self._name)
        handler = getattr(self._db, f"_rpc_{self._name}")
        return _Response(handler(**self._params))


class FakeSupabase:
    """In-memory Supabase client double for the orders/order_items/inventory tables."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {"orders": [], "order_items": [], "inventory": []}
        self.rpc_calls: List[str] = []
        self._failures: Dict[str, int] = {}
        self._failure_errors: Dict[str, Exception] = {}
        # PostgREST max-rows: responses are truncated to this many rows when set.
        self.max_rows: Optional[int] = None

    # -- test controls ---------------------------------------------------

    def fail_next(self, target: str, times: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next `times` calls touching a table or function raise `error` (APIError by default)."""
        self._failures[target] = times
        if error is None:
            self._failure_errors.pop(target, None)
        else:
            self._failure_errors[target] = error

    def check_failure(self, target: str) -> None:
        remaining = self._failures.get(target, 0)
        if remaining:
            self._failures[target] = remaining - 1
            if target in self._failure_errors:
                raise self._failure_errors[target]
            raise APIError({"message": f"simulated failure on {target}", "code": "08006", "hint": None, "details": None})

    def add_units(self, product_id: int, count: int, prefix: str = "acct") -> List[Dict[str, Any]]:
        return [
            self.insert_row(
                "inventory",
                {
                    "product_id": product_id,
                    "content": f"{prefix}-{product_id}-{i}|secret",
                    "status": "AVAILABLE",
                    "order_id": None,
                    "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc).isoformat(),
                },
            )
            for i in range(count)
        ]

    def units(self, **filters: Any) -> List[Dict[str, Any]]:
        return [
            row for row in self.tables["inventory"]
            if all(_same(row.get(k), v) for k, v in filters.items())
        ]

    def order_row(self, order_id: Any) -> Dict[str, Any]:
        return next(row for row in self.tables["orders"] if _same(row["id"], order_id))

    # -- client surface --------------------------------------------------

    def table(self, name: str) -> _Query:
        return _Query(self, name)

    def rpc(self, name: str, params: Dict[str, Any]) -> _RpcCall:
        self.rpc_calls.append(name)
        return _RpcCall(self, name, params)

    def insert_row(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(row)
        row.setdefault("id", str(uuid4()))
        if table == "orders" and any(r["order_code"] == row["order_code"] for r in self.tables["orders"]):
            raise APIError({
                "message": 'duplicate key value violates unique constraint "orders_order_code_key"',
                "code": "23505",
                "hint": None,
                "details": None,
            })
        self.tables[table].append(row)
        return row

    # -- Postgres functions ----------------------------------------------

    def _rpc_create_order_with_items(
        self, p_user_id, p_order_code, p_total_amount, p_status, p_expires_at, p_created_at, p_items
    ) -> Dict[str, Any]:
        if any(r["order_code"] == p_order_code for r in self.tables["orders"]):
            return {"success": False, "error": "ORDER_CODE_CONFLICT", "message": p_order_code}

        order = self.insert_row("orders", {
            "user_id": p_user_id,
            "order_code": p_order_code,
            "total_amount": p_total_amount,
            "status": p_status,
            "expires_at": p_expires_at,
            "created_at": p_created_at,
            "admin_note": None,
        })
        items = [
            self.insert_row("order_items", {"order_id": order["id"], **item})
            for item in p_items
        ]
        return {"success": True, "order": deepcopy(order), "items": deepcopy(items)}

    def _pick_available(self, product_id: Any, quantity: int) -> List[Dict[str, Any]]:
        return self.units(product_id=product_id, status="AVAILABLE")[:quantity]

    def _rpc_allocate_inventory(self, p_order_id, p_product_id, p_quantity) -> Dict[str, Any]:
        bound = self.units(order_id=p_order_id, product_id=p_product_id)
        if bound:
            return {"success": True, "units": deepcopy(bound)}

        picked = self._pick_available(p_product_id, p_quantity)
        if len(picked) < p_quantity:
            return {
                "success": False, "error": "INSUFFICIENT_STOCK",
                "product_id": p_product_id, "requested": p_quantity, "available": len(picked),
            }
        for unit in picked:
            unit.update(status="DELIVERED", order_id=p_order_id)
        return {"success": True, "units": deepcopy(picked)}

    def _rpc_approve_order(self, p_order_id) -> Dict[str, Any]:
        matches = [r for r in self.tables["orders"] if _same(r["id"], p_order_id)]
        if not matches:
            return {"success": False, "error": "NOT_FOUND"}
        order = matches[0]
        if order["status"] != "WAITING_APPROVAL":
            return {"success": False, "error": "INVALID_STATE", "status": order["status"]}

        needed: Dict[int, int] = {}
        for item in self.tables["order_items"]:
            if _same(item["order_id"], p_order_id):
                pid = int(item["product_id"])
                needed[pid] = needed.get(pid, 0) + int(item["quantity"])

        # Subtransaction: a failed line rolls back the lines allocated before it.
        snapshot = deepcopy(self.tables["inventory"])
        for product_id in sorted(needed):
            result = self._rpc_allocate_inventory(p_order_id, product_id, needed[product_id])
            if not result["success"]:
                self.tables["inventory"] = snapshot
                return result

        order["status"] = "COMPLETED"
        return {"success": True, "order": deepcopy(order), "units": deepcopy(self.units(order_id=p_order_id))}


@pytest.fixture
def fake_db(monkeypatch) -> FakeSupabase:
    db = FakeSupabase()
    monkeypatch.setattr("repositories.client.get_supabase", lambda: db)
    return db


@pytest.fixture
def settings() -> Settings:
    return Settings(
        payment_window_minutes=5,
        bank_account_number="1730052005",
        payment_feed_api_key="test-api-key",
        payment_feed_url="https://feed.test/userapi/transactions/list",
        payment_feed_limit=20,
        expiry_sweep_interval_seconds=0,
    )


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def price() -> Decimal:
    return Decimal("25000")
