"""
Tests for `services/order_service.py` against the in-memory Supabase double.

Covers the order lifecycle end to end:
- creation with live stock checks and order code regeneration
- payment confirmation (match, no match, expired window, lost race)
- approval delivering inventory all-or-nothing, and rejection
- expiry sweep and single-order expiry
- buyer-scoped detail and download
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from functools import partial
from typing import Any, List
from uuid import UUID

import httpx
import pytest

from domain.cart import Cart, CartLine
from domain.errors import (
    DeliveryNotAvailableError,
    InsufficientStockError,
    InvalidStateTransitionError,
    OrderCodeConflictError,
    OrderNotFoundError,
    StockUnavailableError,
    StorageError,
)
from domain.order import AUTO_CANCEL_NOTE, OrderLine, OrderStatus
from repositories import inventory_repository
from services import order_service
from services.payment_verifier import PAYMENT_MATCHED, PAYMENT_NOT_FOUND, VerificationResult, verify_payment

BUYER_ID = UUID("00000000-0000-0000-0000-00000000b001")
OTHER_BUYER_ID = UUID("00000000-0000-0000-0000-00000000b002")
CODE = "MMO-AB12CD"


def _lines(*specs: tuple) -> List[OrderLine]:
    return [OrderLine(product_id=pid, quantity=qty, unit_price=Decimal(price)) for pid, qty, price in specs]


def _create(now, settings, *specs, code: str = CODE, buyer_id: UUID = BUYER_ID):
    return order_service.create_order(
        buyer_id,
        _lines(*(specs or ((7, 1, "25000"),))),
        now=now,
        settings=settings,
        code_factory=lambda: code,
    )


def _feed(*transactions: dict) -> httpx.Client:
    return httpx.Client(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"transactions": list(transactions)}))
    )


def _matched(*args: Any, **kwargs: Any) -> VerificationResult:
    return VerificationResult(matched=True, reason=PAYMENT_MATCHED, message="Payment received.")


def _not_found(*args: Any, **kwargs: Any) -> VerificationResult:
    return VerificationResult(matched=False, reason=PAYMENT_NOT_FOUND, message="not yet")


def _must_not_verify(*args: Any, **kwargs: Any) -> VerificationResult:
    raise AssertionError("the bank feed must not be queried")


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def test_create_order_persists_header_and_items(fake_db, settings, now) -> None:
    fake_db.add_units(7, 3)
    fake_db.add_units(8, 1)

    order = _create(now, settings, (7, 2, "25000"), (8, 1, "10000"))

    assert order.status == OrderStatus.PENDING_PAYMENT
    assert order.order_code == CODE
    assert order.total_amount == Decimal("60000")
    assert order.expires_at == now + timedelta(minutes=5)
    assert sorted((item.product_id, item.quantity) for item in order.items) == [(7, 2), (8, 1)]
    assert len(fake_db.tables["orders"]) == 1
    assert len(fake_db.tables["order_items"]) == 2


def test_create_order_does_not_reserve_inventory(fake_db, settings, now) -> None:
    fake_db.add_units(7, 2)

    _create(now, settings, (7, 2, "25000"))

    assert len(fake_db.units(product_id=7, status="AVAILABLE")) == 2


def test_create_order_with_insufficient_stock_persists_nothing(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)

    with pytest.raises(StockUnavailableError) as exc:
        _create(now, settings, (7, 2, "25000"))

    assert (exc.value.product_id, exc.value.requested, exc.value.available) == (7, 2, 1)
    assert fake_db.tables["orders"] == []
    assert fake_db.tables["order_items"] == []


def test_create_order_merges_repeated_products_before_stock_check(fake_db, settings, now) -> None:
    fake_db.add_units(7, 2)

    with pytest.raises(StockUnavailableError):
        _create(now, settings, (7, 2, "25000"), (7, 1, "25000"))


def test_create_order_rejects_empty_order(fake_db, settings, now) -> None:
    with pytest.raises(ValueError):
        order_service.create_order(BUYER_ID, [], now=now, settings=settings)


def test_create_order_regenerates_code_on_collision(fake_db, settings, now) -> None:
    fake_db.add_units(7, 5)
    _create(now, settings, code="MMO-AAAAAA")
    codes = iter(["MMO-AAAAAA", "MMO-BBBBBB"])

    order = order_service.create_order(
        BUYER_ID, _lines((7, 1, "25000")), now=now, settings=settings, code_factory=lambda: next(codes)
    )

    assert order.order_code == "MMO-BBBBBB"
    assert len(fake_db.tables["orders"]) == 2


def test_create_order_gives_up_after_max_attempts(fake_db, settings, now) -> None:
    fake_db.add_units(7, 5)
    _create(now, settings, code="MMO-AAAAAA")

    with pytest.raises(OrderCodeConflictError) as exc:
        _create(now, settings, code="MMO-AAAAAA")

    assert exc.value.attempts == settings.order_code_max_attempts
    assert len(fake_db.tables["orders"]) == 1


def test_create_order_storage_failure_persists_nothing(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    fake_db.fail_next("create_order_with_items")

    with pytest.raises(StorageError):
        _create(now, settings)

    assert fake_db.tables["orders"] == []


def test_create_order_from_cart(fake_db, settings, now) -> None:
    fake_db.add_units(7, 2)
    cart = Cart()
    cart.add(CartLine(product_id=7, name="Gmail", unit_price=Decimal("25000"), quantity=2, stock=2))

    order = order_service.create_order_from_cart(BUYER_ID, cart, now=now, settings=settings)

    assert order.total_amount == Decimal("50000")
    assert not cart.is_empty

    with pytest.raises(ValueError):
        order_service.create_order_from_cart(BUYER_ID, Cart(), now=now, settings=settings)


# ---------------------------------------------------------------------------
# Payment confirmation
# ---------------------------------------------------------------------------

def test_full_happy_path(fake_db, settings, now) -> None:
    fake_db.add_units(7, 3)
    order = _create(now, settings)
    verifier = partial(verify_payment, http_client=_feed({"transaction_content": "Chuyen tien MMO-AB12CD", "amount_in": "25000"}))

    confirmation = order_service.confirm_payment(
        order.id, CODE, Decimal("25000"), now=now + timedelta(minutes=2), settings=settings, verifier=verifier
    )

    assert confirmation.matched
    assert confirmation.order.status == OrderStatus.WAITING_APPROVAL

    result = order_service.approve_order(order.id)

    assert result.order.status == OrderStatus.COMPLETED
    assert len(result.delivered_units) == 1
    assert result.delivered_units[0].order_id == order.id
    assert len(fake_db.units(product_id=7, status="AVAILABLE")) == 2

    filename, content = order_service.export_delivered_content(order.id, BUYER_ID)
    assert filename == "MMO-AB12CD.txt"
    assert content == result.delivered_units[0].content


def test_confirm_payment_not_found_leaves_order_pending(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)

    confirmation = order_service.confirm_payment(
        order.id, CODE, Decimal("25000"), now=now, settings=settings, verifier=_not_found
    )

    assert not confirmation.matched
    assert confirmation.message == "not yet"
    assert confirmation.order.status == OrderStatus.PENDING_PAYMENT
    assert fake_db.order_row(order.id)["status"] == "PENDING_PAYMENT"


def test_confirm_payment_checks_at_least_the_stored_total(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)
    seen: List[Decimal] = []

    def recording(order_code: str, amount: Decimal, **kwargs: Any) -> VerificationResult:
        seen.append(amount)
        return _not_found()

    order_service.confirm_payment(order.id, CODE, Decimal("1"), now=now, settings=settings, verifier=recording)

    assert seen == [Decimal("25000")]


def test_confirm_payment_twice_is_rejected(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)
    order_service.confirm_payment(order.id, CODE, Decimal("25000"), now=now, settings=settings, verifier=_matched)

    with pytest.raises(InvalidStateTransitionError):
        order_service.confirm_payment(order.id, CODE, Decimal("25000"), now=now, settings=settings, verifier=_matched)


def test_confirm_payment_after_window_cancels_order(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)

    with pytest.raises(InvalidStateTransitionError) as exc:
        order_service.confirm_payment(
            order.id, CODE, Decimal("25000"),
            now=now + timedelta(minutes=6), settings=settings, verifier=_must_not_verify,
        )

    assert exc.value.current == "CANCELLED"
    assert fake_db.order_row(order.id)["status"] == "CANCELLED"


def test_confirm_payment_with_wrong_code_raises(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)

    with pytest.raises(ValueError):
        order_service.confirm_payment(
            order.id, "MMO-ZZZZZZ", Decimal("25000"), now=now, settings=settings, verifier=_must_not_verify
        )


def test_confirm_payment_unknown_order(fake_db, settings, now) -> None:
    with pytest.raises(OrderNotFoundError):
        order_service.confirm_payment(
            UUID(int=404), CODE, Decimal("1"), now=now, settings=settings, verifier=_must_not_verify
        )


def test_confirm_payment_loses_race_against_expiry(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)

    def cancelled_meanwhile(*args: Any, **kwargs: Any) -> VerificationResult:
        fake_db.order_row(order.id)["status"] = "CANCELLED"
        return _matched()

    with pytest.raises(InvalidStateTransitionError) as exc:
        order_service.confirm_payment(
            order.id, CODE, Decimal("25000"), now=now, settings=settings, verifier=cancelled_meanwhile
        )

    assert exc.value.current == "CANCELLED"


# ---------------------------------------------------------------------------
# Approval / rejection
# ---------------------------------------------------------------------------

def _waiting_order(fake_db, settings, now, *specs):
    order = _create(now, settings, *specs)
    order_service.confirm_payment(order.id, CODE, order.total_amount, now=now, settings=settings, verifier=_matched)
    return order


def test_approval_is_all_or_nothing(fake_db, settings, now) -> None:
    fake_db.add_units(7, 2)
    fake_db.add_units(8, 1)
    order = _waiting_order(fake_db, settings, now, (7, 2, "25000"), (8, 1, "10000"))

    # Another order took product 8 before the admin got to this one.
    fake_db.units(product_id=8)[0].update(status="DELIVERED", order_id=str(UUID(int=99)))

    with pytest.raises(InsufficientStockError) as exc:
        order_service.approve_order(order.id)

    assert (exc.value.product_id, exc.value.requested, exc.value.available) == (8, 1, 0)
    assert len(fake_db.units(product_id=7, status="AVAILABLE")) == 2
    assert fake_db.units(order_id=order.id) == []
    assert fake_db.order_row(order.id)["status"] == "WAITING_APPROVAL"

def test_approve_reuses_units_already_allocated_to_the_order(fake_db, settings, now) -> None:
    fake_db.add_units(7, 4)
    order = _waiting_order(fake_db, settings, now, (7, 2, "25000"))
    allocated = inventory_repository.allocate_units(order.id, 7, 2)

    result = order_service.approve_order(order.id)

    assert sorted(u.id for u in result.delivered_units) == sorted(u.id for u in allocated)
    assert len(fake_db.units(product_id=7, status="AVAILABLE")) == 2
    assert result.order.status == OrderStatus.COMPLETED



def test_approve_requires_waiting_approval(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)

    with pytest.raises(InvalidStateTransitionError):
        order_service.approve_order(order.id)

    with pytest.raises(OrderNotFoundError):
        order_service.approve_order(UUID(int=404))


def test_reject_then_approve_fails(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _waiting_order(fake_db, settings, now)

    rejected = order_service.reject_order(order.id, "  Transfer amount did not match  ")

    assert rejected.status == OrderStatus.REJECTED
    assert rejected.admin_note == "Transfer amount did not match"

    with pytest.raises(InvalidStateTransitionError):
        order_service.approve_order(order.id)
    assert len(fake_db.units(product_id=7, status="AVAILABLE")) == 1


def test_reject_requires_reason(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _waiting_order(fake_db, settings, now)

    with pytest.raises(ValueError):
        order_service.reject_order(order.id, "   ")

    assert fake_db.order_row(order.id)["status"] == "WAITING_APPROVAL"


def test_reject_pending_order_is_invalid(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)

    with pytest.raises(InvalidStateTransitionError):
        order_service.reject_order(order.id, "no payment")


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

def test_sweep_cancels_only_after_window(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)

    assert order_service.expire_overdue_orders(now=now + timedelta(minutes=5)) == []

    cancelled = order_service.expire_overdue_orders(now=now + timedelta(minutes=5, seconds=1))

    assert [o.id for o in cancelled] == [order.id]
    assert cancelled[0].status == OrderStatus.CANCELLED
    assert cancelled[0].admin_note == AUTO_CANCEL_NOTE
    assert order_service.expire_overdue_orders(now=now + timedelta(minutes=10)) == []

def test_sweep_with_unreachable_database_raises_storage_error(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)
    fake_db.fail_next("orders", error=httpx.ConnectError("connection refused"))

    with pytest.raises(StorageError):
        order_service.expire_overdue_orders(now=now + timedelta(minutes=10))

    assert fake_db.order_row(order.id)["status"] == "PENDING_PAYMENT"
    assert [o.id for o in order_service.expire_overdue_orders(now=now + timedelta(minutes=10))] == [order.id]



def test_sweep_never_cancels_paid_orders(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _waiting_order(fake_db, settings, now)

    assert order_service.expire_overdue_orders(now=now + timedelta(hours=1)) == []
    assert fake_db.order_row(order.id)["status"] == "WAITING_APPROVAL"


def test_cancel_if_overdue_is_noop_before_window(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _create(now, settings)

    still_pending = order_service.cancel_if_overdue(order.id, now=now + timedelta(minutes=4))
    assert still_pending.status == OrderStatus.PENDING_PAYMENT

    cancelled = order_service.cancel_if_overdue(order.id, now=now + timedelta(minutes=6))
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.admin_note == AUTO_CANCEL_NOTE


def test_cancel_if_overdue_leaves_paid_order_alone(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _waiting_order(fake_db, settings, now)

    result = order_service.cancel_if_overdue(order.id, now=now + timedelta(hours=1))

    assert result.status == OrderStatus.WAITING_APPROVAL


# ---------------------------------------------------------------------------
# Listing, detail, download
# ---------------------------------------------------------------------------

def test_admin_listing_sweeps_expired_orders_first(fake_db, settings, now) -> None:
    fake_db.add_units(7, 5)
    stale = _create(now, settings, code="MMO-OLD001")
    fresh = _create(now + timedelta(minutes=8), settings, code="MMO-NEW001")

    orders = order_service.list_orders_for_admin(now=now + timedelta(minutes=10))

    by_code = {o.order_code: o for o in orders}
    assert [o.order_code for o in orders] == ["MMO-NEW001", "MMO-OLD001"]
    assert by_code["MMO-OLD001"].status == OrderStatus.CANCELLED
    assert by_code["MMO-NEW001"].status == OrderStatus.PENDING_PAYMENT

    pending = order_service.list_orders_for_admin(status=OrderStatus.PENDING_PAYMENT, now=now + timedelta(minutes=10))
    assert [o.id for o in pending] == [fresh.id]

    found = order_service.list_orders_for_admin(search="mmo-old", now=now + timedelta(minutes=10))
    assert [o.id for o in found] == [stale.id]

def test_admin_search_finds_orders_older_than_the_newest_page(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    old = _create(now, settings, code="MMO-OLD001")
    for i in range(205):
        fake_db.insert_row("orders", {
            "user_id": str(OTHER_BUYER_ID),
            "order_code": f"MMO-N{i:05d}",
            "total_amount": "25000",
            "status": "COMPLETED",
            "expires_at": (now + timedelta(minutes=6 + i)).isoformat(),
            "created_at": (now + timedelta(minutes=1 + i)).isoformat(),
            "admin_note": None,
        })
    later = now + timedelta(hours=5)

    assert old.id not in [o.id for o in order_service.list_orders_for_admin(now=later)]

    found = order_service.list_orders_for_admin(search="old001", now=later)
    assert [o.id for o in found] == [old.id]


def test_admin_search_by_buyer_id_matches_exactly(fake_db, settings, now) -> None:
    fake_db.add_units(7, 5)
    mine = _create(now, settings, code="MMO-MINE01")
    _create(now, settings, code="MMO-THEIRS", buyer_id=OTHER_BUYER_ID)

    found = order_service.list_orders_for_admin(search=f" {BUYER_ID} ", now=now)
    assert [o.id for o in found] == [mine.id]

    assert order_service.list_orders_for_admin(search="no-such-code", now=now) == []



def test_buyer_sees_only_own_orders(fake_db, settings, now) -> None:
    fake_db.add_units(7, 5)
    mine = _create(now, settings, code="MMO-MINE01")
    _create(now, settings, code="MMO-THEIRS", buyer_id=OTHER_BUYER_ID)

    assert [o.id for o in order_service.list_orders_for_buyer(BUYER_ID)] == [mine.id]

    with pytest.raises(OrderNotFoundError):
        order_service.get_order_detail(mine.id, buyer_id=OTHER_BUYER_ID)


def test_detail_includes_units_only_when_completed(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _waiting_order(fake_db, settings, now)

    waiting = order_service.get_order_detail(order.id, buyer_id=BUYER_ID)
    assert waiting.delivered_units == []
    assert len(waiting.order.items) == 1

    order_service.approve_order(order.id)
    completed = order_service.get_order_detail(order.id, buyer_id=BUYER_ID)
    assert [unit.content for unit in completed.delivered_units] == ["acct-7-0|secret"]


def test_download_requires_completed_order_and_owner(fake_db, settings, now) -> None:
    fake_db.add_units(7, 1)
    order = _waiting_order(fake_db, settings, now)

    with pytest.raises(DeliveryNotAvailableError):
        order_service.export_delivered_content(order.id, BUYER_ID)

    order_service.approve_order(order.id)

    with pytest.raises(OrderNotFoundError):
        order_service.export_delivered_content(order.id, OTHER_BUYER_ID)
