"""
Admin Order Review Endpoints.

The human-in-the-loop gate: operators list orders, inspect them, and approve
(delivering inventory) or reject (with a reason shown to the buyer).
Errors carry full detail (product ids, quantities, feed messages).
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from api.errors import to_http_error
from api.models import (
    ApproveOrderResponse,
    DeliveredUnitResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderResponse,
    RejectOrderRequest,
    SweepResponse,
)
from domain.errors import OrderSystemError
from domain.order import OrderStatus
from domain.time import utc_now
from services import order_service

router = APIRouter()


@router.get(
    "/admin/orders",
    response_model=OrderListResponse,
    summary="List Orders (Admin)",
    description="All orders, newest first. Expired PENDING_PAYMENT orders are cancelled before listing."
)
def list_orders(
    status: Optional[str] = Query(None, description="Filter by status (e.g. 'WAITING_APPROVAL')"),
    search: Optional[str] = Query(None, description="Substring of the order code, or a full buyer id"),
):
    status_filter = None
    if status:
        try:
            status_filter = OrderStatus(status)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status. Must be one of {[s.value for s in OrderStatus]}, got '{status}'"
            )

    try:
        orders = order_service.list_orders_for_admin(status=status_filter, search=search)
    except OrderSystemError as e:
        raise to_http_error(e, admin=True)

    now = utc_now()
    return OrderListResponse(
        orders=[OrderResponse.from_domain(order, now) for order in orders],
        total_count=len(orders),
    )


@router.get(
    "/admin/orders/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get Order Detail (Admin)",
)
def get_order(order_id: UUID):
    """Line items plus, for COMPLETED orders, the delivered account contents."""
    try:
        detail = order_service.get_order_detail(order_id)
    except OrderSystemError as e:
        raise to_http_error(e, admin=True)

    return OrderDetailResponse(
        order=OrderResponse.from_domain(detail.order, utc_now()),
        delivered_units=[DeliveredUnitResponse.from_domain(unit) for unit in detail.delivered_units],
    )


@router.post(
    "/admin/orders/{order_id}/approve",
    response_model=ApproveOrderResponse,
    summary="Approve Order",
)
def approve_order(order_id: UUID):
    """
    Approve a WAITING_APPROVAL order.

    Delivers `quantity` AVAILABLE units for every line item and marks the
    order COMPLETED in one transaction.

    **Failure (409):** a product ran out since the order was placed. No unit
    is delivered and the order stays WAITING_APPROVAL; restock or reject it.
    """
    try:
        result = order_service.approve_order(order_id)
    except OrderSystemError as e:
        raise to_http_error(e, admin=True)

    return ApproveOrderResponse(
        order=OrderResponse.from_domain(result.order, utc_now()),
        delivered_count=len(result.delivered_units),
    )


@router.post(
    "/admin/orders/{order_id}/reject",
    response_model=OrderResponse,
    summary="Reject Order",
)
def reject_order(order_id: UUID, request: RejectOrderRequest):
    """Reject a WAITING_APPROVAL order. The reason is stored as the order's admin note."""
    try:
        order = order_service.reject_order(order_id, request.reason)
    except (OrderSystemError, ValueError) as e:
        raise to_http_error(e, admin=True)

    return OrderResponse.from_domain(order, utc_now())


@router.post(
    "/admin/orders/sweep-expired",
    response_model=SweepResponse,
    summary="Cancel Expired Orders",
)
def sweep_expired_orders():
    """Run the expiry sweep now (it also runs on a timer in the background)."""
    try:
        cancelled = order_service.expire_overdue_orders()
    except OrderSystemError as e:
        raise to_http_error(e, admin=True)

    return SweepResponse(
        cancelled_count=len(cancelled),
        cancelled_order_ids=[order.id for order in cancelled],
    )
