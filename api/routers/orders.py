"""
Buyer Order API Endpoints.

Checkout, payment confirmation, order history and delivered-account download.
Authentication is handled upstream; endpoints receive the buyer id explicitly.
"""

from uuid import UUID

from fastapi import APIRouter, Query, Response

from api.errors import to_http_error
from api.models import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreateOrderRequest,
    DeliveredUnitResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderResponse,
)
from domain.errors import OrderSystemError
from domain.time import utc_now
from services import order_service

router = APIRouter()


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=201,
    summary="Create Order",
    description="Create a PENDING_PAYMENT order from the buyer's cart after a live stock check."
)
def create_order(request: CreateOrderRequest):
    """
    Create an order and start its payment window.

    **Process:**
    1. Checks live AVAILABLE stock for every product
    2. Generates a unique order code (e.g. `MMO-AB12CD`) to put in the transfer memo
    3. Saves the order and its line items atomically

    **Failure (409):** a product has fewer units than requested; the detail
    names the product and the remaining count. Nothing is saved.

    The response's `expires_at` / `seconds_remaining` drive the payment countdown.
    """
    try:
        lines = [item.to_domain() for item in request.items]
        order = order_service.create_order(request.buyer_id, lines)
    except (OrderSystemError, ValueError) as e:
        raise to_http_error(e)

    return OrderResponse.from_domain(order, utc_now())


@router.get(
    "/orders",
    response_model=OrderListResponse,
    summary="List Buyer Orders",
)
def list_orders(buyer_id: UUID = Query(..., description="Buyer whose orders to list")):
    """Order history for one buyer, newest first."""
    try:
        orders = order_service.list_orders_for_buyer(buyer_id)
    except OrderSystemError as e:
        raise to_http_error(e)

    now = utc_now()
    return OrderListResponse(
        orders=[OrderResponse.from_domain(order, now) for order in orders],
        total_count=len(orders),
    )


@router.get(
    "/orders/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get Order Detail",
)
def get_order(order_id: UUID, buyer_id: UUID = Query(..., description="Buyer who owns the order")):
    """Order with line items; delivered accounts are included once the order is COMPLETED."""
    try:
        detail = order_service.get_order_detail(order_id, buyer_id=buyer_id)
    except OrderSystemError as e:
        raise to_http_error(e)

    return OrderDetailResponse(
        order=OrderResponse.from_domain(detail.order, utc_now()),
        delivered_units=[DeliveredUnitResponse.from_domain(unit) for unit in detail.delivered_units],
    )


@router.post(
    "/orders/{order_id}/confirm-payment",
    response_model=ConfirmPaymentResponse,
    summary="Confirm Payment",
    description="Check the bank feed for the order's transfer and move the order to WAITING_APPROVAL if found."
)
def confirm_payment(order_id: UUID, request: ConfirmPaymentRequest):
    """
    Confirm that the buyer has paid.

    `matched: false` is a normal answer: bank feeds lag real transfers by
    1-3 minutes, so the buyer should wait and confirm again. The order stays
    PENDING_PAYMENT until a match is found or the window closes.
    """
    try:
        confirmation = order_service.confirm_payment(order_id, request.order_code, request.expected_amount)
    except (OrderSystemError, ValueError) as e:
        raise to_http_error(e)

    return ConfirmPaymentResponse(
        matched=confirmation.matched,
        message=confirmation.message,
        order=OrderResponse.from_domain(confirmation.order, utc_now()),
    )


@router.post(
    "/orders/{order_id}/cancel-if-overdue",
    response_model=OrderResponse,
    summary="Expire Order",
    description="Called when the buyer's countdown reaches zero. Cancels the order only if its window really elapsed."
)
def cancel_if_overdue(order_id: UUID):
    try:
        order = order_service.cancel_if_overdue(order_id)
    except OrderSystemError as e:
        raise to_http_error(e)

    return OrderResponse.from_domain(order, utc_now())


@router.get(
    "/orders/{order_id}/download",
    summary="Download Delivered Accounts",
    response_class=Response,
)
def download_delivered_accounts(order_id: UUID, buyer_id: UUID = Query(...)):
    """
    Download the delivered accounts of a COMPLETED order as `<order_code>.txt`,
    one account per line. Only the buyer who placed the order can download it.
    """
    try:
        filename, content = order_service.export_delivered_content(order_id, buyer_id)
    except OrderSystemError as e:
        raise to_http_error(e)

    return Response(
        content=content,
        media_type="text/plain",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
