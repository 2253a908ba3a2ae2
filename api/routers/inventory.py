"""
Inventory API Endpoints.

Live stock for buyers, and warehouse import / stock summary for operators.
"""

from fastapi import APIRouter

from api.errors import to_http_error
from api.models import (
    InventoryImportRequest,
    InventoryImportResponse,
    StockResponse,
    StockSummaryResponse,
)
from domain.errors import OrderSystemError
from repositories import inventory_repository

router = APIRouter()


@router.get(
    "/products/{product_id}/stock",
    response_model=StockResponse,
    summary="Available Stock",
    description="Number of AVAILABLE accounts for a product (the figure shown to buyers)."
)
def get_product_stock(product_id: int):
    try:
        available = inventory_repository.count_available(product_id)
    except OrderSystemError as e:
        raise to_http_error(e)

    return StockResponse(product_id=product_id, available=available)


@router.post(
    "/admin/inventory/import",
    response_model=InventoryImportResponse,
    status_code=201,
    summary="Import Accounts",
)
def import_inventory(request: InventoryImportRequest):
    """
    Add new AVAILABLE accounts for a product.

    Each entry is one account payload (e.g. `email|password|recovery`).
    Blank entries and duplicates within the request are ignored.
    """
    try:
        units = inventory_repository.import_units(request.product_id, request.contents)
        available = inventory_repository.count_available(request.product_id)
    except OrderSystemError as e:
        raise to_http_error(e, admin=True)

    return InventoryImportResponse(product_id=request.product_id, imported=len(units), available=available)


@router.get(
    "/admin/inventory/summary",
    response_model=StockSummaryResponse,
    summary="Stock Summary",
)
def get_stock_summary():
    try:
        summary = inventory_repository.stock_summary()
    except OrderSystemError as e:
        raise to_http_error(e, admin=True)

    return StockSummaryResponse(available_by_product=summary)
