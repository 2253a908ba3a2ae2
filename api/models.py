"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.inventory import InventoryUnit
from domain.order import Order, OrderItem, OrderLine


# ============================================================================
# Order Models
# ============================================================================

class OrderLineRequest(BaseModel):
    """One cart line submitted at checkout."""
    product_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)

    def to_domain(self) -> OrderLine:
        return OrderLine(product_id=self.product_id, quantity=self.quantity, unit_price=self.unit_price)


class CreateOrderRequest(BaseModel):
    """Request to create an order from the buyer's cart."""
    buyer_id: UUID = Field(..., description="Account placing the order")
    items: List[OrderLineRequest] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "buyer_id": "123e4567-e89b-12d3-a456-426614174002",
                "items": [
                    {"product_id": 7, "quantity": 1, "unit_price": "25000"}
                ]
            }
        }


class OrderItemResponse(BaseModel):
    product_id: int
    product_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    @classmethod
    def from_domain(cls, item: OrderItem) -> "OrderItemResponse":
        return cls(
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            subtotal=item.subtotal,
        )


class OrderResponse(BaseModel):
    """Order header with line items and the payment countdown."""
    id: UUID
    order_code: str
    buyer_id: UUID
    total_amount: Decimal
    status: str
    expires_at: datetime
    created_at: datetime
    admin_note: Optional[str] = None
    seconds_remaining: int
    items: List[OrderItemResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, order: Order, now: datetime) -> "OrderResponse":
        return cls(
            id=order.id,
            order_code=order.order_code,
            buyer_id=order.buyer_id,
            total_amount=order.total_amount,
            status=order.status.value,
            expires_at=order.expires_at,
            created_at=order.created_at,
            admin_note=order.admin_note,
            seconds_remaining=order.seconds_remaining(now),
            items=[OrderItemResponse.from_domain(item) for item in order.items],
        )

    class Config:
        json_schema_extra = {
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174000",
                "order_code": "MMO-AB12CD",
                "buyer_id": "123e4567-e89b-12d3-a456-426614174002",
                "total_amount": "25000",
                "status": "PENDING_PAYMENT",
                "expires_at": "2025-01-01T12:05:00Z",
                "created_at": "2025-01-01T12:00:00Z",
                "admin_note": None,
                "seconds_remaining": 300,
                "items": [
                    {"product_id": 7, "product_name": "Gmail", "quantity": 1, "unit_price": "25000", "subtotal": "25000"}
                ]
            }
        }


class DeliveredUnitResponse(BaseModel):
    product_id: int
    content: str

    @classmethod
    def from_domain(cls, unit: InventoryUnit) -> "DeliveredUnitResponse":
        return cls(product_id=unit.product_id, content=unit.content)


class OrderDetailResponse(BaseModel):
    order: OrderResponse
    delivered_units: List[DeliveredUnitResponse]


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total_count: int


# ============================================================================
# Payment Models
# ============================================================================

class ConfirmPaymentRequest(BaseModel):
    order_code: str = Field(..., min_length=1)
    expected_amount: Decimal = Field(..., ge=0)


class ConfirmPaymentResponse(BaseModel):
    matched: bool
    message: str
    order: OrderResponse

    class Config:
        json_schema_extra = {
            "example": {
                "matched": False,
                "message": "No payment for order MMO-AB12CD has been recorded yet. "
                           "Bank transfers can take 1-3 minutes to appear; please wait and confirm again.",
                "order": {}
            }
        }


# ============================================================================
# Admin Models
# ============================================================================

class RejectOrderRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Shown to the buyer")


class ApproveOrderResponse(BaseModel):
    order: OrderResponse
    delivered_count: int


class SweepResponse(BaseModel):
    cancelled_count: int
    cancelled_order_ids: List[UUID]


# ============================================================================
# Inventory Models
# ============================================================================

class StockResponse(BaseModel):
    product_id: int
    available: int


class StockSummaryResponse(BaseModel):
    available_by_product: Dict[int, int]


class InventoryImportRequest(BaseModel):
    """Warehouse import: one account per entry."""
    product_id: int
    contents: List[str] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "product_id": 7,
                "contents": ["user1@gmail.com|pass1", "user2@gmail.com|pass2"]
            }
        }


class InventoryImportResponse(BaseModel):
    product_id: int
    imported: int
    available: int

