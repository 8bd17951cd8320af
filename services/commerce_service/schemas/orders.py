"""Cart, order and refund/replacement request schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from services.commerce_service.models import (
    OrderStatus,
    PaymentStatus,
    RequestItemStatus,
    RequestStatus,
    RequestType,
    ShippingMethod,
    Tier,
)

# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemInput(BaseModel):
    product_id: uuid.UUID
    # Range is checked in the service so the error names the field
    quantity: Any = 1


class CartReplace(BaseModel):
    items: list[CartItemInput]


class PricedCartLine(BaseModel):
    product_id: uuid.UUID
    quantity: int
    name: Optional[str] = None
    unit_price: Optional[Decimal] = None
    line_total: Optional[Decimal] = None
    stock: Optional[int] = None
    images: list[str] = []
    error: Optional[str] = None


class PricedCart(BaseModel):
    cart_id: Optional[uuid.UUID] = None
    tier: Tier
    items: list[PricedCartLine]
    grand_total: Decimal


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderLineAdjustment(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(..., ge=1)
    price: Optional[Decimal] = Field(None, ge=0)


class PlaceOrderRequest(BaseModel):
    payment_method_id: str = Field(..., min_length=1)
    shipping_method: str
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    discount: Decimal = Decimal("0")
    cart_id: Optional[uuid.UUID] = None


class AcceptOrderRequest(BaseModel):
    items: Optional[list[OrderLineAdjustment]] = None


class OrderTransitionRequest(BaseModel):
    status: OrderStatus
    items: Optional[list[OrderLineAdjustment]] = None
    shipping_fee: Optional[Decimal] = Field(None, ge=0)
    shipping_method: Optional[str] = None
    discount: Optional[Decimal] = Field(None, ge=0)


class TrackingUpdate(BaseModel):
    tracking_id: str = Field(..., min_length=1, max_length=255)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    product_name: Optional[str] = None
    quantity: int
    price: Decimal
    refunded: bool
    replaced: bool


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    cart_id: Optional[uuid.UUID] = None
    status: OrderStatus
    paid: PaymentStatus
    amount: Decimal
    shipping_fee: Decimal
    shipping_method: ShippingMethod
    discount: Decimal
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    payment_intent_id: Optional[str] = None
    payment_failure_reason: Optional[str] = None
    tracking_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse] = []


class OrderPage(BaseModel):
    items: list[OrderResponse]
    total: int
    page: int
    limit: int


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================


class LineRequest(BaseModel):
    order_id: uuid.UUID
    product_id: uuid.UUID
    reason: Optional[str] = None


class OrderWideRequest(BaseModel):
    order_id: uuid.UUID
    reason: Optional[str] = None


class ResolveRequestItem(BaseModel):
    product_id: uuid.UUID
    decision: RequestItemStatus
    notes: Optional[str] = None


class RequestItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    price: Decimal
    request_type: RequestType
    status: RequestItemStatus
    reason: Optional[str] = None
    admin_notes: Optional[str] = None
    processed_at: Optional[datetime] = None


class RequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    user_id: str
    status: RequestStatus
    completed_at: Optional[datetime] = None
    created_at: datetime
    items: list[RequestItemResponse] = []
