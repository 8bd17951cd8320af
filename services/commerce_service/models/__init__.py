"""Commerce Service models package."""

from services.commerce_service.models.catalog import (
    Brand,
    Category,
    NotifyRequest,
    Product,
    Tag,
)
from services.commerce_service.models.commerce import (
    Cart,
    CartItem,
    Order,
    OrderItem,
    PaymentTransaction,
)
from services.commerce_service.models.enums import (
    OrderStatus,
    PaymentStatus,
    ReorderDirection,
    RequestItemStatus,
    RequestStatus,
    RequestType,
    ShippingMethod,
    Tier,
)
from services.commerce_service.models.requests import OrderRequest, OrderRequestItem

__all__ = [
    "Brand",
    "Cart",
    "CartItem",
    "Category",
    "NotifyRequest",
    "Order",
    "OrderItem",
    "OrderRequest",
    "OrderRequestItem",
    "OrderStatus",
    "PaymentStatus",
    "PaymentTransaction",
    "Product",
    "ReorderDirection",
    "RequestItemStatus",
    "RequestStatus",
    "RequestType",
    "ShippingMethod",
    "Tag",
    "Tier",
]
