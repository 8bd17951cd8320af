"""Commerce Service schemas package."""

from services.commerce_service.schemas.catalog import (
    BrandCreate,
    BrandResponse,
    BrandUpdate,
    BulkDisplayOrderUpdate,
    BulkPricingUpdate,
    CategoryCreate,
    CategoryProductCount,
    CategoryReorder,
    CategoryResponse,
    CategoryUpdate,
    DisplayOrderEntry,
    PricedProduct,
    ProductCreate,
    ProductPage,
    ProductResponse,
    ProductUpdate,
    RestockSubscribe,
    SpecialProductSets,
    TagCreate,
    TagDeleted,
    TagPage,
    TagResponse,
    TagUpdate,
    TierPricing,
    TierPricingView,
    UploadUrlRequest,
    UploadUrlResponse,
)
from services.commerce_service.schemas.orders import (
    AcceptOrderRequest,
    CartItemInput,
    CartReplace,
    LineRequest,
    OrderItemResponse,
    OrderLineAdjustment,
    OrderPage,
    OrderResponse,
    OrderTransitionRequest,
    OrderWideRequest,
    PlaceOrderRequest,
    PricedCart,
    PricedCartLine,
    RequestItemResponse,
    RequestResponse,
    ResolveRequestItem,
    TrackingUpdate,
)

__all__ = [
    "AcceptOrderRequest",
    "BrandCreate",
    "BrandResponse",
    "BrandUpdate",
    "BulkDisplayOrderUpdate",
    "BulkPricingUpdate",
    "CartItemInput",
    "CartReplace",
    "CategoryCreate",
    "CategoryProductCount",
    "CategoryReorder",
    "CategoryResponse",
    "CategoryUpdate",
    "DisplayOrderEntry",
    "LineRequest",
    "OrderItemResponse",
    "OrderLineAdjustment",
    "OrderPage",
    "OrderResponse",
    "OrderTransitionRequest",
    "OrderWideRequest",
    "PlaceOrderRequest",
    "PricedCart",
    "PricedCartLine",
    "PricedProduct",
    "ProductCreate",
    "ProductPage",
    "ProductResponse",
    "ProductUpdate",
    "RequestItemResponse",
    "RequestResponse",
    "ResolveRequestItem",
    "RestockSubscribe",
    "SpecialProductSets",
    "TagCreate",
    "TagDeleted",
    "TagPage",
    "TagResponse",
    "TagUpdate",
    "TierPricing",
    "TierPricingView",
    "TrackingUpdate",
    "UploadUrlRequest",
    "UploadUrlResponse",
]
