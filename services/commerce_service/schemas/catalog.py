"""Catalog schemas: categories, brands, products."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from services.commerce_service.models import Product, ReorderDirection, Tier

# ============================================================================
# CATEGORY SCHEMAS
# ============================================================================


class CategoryCreate(BaseModel):
    name: str = Field(..., max_length=100)
    parent_id: Optional[uuid.UUID] = None
    display_order: Optional[int] = None
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    image: Optional[str] = None
    is_recently_added: bool = False
    has_parts: bool = False
    model_numbers: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    parent_id: Optional[uuid.UUID] = None
    display_order: Optional[int] = None
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    image: Optional[str] = None
    is_recently_added: Optional[bool] = None
    has_parts: Optional[bool] = None
    model_numbers: Optional[list[str]] = None
    attributes: Optional[dict[str, Any]] = None


class CategoryReorder(BaseModel):
    direction: ReorderDirection


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    level: int
    display_order: int
    has_children: bool
    is_deleted: bool
    is_recently_added: bool
    has_parts: bool
    model_numbers: list[str] = []
    attributes: dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime


class CategoryProductCount(BaseModel):
    category_id: uuid.UUID
    name: str
    product_count: int


# ============================================================================
# BRAND SCHEMAS
# ============================================================================


class BrandCreate(BaseModel):
    name: str = Field(..., max_length=255)
    title: Optional[str] = Field(None, max_length=255)
    image: Optional[str] = None
    category_ids: list[uuid.UUID] = Field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False


class BrandUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    title: Optional[str] = Field(None, max_length=255)
    image: Optional[str] = None
    category_ids: Optional[list[uuid.UUID]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class BrandResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    title: Optional[str] = None
    image: Optional[str] = None
    category_ids: list[uuid.UUID] = []
    is_active: bool
    is_featured: bool
    created_at: datetime
    updated_at: datetime


# ============================================================================
# TAG SCHEMAS
# ============================================================================


class TagCreate(BaseModel):
    name: str = Field(..., max_length=100)
    featured: bool = False
    image: Optional[str] = None


class TagUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    featured: Optional[bool] = None
    image: Optional[str] = None


class TagResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    featured: bool
    image: Optional[str] = None
    created_at: datetime


class TagPage(BaseModel):
    items: list[TagResponse]
    total: int
    page: int
    limit: int
    total_pages: int
    featured_count: int


class TagDeleted(BaseModel):
    name: str
    products_updated: int


# ============================================================================
# PRODUCT SCHEMAS
# ============================================================================


class TierPricing(BaseModel):
    """Per-tier price table; every tier must be supplied."""

    retailer: Decimal
    wholesale: Decimal
    chain_store: Decimal
    franchise: Decimal

    def as_mapping(self) -> dict[Tier, Decimal]:
        return {
            Tier.RETAILER: self.retailer,
            Tier.WHOLESALE: self.wholesale,
            Tier.CHAIN_STORE: self.chain_store,
            Tier.FRANCHISE: self.franchise,
        }


class TierPricingView(BaseModel):
    retailer: Optional[Decimal] = None
    wholesale: Optional[Decimal] = None
    chain_store: Optional[Decimal] = None
    franchise: Optional[Decimal] = None


class ProductCreate(BaseModel):
    name: str = Field(..., max_length=255)
    description: str
    category_id: uuid.UUID
    stock: int
    price: Decimal
    pricing: TierPricing
    sub_category_id: Optional[uuid.UUID] = None
    brand_id: Optional[uuid.UUID] = None
    parent_id: Optional[uuid.UUID] = None
    cost_price: Optional[Decimal] = None
    sku: Optional[str] = Field(None, max_length=100)
    tags: list[str] = Field(default_factory=list)
    models: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)
    published: bool = True
    featured: bool = False
    most_popular: bool = False
    most_sold: bool = False
    display_order: Optional[int] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    category_id: Optional[uuid.UUID] = None
    sub_category_id: Optional[uuid.UUID] = None
    brand_id: Optional[uuid.UUID] = None
    stock: Optional[int] = None
    price: Optional[Decimal] = None
    pricing: Optional[TierPricing] = None
    cost_price: Optional[Decimal] = None
    sku: Optional[str] = Field(None, max_length=100)
    tags: Optional[list[str]] = None
    models: Optional[list[str]] = None
    images: Optional[list[str]] = None
    attributes: Optional[dict[str, Any]] = None
    published: Optional[bool] = None
    featured: Optional[bool] = None
    most_popular: Optional[bool] = None
    most_sold: Optional[bool] = None
    display_order: Optional[int] = None


class ProductResponse(BaseModel):
    """Admin view: full price table and cost."""

    id: uuid.UUID
    product_code: str
    name: str
    description: str
    sku: Optional[str] = None
    price: Decimal
    cost_price: Optional[Decimal] = None
    pricing: TierPricingView
    category_id: uuid.UUID
    sub_category_id: Optional[uuid.UUID] = None
    brand_id: Optional[uuid.UUID] = None
    parent_id: Optional[uuid.UUID] = None
    stock: int
    tags: list[str] = []
    models: list[str] = []
    images: list[str] = []
    attributes: dict[str, Any] = {}
    published: bool
    featured: bool
    most_popular: bool
    most_sold: bool
    is_deleted: bool
    display_order: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_product(cls, product: Product) -> "ProductResponse":
        return cls(
            id=product.id,
            product_code=product.product_code,
            name=product.name,
            description=product.description,
            sku=product.sku,
            price=product.price,
            cost_price=product.cost_price,
            pricing=TierPricingView(
                retailer=product.retailer_price,
                wholesale=product.wholesale_price,
                chain_store=product.chain_store_price,
                franchise=product.franchise_price,
            ),
            category_id=product.category_id,
            sub_category_id=product.sub_category_id,
            brand_id=product.brand_id,
            parent_id=product.parent_id,
            stock=product.stock,
            tags=product.tags or [],
            models=product.models or [],
            images=product.images or [],
            attributes=product.attributes or {},
            published=product.published,
            featured=product.featured,
            most_popular=product.most_popular,
            most_sold=product.most_sold,
            is_deleted=product.is_deleted,
            display_order=product.display_order,
            created_at=product.created_at,
            updated_at=product.updated_at,
        )


class PricedProduct(BaseModel):
    """Customer view: one price, resolved for the caller's tier."""

    id: uuid.UUID
    product_code: str
    name: str
    description: str
    sku: Optional[str] = None
    price: Decimal
    tier: Tier
    category_id: uuid.UUID
    sub_category_id: Optional[uuid.UUID] = None
    brand_id: Optional[uuid.UUID] = None
    stock: int
    tags: list[str] = []
    images: list[str] = []
    attributes: dict[str, Any] = {}
    featured: bool
    most_popular: bool
    most_sold: bool
    display_order: Optional[int] = None


class ProductPage(BaseModel):
    items: list[PricedProduct]
    total: int
    page: int
    limit: int
    total_pages: int


class SpecialProductSets(BaseModel):
    tier: Tier
    most_sold: list[PricedProduct]
    most_popular: list[PricedProduct]
    featured: list[PricedProduct]


class DisplayOrderEntry(BaseModel):
    product_id: uuid.UUID
    display_order: int = Field(..., ge=1)


class BulkDisplayOrderUpdate(BaseModel):
    scope_id: uuid.UUID
    entries: list[DisplayOrderEntry]


class BulkPricingUpdate(BaseModel):
    """Tier prices as percentages of each product's cost price."""

    product_ids: list[uuid.UUID]
    retailer_percent: Optional[Decimal] = None
    wholesale_percent: Optional[Decimal] = None
    chain_store_percent: Optional[Decimal] = None
    franchise_percent: Optional[Decimal] = None

    def as_mapping(self) -> dict[Tier, Decimal]:
        pairs = {
            Tier.RETAILER: self.retailer_percent,
            Tier.WHOLESALE: self.wholesale_percent,
            Tier.CHAIN_STORE: self.chain_store_percent,
            Tier.FRANCHISE: self.franchise_percent,
        }
        return {tier: pct for tier, pct in pairs.items() if pct is not None}


class RestockSubscribe(BaseModel):
    email: EmailStr


class UploadUrlRequest(BaseModel):
    filename: str = Field(..., max_length=255)
    content_type: str = Field(..., max_length=100)
    folder: str = Field("products", pattern="^(products|categories|brands|tags)$")


class UploadUrlResponse(BaseModel):
    key: str
    upload_url: str
    public_url: str
