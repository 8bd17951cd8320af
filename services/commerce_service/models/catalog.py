"""Catalog models: categories, brands, products, restock subscriptions."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.commerce_service.models.enums import Tier
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy import Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

# ============================================================================
# CATEGORY TREE
# ============================================================================


class Category(Base):
    """Node of the category forest (at most four levels deep)."""

    __tablename__ = "commerce_categories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("commerce_categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    level: Mapped[int] = mapped_column(Integer, default=1, server_default="1")
    display_order: Mapped[int] = mapped_column(
        Integer, default=1, server_default="1"
    )
    has_children: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    is_recently_added: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    has_parts: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    model_numbers: Mapped[list] = mapped_column(JSON, default=list)
    attributes: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Category {self.name} L{self.level} #{self.display_order}>"


class Brand(Base):
    __tablename__ = "commerce_brands"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    category_ids: Mapped[list] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )
    is_featured: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class Tag(Base):
    """Named product tag; products carry tag names in ``Product.tags``."""

    __tablename__ = "commerce_tags"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    featured: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )


# ============================================================================
# PRODUCTS
# ============================================================================


class Product(Base):
    """Sellable product with a four-tier B2B price table."""

    __tablename__ = "commerce_products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)

    # Pricing: base price plus per-tier prices (nullable for legacy records)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cost_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    retailer_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    wholesale_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    chain_store_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    franchise_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )

    # Placement
    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("commerce_categories.id"), nullable=False, index=True
    )
    sub_category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("commerce_categories.id"), nullable=True, index=True
    )
    brand_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("commerce_brands.id", ondelete="SET NULL"), nullable=True
    )
    # Variations point at their parent product
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("commerce_products.id", ondelete="CASCADE"), nullable=True
    )
    # Category the product was filed under before it was moved to quarantine
    quarantined_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("commerce_categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    stock: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    tags: Mapped[list] = mapped_column(JSON, default=list)
    models: Mapped[list] = mapped_column(JSON, default=list)
    images: Mapped[list] = mapped_column(JSON, default=list)
    attributes: Mapped[dict] = mapped_column(JSON, default=dict)

    # Flags
    published: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )
    featured: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    most_popular: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    most_sold: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    display_order: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    @property
    def order_scope_id(self) -> uuid.UUID:
        """Display-order scope: sub-category when set, else category."""
        return self.sub_category_id or self.category_id

    def tier_price(self, tier: Tier) -> Optional[Decimal]:
        return {
            Tier.RETAILER: self.retailer_price,
            Tier.WHOLESALE: self.wholesale_price,
            Tier.CHAIN_STORE: self.chain_store_price,
            Tier.FRANCHISE: self.franchise_price,
        }[tier]

    def set_tier_price(self, tier: Tier, value: Optional[Decimal]) -> None:
        if tier is Tier.RETAILER:
            self.retailer_price = value
        elif tier is Tier.WHOLESALE:
            self.wholesale_price = value
        elif tier is Tier.CHAIN_STORE:
            self.chain_store_price = value
        else:
            self.franchise_price = value

    def __repr__(self):
        return f"<Product {self.product_code} {self.name}>"


class NotifyRequest(Base):
    """Back-in-stock subscription for a product."""

    __tablename__ = "commerce_notify_requests"
    __table_args__ = (
        UniqueConstraint("product_id", "email", name="uq_commerce_notify_product_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("commerce_products.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    notified: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    notified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
