"""Commerce models: carts, orders, payment transactions."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.commerce_service.models.enums import (
    OrderStatus,
    PaymentStatus,
    ShippingMethod,
    enum_values,
)
from sqlalchemy import JSON, Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# CART
# ============================================================================


class Cart(Base):
    """A user's cart. At most one active cart per user; never hard-deleted."""

    __tablename__ = "commerce_carts"
    __table_args__ = (
        Index(
            "uq_commerce_carts_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )

    # Abandoned-cart reminder bookkeeping
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    abandoned_reminder_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.created_at",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Cart {self.id} user={self.user_id} active={self.is_active}>"


class CartItem(Base):
    __tablename__ = "commerce_cart_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cart_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("commerce_carts.id", ondelete="CASCADE"), nullable=False
    )
    # Plain reference: a removed product must still surface as a dangling line
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    cart = relationship("Cart", back_populates="items")


# ============================================================================
# ORDERS
# ============================================================================


class Order(Base):
    """Customer order with an authorize-then-capture payment lifecycle."""

    __tablename__ = "commerce_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cart_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("commerce_carts.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="commerce_order_status_enum",
        ),
        default=OrderStatus.PENDING,
        server_default="Pending",
    )
    paid: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            values_callable=enum_values,
            name="commerce_payment_status_enum",
        ),
        default=PaymentStatus.NONE,
        server_default="None",
    )

    # Money
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    shipping_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    shipping_method: Mapped[ShippingMethod] = mapped_column(
        SAEnum(
            ShippingMethod,
            values_callable=enum_values,
            name="commerce_shipping_method_enum",
        ),
        nullable=False,
    )

    shipping_address: Mapped[dict] = mapped_column(JSON, default=dict)
    billing_address: Mapped[dict] = mapped_column(JSON, default=dict)

    # Opaque payment references only; never raw credentials
    payment_method_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    payment_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    payment_failure_reason: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )

    tracking_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order {self.id} {self.status.value}/{self.paid.value}>"


class OrderItem(Base):
    """Order line; ``price`` is the tier price snapshotted at placement."""

    __tablename__ = "commerce_order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("commerce_orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Post-sale disposition, mutually exclusive
    refunded: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    replaced: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class PaymentTransaction(Base):
    """Ledger of capture attempts against an order's authorization."""

    __tablename__ = "commerce_payment_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("commerce_orders.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount_updated: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    original_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    created_by_admin: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
