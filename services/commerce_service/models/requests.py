"""Post-sale refund/replacement request models."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.commerce_service.models.enums import (
    RequestItemStatus,
    RequestStatus,
    RequestType,
    enum_values,
)
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class OrderRequest(Base):
    """One request document per (order, user); items accumulate over time."""

    __tablename__ = "commerce_requests"
    __table_args__ = (
        UniqueConstraint("order_id", "user_id", name="uq_commerce_requests_order_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("commerce_orders.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[RequestStatus] = mapped_column(
        SAEnum(
            RequestStatus,
            values_callable=enum_values,
            name="commerce_request_status_enum",
        ),
        default=RequestStatus.PENDING,
        server_default="Pending",
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    items = relationship(
        "OrderRequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="OrderRequestItem.created_at",
        lazy="selectin",
    )


class OrderRequestItem(Base):
    __tablename__ = "commerce_request_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("commerce_requests.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    request_type: Mapped[RequestType] = mapped_column(
        SAEnum(
            RequestType,
            values_callable=enum_values,
            name="commerce_request_type_enum",
        ),
        nullable=False,
    )
    status: Mapped[RequestItemStatus] = mapped_column(
        SAEnum(
            RequestItemStatus,
            values_callable=enum_values,
            name="commerce_request_item_status_enum",
        ),
        default=RequestItemStatus.PENDING,
        server_default="Pending",
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    request = relationship("OrderRequest", back_populates="items")
