"""initial commerce schema

Revision ID: c0a1e2b3d401
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "c0a1e2b3d401"
down_revision = None
branch_labels = None
depends_on = None

ORDER_STATUS = sa.Enum(
    "Pending", "Processing", "Delivered", "Cancelled", name="commerce_order_status_enum"
)
PAYMENT_STATUS = sa.Enum(
    "None",
    "Unpaid",
    "Paid",
    "Rejected",
    "Cancelled",
    name="commerce_payment_status_enum",
)
SHIPPING_METHOD = sa.Enum("Ground", "Overnight", name="commerce_shipping_method_enum")
REQUEST_STATUS = sa.Enum(
    "Pending",
    "Processing",
    "Completed",
    "Partially_Completed",
    "Rejected",
    name="commerce_request_status_enum",
)
REQUEST_TYPE = sa.Enum("refund", "replacement", name="commerce_request_type_enum")
REQUEST_ITEM_STATUS = sa.Enum(
    "Pending",
    "Approved",
    "Rejected",
    "Processing",
    "Completed",
    name="commerce_request_item_status_enum",
)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=True)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade() -> None:
    op.create_table(
        "commerce_categories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image", sa.String(1024), nullable=True),
        sa.Column(
            "parent_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("level", sa.Integer(), server_default="1", nullable=True),
        sa.Column("display_order", sa.Integer(), server_default="1", nullable=True),
        sa.Column("has_children", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default="false", nullable=True),
        sa.Column(
            "is_recently_added", sa.Boolean(), server_default="false", nullable=True
        ),
        sa.Column("has_parts", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("model_numbers", sa.JSON(), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_commerce_categories_parent_id", "commerce_categories", ["parent_id"]
    )

    op.create_table(
        "commerce_brands",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("image", sa.String(1024), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default="false", nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "commerce_products",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("product_code", sa.String(16), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("sku", sa.String(100), nullable=True, unique=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("cost_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("retailer_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("wholesale_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("chain_store_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("franchise_price", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "category_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_categories.id"),
            nullable=False,
        ),
        sa.Column(
            "sub_category_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_categories.id"),
            nullable=True,
        ),
        sa.Column(
            "brand_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_brands.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "parent_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_products.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("stock", sa.Integer(), server_default="0", nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("models", sa.JSON(), nullable=True),
        sa.Column("images", sa.JSON(), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=True),
        sa.Column("published", sa.Boolean(), server_default="true", nullable=True),
        sa.Column("featured", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("most_popular", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("most_sold", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_commerce_products_category_id", "commerce_products", ["category_id"]
    )
    op.create_index(
        "ix_commerce_products_sub_category_id", "commerce_products", ["sub_category_id"]
    )

    op.create_table(
        "commerce_notify_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "product_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("notified", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint(
            "product_id", "email", name="uq_commerce_notify_product_email"
        ),
    )

    op.create_table(
        "commerce_carts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "abandoned_reminder_count", sa.Integer(), server_default="0", nullable=True
        ),
        *_timestamps(),
    )
    op.create_index("ix_commerce_carts_user_id", "commerce_carts", ["user_id"])
    op.create_index(
        "uq_commerce_carts_active_user",
        "commerce_carts",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "commerce_cart_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "cart_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_carts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        *_timestamps(updated=False),
    )

    op.create_table(
        "commerce_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column(
            "cart_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_carts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", ORDER_STATUS, server_default="Pending", nullable=True),
        sa.Column("paid", PAYMENT_STATUS, server_default="None", nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("shipping_fee", sa.Numeric(12, 2), nullable=True),
        sa.Column("discount", sa.Numeric(12, 2), nullable=True),
        sa.Column("shipping_method", SHIPPING_METHOD, nullable=False),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("billing_address", sa.JSON(), nullable=True),
        sa.Column("payment_method_id", sa.String(255), nullable=True),
        sa.Column("payment_customer_id", sa.String(255), nullable=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("payment_failure_reason", sa.Text(), nullable=True),
        sa.Column("tracking_id", sa.String(255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_commerce_orders_user_id", "commerce_orders", ["user_id"])

    op.create_table(
        "commerce_order_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("refunded", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("replaced", sa.Boolean(), server_default="false", nullable=True),
    )
    op.create_index(
        "ix_commerce_order_items_product_id", "commerce_order_items", ["product_id"]
    )

    op.create_table(
        "commerce_payment_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("amount_updated", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("original_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("created_by_admin", sa.Boolean(), server_default="true", nullable=True),
        *_timestamps(updated=False),
    )

    op.create_table(
        "commerce_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("status", REQUEST_STATUS, server_default="Pending", nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "order_id", "user_id", name="uq_commerce_requests_order_user"
        ),
    )
    op.create_index("ix_commerce_requests_user_id", "commerce_requests", ["user_id"])

    op.create_table(
        "commerce_request_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "request_id",
            sa.Uuid(),
            sa.ForeignKey("commerce_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("request_type", REQUEST_TYPE, nullable=False),
        sa.Column(
            "status", REQUEST_ITEM_STATUS, server_default="Pending", nullable=True
        ),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )


def downgrade() -> None:
    op.drop_table("commerce_request_items")
    op.drop_index("ix_commerce_requests_user_id", table_name="commerce_requests")
    op.drop_table("commerce_requests")
    op.drop_table("commerce_payment_transactions")
    op.drop_index(
        "ix_commerce_order_items_product_id", table_name="commerce_order_items"
    )
    op.drop_table("commerce_order_items")
    op.drop_index("ix_commerce_orders_user_id", table_name="commerce_orders")
    op.drop_table("commerce_orders")
    op.drop_table("commerce_cart_items")
    op.drop_index("uq_commerce_carts_active_user", table_name="commerce_carts")
    op.drop_index("ix_commerce_carts_user_id", table_name="commerce_carts")
    op.drop_table("commerce_carts")
    op.drop_table("commerce_notify_requests")
    op.drop_index(
        "ix_commerce_products_sub_category_id", table_name="commerce_products"
    )
    op.drop_index("ix_commerce_products_category_id", table_name="commerce_products")
    op.drop_table("commerce_products")
    op.drop_table("commerce_brands")
    op.drop_index(
        "ix_commerce_categories_parent_id", table_name="commerce_categories"
    )
    op.drop_table("commerce_categories")

    bind = op.get_bind()
    for enum_type in (
        REQUEST_ITEM_STATUS,
        REQUEST_TYPE,
        REQUEST_STATUS,
        SHIPPING_METHOD,
        PAYMENT_STATUS,
        ORDER_STATUS,
    ):
        enum_type.drop(bind, checkfirst=True)
