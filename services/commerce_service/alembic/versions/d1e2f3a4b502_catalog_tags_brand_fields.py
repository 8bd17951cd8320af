"""catalog tags, brand fields, quarantine origin

Revision ID: d1e2f3a4b502
Revises: c0a1e2b3d401
Create Date: 2026-10-18 15:00:00.000000
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "d1e2f3a4b502"
down_revision = "c0a1e2b3d401"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "commerce_tags",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("featured", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("image", sa.String(1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.add_column("commerce_brands", sa.Column("title", sa.String(255), nullable=True))
    op.add_column("commerce_brands", sa.Column("category_ids", sa.JSON(), nullable=True))
    op.add_column(
        "commerce_brands",
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=True),
    )
    op.add_column(
        "commerce_brands",
        sa.Column("is_featured", sa.Boolean(), server_default="false", nullable=True),
    )
    op.execute("UPDATE commerce_brands SET title = name WHERE title IS NULL")
    op.execute("UPDATE commerce_brands SET category_ids = '[]' WHERE category_ids IS NULL")

    op.add_column(
        "commerce_products",
        sa.Column("quarantined_from_id", sa.Uuid(), nullable=True),
    )
    op.create_foreign_key(
        "fk_commerce_products_quarantined_from_id",
        "commerce_products",
        "commerce_categories",
        ["quarantined_from_id"],
        ["id"],
        ondelete="SET NULL",
    )
    op.create_index(
        "ix_commerce_products_quarantined_from_id",
        "commerce_products",
        ["quarantined_from_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_commerce_products_quarantined_from_id", table_name="commerce_products"
    )
    op.drop_constraint(
        "fk_commerce_products_quarantined_from_id",
        "commerce_products",
        type_="foreignkey",
    )
    op.drop_column("commerce_products", "quarantined_from_id")

    op.drop_column("commerce_brands", "is_featured")
    op.drop_column("commerce_brands", "is_active")
    op.drop_column("commerce_brands", "category_ids")
    op.drop_column("commerce_brands", "title")

    op.drop_table("commerce_tags")
