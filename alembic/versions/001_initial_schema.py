"""Initial schema — products, vendor_targets, price_observations

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- products (catalog, owned by admin tooling) ---
    op.create_table(
        "products",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(200), nullable=False, unique=True),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column(
            "unit",
            sa.String(16),
            nullable=False,
            comment="Reference unit: mg, ml, g, capsules, tablets, iu, mcg",
        ),
        sa.Column("is_active", sa.BOOLEAN(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )
    op.create_index("ix_products_category_active", "products", ["category", "is_active"])

    # --- vendor_targets (health columns written by the outcome recorder) ---
    op.create_table(
        "vendor_targets",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "product_id",
            UUID(as_uuid=True),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("vendor_name", sa.String(100), nullable=False),
        sa.Column("url", sa.String(), nullable=False, comment="Vendor product page (http/https)"),
        sa.Column(
            "extraction_hint",
            sa.String(500),
            nullable=True,
            comment="CSS selector scoping the price block",
        ),
        sa.Column("is_active", sa.BOOLEAN(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "last_scraped_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Last scrape attempt, success or failure",
        ),
        sa.Column("last_successful_scrape_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("consecutive_failures", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("consecutive_failures >= 0", name="ck_vendor_targets_failures_non_negative"),
    )
    op.create_index("ix_vendor_targets_product_active", "vendor_targets", ["product_id", "is_active"])
    op.create_index("ix_vendor_targets_last_scraped", "vendor_targets", ["last_scraped_at"])

    # --- price_observations (append-only) ---
    op.create_table(
        "price_observations",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "vendor_target_id",
            UUID(as_uuid=True),
            sa.ForeignKey("vendor_targets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("price", sa.DECIMAL(12, 2), nullable=False, comment="Listed price"),
        sa.Column("quantity", sa.DECIMAL(12, 3), nullable=False, comment="Amount sold at that price, in unit"),
        sa.Column("unit", sa.String(16), nullable=False),
        sa.Column("unit_price", sa.DECIMAL(18, 6), nullable=False, comment="price / quantity"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("is_available", sa.BOOLEAN(), nullable=False, server_default=sa.text("true")),
        sa.Column("confidence", sa.FLOAT(), nullable=False, comment="Extraction confidence 0-1"),
        sa.Column(
            "extraction_method",
            sa.String(32),
            nullable=False,
            comment="llm | pattern | pattern_url_size",
        ),
        sa.Column("raw_snippet", sa.Text(), nullable=True, comment="Bounded page text kept for audit"),
        sa.Column("source_url", sa.String(), nullable=False),
        sa.Column(
            "observed_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("price > 0", name="ck_price_observations_price_positive"),
        sa.CheckConstraint("quantity > 0", name="ck_price_observations_quantity_positive"),
        sa.CheckConstraint("unit_price > 0", name="ck_price_observations_unit_price_positive"),
    )
    op.create_index(
        "ix_price_observations_target_observed",
        "price_observations",
        ["vendor_target_id", "observed_at"],
    )
    op.create_index("ix_price_observations_unit_price", "price_observations", ["unit_price"])


def downgrade() -> None:
    op.drop_index("ix_price_observations_unit_price", table_name="price_observations")
    op.drop_index("ix_price_observations_target_observed", table_name="price_observations")
    op.drop_table("price_observations")
    op.drop_index("ix_vendor_targets_last_scraped", table_name="vendor_targets")
    op.drop_index("ix_vendor_targets_product_active", table_name="vendor_targets")
    op.drop_table("vendor_targets")
    op.drop_index("ix_products_category_active", table_name="products")
    op.drop_table("products")
