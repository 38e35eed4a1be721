"""
Pricewatch — Product Model

Catalog entry owned by the admin collaborator. The scraping core only reads
the product name to give the LLM extractor context.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BOOLEAN, TIMESTAMP, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from pricewatch.models.base import Base


class Product(Base):
    """A tracked product (e.g. "BPC-157 5mg"), priced across many vendors."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    unit: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="Reference unit: mg, ml, g, capsules, tablets, iu, mcg"
    )
    is_active: Mapped[bool] = mapped_column(BOOLEAN, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_products_category_active", "category", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Product slug={self.slug!r} name={self.name!r}>"
