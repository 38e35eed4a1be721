"""
Pricewatch — Vendor Target Model

One vendor's tracked page for one product. Created by the admin collaborator;
the scraping core only touches the health columns, and only through
OutcomeRecorder (scraper/recorder.py).

Invariant: consecutive_failures resets to 0 on a successful scrape and grows
by exactly 1 on each failed scrape.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BOOLEAN, INTEGER, TIMESTAMP, CheckConstraint, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from pricewatch.models.base import Base


class VendorTarget(Base):
    """
    A (product, vendor, URL) tuple eligible for scraping while is_active.

    extraction_hint is an optional CSS selector scoping the text the fetcher
    reads; the fetcher falls back to the full page when it matches nothing.
    """

    __tablename__ = "vendor_targets"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )
    vendor_name: Mapped[str] = mapped_column(String(100), nullable=False)
    url: Mapped[str] = mapped_column(String, nullable=False, comment="Vendor product page (http/https)")
    extraction_hint: Mapped[str | None] = mapped_column(
        String(500), nullable=True, comment="CSS selector scoping the price block"
    )
    is_active: Mapped[bool] = mapped_column(BOOLEAN, default=True, nullable=False)

    # Health columns, written only by OutcomeRecorder
    last_scraped_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Last scrape attempt, success or failure"
    )
    last_successful_scrape_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    consecutive_failures: Mapped[int] = mapped_column(
        INTEGER, default=0, server_default="0", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("consecutive_failures >= 0", name="ck_vendor_targets_failures_non_negative"),
        Index("ix_vendor_targets_product_active", "product_id", "is_active"),
        Index("ix_vendor_targets_last_scraped", "last_scraped_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<VendorTarget vendor={self.vendor_name!r} active={self.is_active} "
            f"failures={self.consecutive_failures}>"
        )
