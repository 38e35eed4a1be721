"""
Pricewatch — Vendor Ranking

Ranks a product's vendors by latest unit price (cheapest first) and computes
product-level price statistics. Read-only consumer of price_observations.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.config import TrendDirection
from pricewatch.engine.price_trend import classify_trend, get_window_observations
from pricewatch.models.price_observation import PriceObservation
from pricewatch.models.vendor_target import VendorTarget

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VendorRanking:
    """One vendor's row in the product comparison table."""

    vendor_target_id: uuid.UUID
    vendor_name: str
    url: str
    price: Decimal | None
    quantity: Decimal | None
    unit: str | None
    unit_price: Decimal | None
    confidence: float | None
    is_available: bool | None
    last_updated: datetime | None
    trend: TrendDirection
    data_points: int
    last_successful_scrape_at: datetime | None
    consecutive_failures: int


@dataclass(frozen=True)
class PriceStats:
    best_unit_price: Decimal
    worst_unit_price: Decimal
    average_unit_price: Decimal
    vendor_count: int
    available_vendors: int
    last_updated: datetime | None


def rank_vendors(rows: Sequence[VendorRanking]) -> list[VendorRanking]:
    """Priced vendors by unit price ascending, then unpriced vendors in input order."""
    priced = sorted((r for r in rows if r.unit_price is not None), key=lambda r: r.unit_price)
    unpriced = [r for r in rows if r.unit_price is None]
    return priced + unpriced


def summarize_prices(rows: Sequence[VendorRanking]) -> PriceStats | None:
    """
    Best / worst / average unit price over vendors with an available price.

    Returns:
        PriceStats, or None when no vendor has an available price.
    """
    available = [r.unit_price for r in rows if r.unit_price is not None and r.is_available is not False]
    if not available:
        return None

    updates = [r.last_updated for r in rows if r.last_updated is not None]
    return PriceStats(
        best_unit_price=min(available),
        worst_unit_price=max(available),
        average_unit_price=sum(available, Decimal("0")) / len(available),
        vendor_count=len(rows),
        available_vendors=len(available),
        last_updated=max(updates) if updates else None,
    )


async def _latest_observation(
    vendor_target_id: uuid.UUID, session: AsyncSession
) -> PriceObservation | None:
    result = await session.execute(
        select(PriceObservation)
        .where(PriceObservation.vendor_target_id == vendor_target_id)
        .order_by(PriceObservation.observed_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def get_vendor_rankings(
    product_id: uuid.UUID,
    session: AsyncSession,
    now: datetime | None = None,
) -> list[VendorRanking]:
    """
    Ranked comparison rows for every active vendor of a product.

    Args:
        product_id: Product to rank vendors for.
        session: Async SQLAlchemy session.
        now: Reference time for the trend window (tests).
    """
    result = await session.execute(
        select(VendorTarget)
        .where(VendorTarget.product_id == product_id, VendorTarget.is_active.is_(True))
        .order_by(VendorTarget.created_at.asc(), VendorTarget.vendor_name.asc())
    )
    targets = result.scalars().all()

    rows: list[VendorRanking] = []
    for target in targets:
        latest = await _latest_observation(target.id, session)
        window = await get_window_observations(target.id, session, now=now)
        trend = (
            classify_trend(window[0].unit_price, window[-1].unit_price)
            if len(window) >= 2
            else TrendDirection.STABLE
        )
        rows.append(
            VendorRanking(
                vendor_target_id=target.id,
                vendor_name=target.vendor_name,
                url=target.url,
                price=latest.price if latest else None,
                quantity=latest.quantity if latest else None,
                unit=latest.unit if latest else None,
                unit_price=latest.unit_price if latest else None,
                confidence=latest.confidence if latest else None,
                is_available=latest.is_available if latest else None,
                last_updated=latest.observed_at if latest else None,
                trend=trend,
                data_points=len(window),
                last_successful_scrape_at=target.last_successful_scrape_at,
                consecutive_failures=target.consecutive_failures,
            )
        )

    ranked = rank_vendors(rows)
    logger.info(
        "vendor_rankings_built",
        product_id=str(product_id),
        vendor_count=len(ranked),
        priced=sum(1 for r in ranked if r.unit_price is not None),
        source="ranking",
    )
    return ranked
