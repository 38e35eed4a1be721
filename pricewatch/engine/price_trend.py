"""
Pricewatch — 30-Day Unit-Price Trend

Classifies a vendor target's unit-price direction from price_observations.

Algorithm:
    1. Query observations for the vendor target in the last window_days, ASC,
       at most TREND_MAX_POINTS rows (the oldest ones in the window).
    2. Fewer than 2 points -> STABLE.
    3. change_pct = (newest - oldest) / oldest * 100
    4. change_pct > +threshold -> UP, < -threshold -> DOWN, else STABLE.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.config import TrendDirection, settings
from pricewatch.models.price_observation import PriceObservation

logger = structlog.get_logger(__name__)


def percent_change(old: Decimal, new: Decimal) -> Decimal | None:
    """(new - old) / old * 100, or None when old is not positive."""
    if old <= 0:
        return None
    return (new - old) / old * Decimal("100")


def classify_trend(
    oldest: Decimal,
    newest: Decimal,
    threshold_pct: float | None = None,
) -> TrendDirection:
    """
    Direction of the move from oldest to newest unit price.

    Args:
        oldest: First unit price in the window.
        newest: Last unit price in the window.
        threshold_pct: Minimum absolute % move (default TREND_CHANGE_THRESHOLD_PCT).
    """
    threshold = Decimal(str(threshold_pct if threshold_pct is not None else settings.TREND_CHANGE_THRESHOLD_PCT))
    change = percent_change(oldest, newest)
    if change is None:
        return TrendDirection.STABLE
    if change > threshold:
        return TrendDirection.UP
    if change < -threshold:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


async def get_window_observations(
    vendor_target_id: uuid.UUID,
    session: AsyncSession,
    window_days: int | None = None,
    now: datetime | None = None,
) -> Sequence[PriceObservation]:
    """Oldest-first observations inside the trend window, capped at TREND_MAX_POINTS."""
    days = window_days if window_days is not None else settings.TREND_WINDOW_DAYS
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)

    stmt = (
        select(PriceObservation)
        .where(
            PriceObservation.vendor_target_id == vendor_target_id,
            PriceObservation.observed_at >= cutoff,
        )
        .order_by(PriceObservation.observed_at.asc())
        .limit(settings.TREND_MAX_POINTS)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_price_trend(
    vendor_target_id: uuid.UUID,
    session: AsyncSession,
    window_days: int | None = None,
    now: datetime | None = None,
) -> TrendDirection:
    """
    Trend of one vendor target's unit price over the window.

    Returns:
        TrendDirection; STABLE when fewer than 2 observations exist.
    """
    rows = await get_window_observations(vendor_target_id, session, window_days, now)

    if len(rows) < 2:
        logger.debug(
            "price_trend_insufficient_data",
            vendor_target_id=str(vendor_target_id),
            data_points=len(rows),
            source="price_trend",
        )
        return TrendDirection.STABLE

    direction = classify_trend(rows[0].unit_price, rows[-1].unit_price)
    logger.debug(
        "price_trend_calculated",
        vendor_target_id=str(vendor_target_id),
        data_points=len(rows),
        oldest=str(rows[0].unit_price),
        newest=str(rows[-1].unit_price),
        direction=direction.value,
        source="price_trend",
    )
    return direction
