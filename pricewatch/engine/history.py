"""
Pricewatch — Daily Price History

Aggregates price_observations into one OHLC point per UTC day for charting.
Days without observations repeat the previous close (volume 0) once a first
observed day exists; leading empty days are omitted.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.models.price_observation import PriceObservation
from pricewatch.models.vendor_target import VendorTarget

logger = structlog.get_logger(__name__)

TIMEFRAME_DAYS: dict[str, int] = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
}
DEFAULT_TIMEFRAME = "30d"


@dataclass(frozen=True)
class DailyPricePoint:
    """OHLC of unit prices for one UTC day."""

    day: date
    open: Decimal
    close: Decimal
    high: Decimal
    low: Decimal
    avg_unit_price: Decimal | None  # None on carried-forward days
    volume: int


@dataclass(frozen=True)
class HistorySummary:
    current: Decimal
    high: Decimal
    low: Decimal
    change_24h_pct: Decimal


def _utc_day(moment: datetime) -> date:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(timezone.utc).date()


def aggregate_daily(
    observations: Iterable[PriceObservation],
    days: int,
    end: date | None = None,
) -> list[DailyPricePoint]:
    """
    Group observations into daily points over the `days` days ending at `end`.

    Args:
        observations: Observations in any order; only observed_at and
            unit_price are read.
        days: Number of calendar days in the range (inclusive of end).
        end: Last day of the range (default: today, UTC).
    """
    last_day = end or datetime.now(timezone.utc).date()
    first_day = last_day - timedelta(days=days - 1)

    by_day: defaultdict[date, list[Decimal]] = defaultdict(list)
    for obs in sorted(observations, key=lambda o: o.observed_at):
        day = _utc_day(obs.observed_at)
        if first_day <= day <= last_day:
            by_day[day].append(obs.unit_price)

    points: list[DailyPricePoint] = []
    last_close: Decimal | None = None
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        prices = by_day.get(day)
        if prices:
            point = DailyPricePoint(
                day=day,
                open=prices[0],
                close=prices[-1],
                high=max(prices),
                low=min(prices),
                avg_unit_price=sum(prices, Decimal("0")) / len(prices),
                volume=len(prices),
            )
            last_close = point.close
            points.append(point)
        elif last_close is not None:
            points.append(
                DailyPricePoint(
                    day=day,
                    open=last_close,
                    close=last_close,
                    high=last_close,
                    low=last_close,
                    avg_unit_price=None,
                    volume=0,
                )
            )
    return points


def summarize_history(points: Sequence[DailyPricePoint]) -> HistorySummary | None:
    """Current / high / low close and the change between the last two days, in %."""
    closes = [p.close for p in points if p.close > 0]
    if not closes:
        return None

    change = Decimal("0")
    if len(closes) > 1:
        change = (closes[-1] - closes[-2]) / closes[-2] * Decimal("100")
    return HistorySummary(current=closes[-1], high=max(closes), low=min(closes), change_24h_pct=change)


async def get_price_history(
    product_id: uuid.UUID,
    session: AsyncSession,
    timeframe: str = DEFAULT_TIMEFRAME,
    vendor_target_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> list[DailyPricePoint]:
    """
    Daily unit-price history for a product, or for one of its vendors.

    Unknown timeframes fall back to 30 days.
    """
    days = TIMEFRAME_DAYS.get(timeframe)
    if days is None:
        logger.warning("price_history_unknown_timeframe", timeframe=timeframe, source="history")
        days = TIMEFRAME_DAYS[DEFAULT_TIMEFRAME]

    end = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()
    start = datetime.combine(end - timedelta(days=days - 1), time.min, tzinfo=timezone.utc)

    stmt = select(PriceObservation).where(PriceObservation.observed_at >= start)
    if vendor_target_id is not None:
        stmt = stmt.where(PriceObservation.vendor_target_id == vendor_target_id)
    else:
        stmt = stmt.join(VendorTarget, VendorTarget.id == PriceObservation.vendor_target_id).where(
            VendorTarget.product_id == product_id
        )

    result = await session.execute(stmt.order_by(PriceObservation.observed_at.asc()))
    observations = result.scalars().all()
    points = aggregate_daily(observations, days, end=end)

    logger.info(
        "price_history_built",
        product_id=str(product_id),
        timeframe=timeframe,
        observations=len(observations),
        points=len(points),
        source="history",
    )
    return points
