"""
Pricewatch — Price-Drop Detection

For each active vendor of a product, compares the latest unit price seen in
the last ALERT_LATEST_WINDOW_HOURS against the most recent one from the
ALERT_LOOKBACK_DAYS before that. A vendor alerts when the drop exceeds
ALERT_DROP_THRESHOLD_PCT or the latest unit price is at or below a
subscriber's absolute threshold.

Detection only; delivering alerts is someone else's job.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.config import settings
from pricewatch.models.price_observation import PriceObservation
from pricewatch.models.vendor_target import VendorTarget

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PriceDropAlert:
    vendor_target_id: uuid.UUID
    vendor_name: str
    url: str
    old_unit_price: Decimal
    new_unit_price: Decimal
    quantity: Decimal
    unit: str
    savings: Decimal
    percent_drop: Decimal


def is_price_drop(
    previous: Decimal,
    latest: Decimal,
    drop_threshold_pct: float | None = None,
    alert_threshold: Decimal | None = None,
) -> bool:
    """
    True when latest is more than drop_threshold_pct below previous, or at or
    below alert_threshold.
    """
    if alert_threshold is not None and latest <= alert_threshold:
        return True
    if previous <= 0:
        return False
    threshold = Decimal(str(drop_threshold_pct if drop_threshold_pct is not None else settings.ALERT_DROP_THRESHOLD_PCT))
    percent_drop = (previous - latest) / previous * Decimal("100")
    return percent_drop > threshold


async def _most_recent(
    session: AsyncSession,
    vendor_target_id: uuid.UUID,
    since: datetime,
    before: datetime | None = None,
) -> PriceObservation | None:
    stmt = select(PriceObservation).where(
        PriceObservation.vendor_target_id == vendor_target_id,
        PriceObservation.observed_at >= since,
    )
    if before is not None:
        stmt = stmt.where(PriceObservation.observed_at < before)
    result = await session.execute(stmt.order_by(PriceObservation.observed_at.desc()).limit(1))
    return result.scalars().first()


async def find_price_drops(
    product_id: uuid.UUID,
    session: AsyncSession,
    alert_threshold: Decimal | None = None,
    now: datetime | None = None,
) -> list[PriceDropAlert]:
    """
    Price drops across a product's active vendors.

    Args:
        product_id: Product to check.
        session: Async SQLAlchemy session.
        alert_threshold: Optional absolute unit-price threshold.
        now: Reference time (tests).

    Returns:
        One PriceDropAlert per vendor that triggered, in vendor order.
    """
    now = now or datetime.now(timezone.utc)
    recent_cutoff = now - timedelta(hours=settings.ALERT_LATEST_WINDOW_HOURS)
    lookback_cutoff = now - timedelta(days=settings.ALERT_LOOKBACK_DAYS)

    result = await session.execute(
        select(VendorTarget)
        .where(VendorTarget.product_id == product_id, VendorTarget.is_active.is_(True))
        .order_by(VendorTarget.created_at.asc(), VendorTarget.vendor_name.asc())
    )

    alerts: list[PriceDropAlert] = []
    for target in result.scalars().all():
        latest = await _most_recent(session, target.id, since=recent_cutoff)
        if latest is None:
            continue
        previous = await _most_recent(session, target.id, since=lookback_cutoff, before=recent_cutoff)
        if previous is None:
            continue

        if not is_price_drop(previous.unit_price, latest.unit_price, alert_threshold=alert_threshold):
            continue

        savings = previous.unit_price - latest.unit_price
        alerts.append(
            PriceDropAlert(
                vendor_target_id=target.id,
                vendor_name=target.vendor_name,
                url=target.url,
                old_unit_price=previous.unit_price,
                new_unit_price=latest.unit_price,
                quantity=latest.quantity,
                unit=latest.unit,
                savings=savings,
                percent_drop=savings / previous.unit_price * Decimal("100"),
            )
        )

    logger.info(
        "price_drop_check_complete",
        product_id=str(product_id),
        alerts=len(alerts),
        source="alerts",
    )
    return alerts
