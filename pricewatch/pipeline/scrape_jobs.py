"""
Pricewatch — Scrape Jobs (batch + single-vendor entry points)

Called by the scheduling collaborator (cron, admin "scrape now" button).

    run_scrape_batch      -> loads active vendor targets and runs one batch
    scrape_single_vendor  -> scrapes one vendor target immediately

Both record every outcome through OutcomeRecorder.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch.config import settings
from pricewatch.errors import VendorTargetUnavailable
from pricewatch.models.product import Product
from pricewatch.models.vendor_target import VendorTarget
from pricewatch.scraper import ScrapeOutcome, ScrapeReport, ScrapeTarget
from pricewatch.scraper.recorder import OutcomeRecorder
from pricewatch.scraper.runner import ScrapeOrchestrator

logger = structlog.get_logger(__name__)


def _to_target(vendor_target: VendorTarget, product_name: str | None) -> ScrapeTarget:
    return ScrapeTarget(
        id=vendor_target.id,
        product_name=product_name or "unknown product",
        vendor_name=vendor_target.vendor_name,
        url=vendor_target.url,
        extraction_hint=vendor_target.extraction_hint,
        is_active=vendor_target.is_active,
    )


async def load_active_targets(
    session: AsyncSession,
    product_id: uuid.UUID | None = None,
    limit: int | None = None,
) -> list[ScrapeTarget]:
    """
    Active vendor targets, oldest first, with their product names.

    Args:
        session: Async SQLAlchemy session.
        product_id: Restrict to one product's vendors.
        limit: Maximum number of targets (None = all).
    """
    stmt = (
        select(VendorTarget, Product.name)
        .outerjoin(Product, Product.id == VendorTarget.product_id)
        .where(VendorTarget.is_active.is_(True))
        .order_by(VendorTarget.created_at.asc(), VendorTarget.vendor_name.asc())
    )
    if product_id is not None:
        stmt = stmt.where(VendorTarget.product_id == product_id)
    if limit is not None:
        stmt = stmt.limit(limit)

    result = await session.execute(stmt)
    return [_to_target(vendor_target, name) for vendor_target, name in result.all()]


async def run_scrape_batch(
    session_factory: async_sessionmaker[AsyncSession],
    product_id: uuid.UUID | None = None,
    limit: int | None = None,
    cancel_event: asyncio.Event | None = None,
    orchestrator: ScrapeOrchestrator | None = None,
) -> ScrapeReport:
    """
    Scrape up to `limit` active vendor targets in one batch.

    Args:
        session_factory: Session factory used for loading and recording.
        product_id: Only scrape this product's vendors.
        limit: Cap on targets (default SCRAPE_BATCH_LIMIT).
        cancel_event: Set to stop the batch between vendors.
        orchestrator: Injected orchestrator (tests); default builds one with
            an OutcomeRecorder over session_factory.

    Returns:
        ScrapeReport with one outcome per attempted vendor.
    """
    batch_limit = limit if limit is not None else settings.SCRAPE_BATCH_LIMIT

    async with session_factory() as session:
        targets = await load_active_targets(session, product_id=product_id, limit=batch_limit)

    logger.info(
        "scrape_job_batch_loaded",
        product_id=str(product_id) if product_id else None,
        target_count=len(targets),
        limit=batch_limit,
        source="scrape_jobs",
    )

    if orchestrator is None:
        orchestrator = ScrapeOrchestrator(recorder=OutcomeRecorder(session_factory))
    return await orchestrator.run_batch(targets, cancel_event=cancel_event)


async def scrape_single_vendor(
    session_factory: async_sessionmaker[AsyncSession],
    vendor_target_id: uuid.UUID,
    orchestrator: ScrapeOrchestrator | None = None,
) -> ScrapeOutcome:
    """
    Scrape one vendor target now, outside any batch.

    Raises:
        VendorTargetUnavailable: unknown id or inactive target.
    """
    async with session_factory() as session:
        result = await session.execute(
            select(VendorTarget, Product.name)
            .outerjoin(Product, Product.id == VendorTarget.product_id)
            .where(VendorTarget.id == vendor_target_id)
        )
        row = result.first()

    if row is None:
        raise VendorTargetUnavailable(f"Vendor target {vendor_target_id} not found")
    vendor_target, product_name = row
    if not vendor_target.is_active:
        raise VendorTargetUnavailable(f"Vendor target {vendor_target_id} is inactive")

    logger.info(
        "scrape_job_single_start",
        vendor_target_id=str(vendor_target_id),
        vendor_name=vendor_target.vendor_name,
        source="scrape_jobs",
    )

    if orchestrator is None:
        orchestrator = ScrapeOrchestrator(recorder=OutcomeRecorder(session_factory))
    return await orchestrator.scrape_single(_to_target(vendor_target, product_name))
