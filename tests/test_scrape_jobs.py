"""
Integration tests for pipeline/scrape_jobs.py.

Real orchestrator + real OutcomeRecorder over aiosqlite; only the browser and
the LLM endpoint are faked.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import FakeBrowserSession, create_product, create_vendor_target, make_extractor
from pricewatch.config import ExtractionFailureKind, FailureKind
from pricewatch.errors import ExtractionError, VendorTargetUnavailable
from pricewatch.models import PriceObservation, VendorTarget
from pricewatch.pipeline.scrape_jobs import load_active_targets, run_scrape_batch, scrape_single_vendor
from pricewatch.scraper.recorder import OutcomeRecorder
from pricewatch.scraper.runner import ScrapeOrchestrator

AUTH_ERROR = ExtractionError(ExtractionFailureKind.AUTHENTICATION, "LLM API: invalid API key.")


def _orchestrator(
    session_factory: async_sessionmaker[AsyncSession], browser: FakeBrowserSession
) -> ScrapeOrchestrator:
    return ScrapeOrchestrator(
        extractor_factory=lambda: make_extractor(error=AUTH_ERROR),
        browser_factory=lambda: browser,
        recorder=OutcomeRecorder(session_factory),
        delay_seconds=0,
    )


async def _all_observations(session_factory: async_sessionmaker[AsyncSession]) -> list[PriceObservation]:
    async with session_factory() as session:
        result = await session.execute(select(PriceObservation))
        return list(result.scalars().all())


class TestLoadActiveTargets:
    @pytest.mark.asyncio
    async def test_active_only_oldest_first_with_product_name(self, db_session: AsyncSession) -> None:
        product = await create_product(db_session, name="BPC-157")
        other = await create_product(db_session, name="TB-500")
        await create_vendor_target(db_session, product, vendor_name="Bravo", created_offset_minutes=2)
        await create_vendor_target(db_session, product, vendor_name="Alpha", created_offset_minutes=1)
        await create_vendor_target(db_session, product, vendor_name="Dormant", is_active=False)
        await create_vendor_target(db_session, other, vendor_name="Charlie", created_offset_minutes=3)

        targets = await load_active_targets(db_session)
        assert [t.vendor_name for t in targets] == ["Alpha", "Bravo", "Charlie"]
        assert [t.product_name for t in targets] == ["BPC-157", "BPC-157", "TB-500"]

        limited = await load_active_targets(db_session, limit=2)
        assert [t.vendor_name for t in limited] == ["Alpha", "Bravo"]

        only_other = await load_active_targets(db_session, product_id=other.id)
        assert [t.vendor_name for t in only_other] == ["Charlie"]


class TestRunScrapeBatch:
    @pytest.mark.asyncio
    async def test_batch_records_every_outcome(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fake_browser: FakeBrowserSession,
        mock_page: AsyncMock,
    ) -> None:
        async with session_factory() as session:
            product = await create_product(session)
            first = await create_vendor_target(session, product, vendor_name="Alpha", created_offset_minutes=1)
            second = await create_vendor_target(
                session, product, vendor_name="Bravo", created_offset_minutes=2, consecutive_failures=4
            )
            third = await create_vendor_target(session, product, vendor_name="Charlie", created_offset_minutes=3)

        mock_page.goto.side_effect = [None, PlaywrightTimeoutError("Timeout 30000ms exceeded."), None]

        report = await run_scrape_batch(
            session_factory, orchestrator=_orchestrator(session_factory, fake_browser)
        )

        assert report.total_vendors == 3
        assert report.successful_scrapes == 2
        assert report.failed_scrapes == 1
        assert [o.vendor_target_id for o in report.results] == [first.id, second.id, third.id]
        assert report.results[1].failure_kind == FailureKind.TIMEOUT

        observations = await _all_observations(session_factory)
        assert {o.vendor_target_id for o in observations} == {first.id, third.id}
        assert all(o.unit_price == pytest.approx(Decimal("9.198")) for o in observations)

        async with session_factory() as session:
            failed = await session.get(VendorTarget, second.id)
            assert failed is not None
            assert failed.consecutive_failures == 5

    @pytest.mark.asyncio
    async def test_limit_caps_batch(
        self, session_factory: async_sessionmaker[AsyncSession], fake_browser: FakeBrowserSession
    ) -> None:
        async with session_factory() as session:
            product = await create_product(session)
            for n in range(4):
                await create_vendor_target(session, product, vendor_name=f"Vendor {n}", created_offset_minutes=n)

        report = await run_scrape_batch(
            session_factory, limit=2, orchestrator=_orchestrator(session_factory, fake_browser)
        )
        assert report.total_vendors == 2
        assert [o.vendor_name for o in report.results] == ["Vendor 0", "Vendor 1"]


class TestScrapeSingleVendor:
    @pytest.mark.asyncio
    async def test_fetch_timeout_counts_one_failure(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fake_browser: FakeBrowserSession,
        mock_page: AsyncMock,
    ) -> None:
        """Timeout -> failed outcome, no observation, failure count +1."""
        async with session_factory() as session:
            product = await create_product(session)
            target = await create_vendor_target(session, product)

        mock_page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded.")
        outcome = await scrape_single_vendor(
            session_factory, target.id, orchestrator=_orchestrator(session_factory, fake_browser)
        )

        assert not outcome.success
        assert outcome.failure_kind == FailureKind.TIMEOUT
        assert "Timeout" in (outcome.error or "")
        assert await _all_observations(session_factory) == []
        async with session_factory() as session:
            refreshed = await session.get(VendorTarget, target.id)
            assert refreshed is not None
            assert refreshed.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_success_persists_observation(
        self, session_factory: async_sessionmaker[AsyncSession], fake_browser: FakeBrowserSession
    ) -> None:
        async with session_factory() as session:
            product = await create_product(session)
            target = await create_vendor_target(session, product)

        outcome = await scrape_single_vendor(
            session_factory, target.id, orchestrator=_orchestrator(session_factory, fake_browser)
        )
        assert outcome.success
        observations = await _all_observations(session_factory)
        assert len(observations) == 1
        assert observations[0].unit_price == pytest.approx(Decimal("9.198"))

    @pytest.mark.asyncio
    async def test_unknown_target(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        with pytest.raises(VendorTargetUnavailable):
            await scrape_single_vendor(session_factory, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_inactive_target(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        async with session_factory() as session:
            product = await create_product(session)
            target = await create_vendor_target(session, product, is_active=False)
        with pytest.raises(VendorTargetUnavailable):
            await scrape_single_vendor(session_factory, target.id)
