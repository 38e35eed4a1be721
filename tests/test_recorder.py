"""
Tests for scraper/recorder.py — atomic outcome recording.

Uses the aiosqlite in-memory database from conftest.
All timestamps are timezone-aware UTC.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import BASE_TIME, create_product, create_vendor_target
from pricewatch.config import ExtractionMethod, FailureKind
from pricewatch.errors import InvalidObservationError
from pricewatch.models import PriceObservation, VendorTarget
from pricewatch.models.price_observation import (
    PRICE_DIGITS,
    QUANTITY_DIGITS,
    compute_unit_price,
    round_to_column,
)
from pricewatch.scraper import ExtractionResult, ScrapeOutcome
from pricewatch.scraper.recorder import OutcomeRecorder


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _success(target: VendorTarget, at: datetime = BASE_TIME, **extraction: object) -> ScrapeOutcome:
    data: dict[str, object] = {
        "price": Decimal("45.99"),
        "quantity": Decimal("5"),
        "unit": "mg",
        "confidence": 0.6,
        "raw_text": "BPC-157 5mg $45.99",
        "method": ExtractionMethod.PATTERN,
    }
    data.update(extraction)
    result = ExtractionResult(**data)
    return ScrapeOutcome(
        vendor_target_id=target.id,
        vendor_name=target.vendor_name,
        source_url=target.url,
        success=True,
        extraction=result,
        unit_price=result.price / result.quantity if result.quantity else None,
        final_state="done_success",
        scraped_at=at,
    )


def _failure(target_id: uuid.UUID, at: datetime = BASE_TIME) -> ScrapeOutcome:
    return ScrapeOutcome(
        vendor_target_id=target_id,
        vendor_name="Acme Labs",
        source_url="https://acme.example/bpc-157",
        success=False,
        error="Timeout error: page took longer than 30s to load",
        failure_kind=FailureKind.TIMEOUT,
        final_state="done_failure",
        scraped_at=at,
    )


async def _reload(factory: async_sessionmaker[AsyncSession], target_id: uuid.UUID) -> VendorTarget:
    async with factory() as session:
        target = await session.get(VendorTarget, target_id)
        assert target is not None
        return target


async def _observations(factory: async_sessionmaker[AsyncSession], target_id: uuid.UUID) -> list[PriceObservation]:
    async with factory() as session:
        result = await session.execute(
            select(PriceObservation)
            .where(PriceObservation.vendor_target_id == target_id)
            .order_by(PriceObservation.observed_at.asc())
        )
        return list(result.scalars().all())


@pytest.fixture
async def target(session_factory: async_sessionmaker[AsyncSession]) -> VendorTarget:
    async with session_factory() as session:
        product = await create_product(session)
        return await create_vendor_target(session, product)


# ---------------------------------------------------------------------------
# compute_unit_price / PriceObservation.create
# ---------------------------------------------------------------------------

class TestUnitPrice:
    def test_exact_division(self) -> None:
        assert compute_unit_price(Decimal("45.99"), Decimal("5")) == Decimal("9.198")
        assert compute_unit_price(Decimal("99.00"), Decimal("10")) == Decimal("9.9")

    @pytest.mark.parametrize(
        "price, quantity",
        [
            (Decimal("0"), Decimal("5")),
            (Decimal("10"), Decimal("0")),
            (Decimal("-1"), Decimal("5")),
            (Decimal("NaN"), Decimal("5")),
            (Decimal("10"), Decimal("Infinity")),
        ],
    )
    def test_rejects_non_positive_or_non_finite(self, price: Decimal, quantity: Decimal) -> None:
        with pytest.raises(InvalidObservationError):
            compute_unit_price(price, quantity)

    def test_create_normalizes_unit_and_truncates_snippet(self) -> None:
        obs = PriceObservation.create(
            vendor_target_id=uuid.uuid4(),
            price=Decimal("20"),
            quantity=Decimal("60"),
            unit="Capsule",
            confidence=0.7,
            extraction_method="pattern",
            source_url="https://acme.example/caps",
            observed_at=BASE_TIME,
            raw_snippet="x" * 5000,
        )
        assert obs.unit == "capsules"
        assert obs.currency == "USD"
        assert obs.raw_snippet is not None and len(obs.raw_snippet) == 1000
        assert obs.unit_price == Decimal("0.333333")

    @pytest.mark.parametrize("unit, confidence", [("oz", 0.5), ("mg", 1.5), ("mg", -0.1)])
    def test_create_rejects_bad_unit_or_confidence(self, unit: str, confidence: float) -> None:
        with pytest.raises(InvalidObservationError):
            PriceObservation.create(
                vendor_target_id=uuid.uuid4(),
                price=Decimal("20"),
                quantity=Decimal("2"),
                unit=unit,
                confidence=confidence,
                extraction_method="llm",
                source_url="https://acme.example",
                observed_at=BASE_TIME,
            )

    def test_round_to_column_half_up(self) -> None:
        assert round_to_column(Decimal("45.999"), PRICE_DIGITS, "price") == Decimal("46.00")
        assert round_to_column(Decimal("0.0625"), QUANTITY_DIGITS, "quantity") == Decimal("0.063")
        assert round_to_column(Decimal("0.0005"), QUANTITY_DIGITS, "quantity") == Decimal("0.001")

    @pytest.mark.parametrize(
        "value, digits",
        [
            (Decimal("0.0004"), QUANTITY_DIGITS),
            (Decimal("0.004"), PRICE_DIGITS),
            (Decimal("1e10"), PRICE_DIGITS),
        ],
    )
    def test_round_to_column_rejects_zero_or_overflow(self, value: Decimal, digits: tuple[int, int]) -> None:
        with pytest.raises(InvalidObservationError):
            round_to_column(value, digits, "value")

    def test_create_stores_column_scale_values(self) -> None:
        obs = PriceObservation.create(
            vendor_target_id=uuid.uuid4(),
            price=Decimal("45.999"),
            quantity=Decimal("0.0625"),
            unit="mg",
            confidence=0.9,
            extraction_method="llm",
            source_url="https://acme.example",
            observed_at=BASE_TIME,
        )
        assert obs.price == Decimal("46.00")
        assert obs.quantity == Decimal("0.063")
        assert obs.unit_price == Decimal("730.158730")

    def test_create_rejects_quantity_rounding_to_zero(self) -> None:
        with pytest.raises(InvalidObservationError, match="rounds to 0"):
            PriceObservation.create(
                vendor_target_id=uuid.uuid4(),
                price=Decimal("20"),
                quantity=Decimal("0.0004"),
                unit="mg",
                confidence=0.9,
                extraction_method="llm",
                source_url="https://acme.example",
                observed_at=BASE_TIME,
            )


# ---------------------------------------------------------------------------
# OutcomeRecorder
# ---------------------------------------------------------------------------

class TestOutcomeRecorder:
    @pytest.mark.asyncio
    async def test_success_inserts_observation_and_resets_health(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        recorder = OutcomeRecorder(session_factory)
        outcome = await recorder.record(_success(target))

        assert outcome.success
        observations = await _observations(session_factory, target.id)
        assert len(observations) == 1
        obs = observations[0]
        assert obs.unit_price == pytest.approx(Decimal("9.198"))
        assert obs.price / obs.quantity == pytest.approx(obs.unit_price)
        assert obs.unit == "mg"
        assert obs.extraction_method == "pattern"
        assert obs.confidence == 0.6
        assert obs.source_url == target.url

        refreshed = await _reload(session_factory, target.id)
        assert refreshed.consecutive_failures == 0
        assert refreshed.last_scraped_at is not None
        assert refreshed.last_successful_scrape_at is not None

    @pytest.mark.asyncio
    async def test_failure_streak_then_reset(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        """N failures -> counter N; next success -> counter 0."""
        recorder = OutcomeRecorder(session_factory)
        for n in range(1, 4):
            await recorder.record(_failure(target.id, BASE_TIME + timedelta(hours=n)))
            assert (await _reload(session_factory, target.id)).consecutive_failures == n

        assert await _observations(session_factory, target.id) == []
        refreshed = await _reload(session_factory, target.id)
        assert refreshed.last_scraped_at is not None
        assert refreshed.last_successful_scrape_at is None

        await recorder.record(_success(target, BASE_TIME + timedelta(hours=5)))
        refreshed = await _reload(session_factory, target.id)
        assert refreshed.consecutive_failures == 0
        assert refreshed.last_successful_scrape_at is not None

    @pytest.mark.asyncio
    async def test_concurrent_failures_never_lose_an_increment(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        recorder = OutcomeRecorder(session_factory)
        await asyncio.gather(*(recorder.record(_failure(target.id)) for _ in range(5)))
        assert (await _reload(session_factory, target.id)).consecutive_failures == 5

    @pytest.mark.asyncio
    async def test_invalid_observation_recorded_as_failure(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        recorder = OutcomeRecorder(session_factory)
        outcome = await recorder.record(_success(target, unit="oz"))

        assert not outcome.success
        assert outcome.failure_kind == FailureKind.VALIDATION
        assert outcome.extraction is None
        assert await _observations(session_factory, target.id) == []
        assert (await _reload(session_factory, target.id)).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_unknown_target_writes_nothing(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        recorder = OutcomeRecorder(session_factory)
        ghost = uuid.uuid4()
        outcome = await recorder.record(_failure(ghost))
        assert outcome.vendor_target_id == ghost
        assert not outcome.success
        assert outcome.failure_kind == FailureKind.PERSISTENCE
        assert outcome.error == "vendor target not found"

        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(PriceObservation))
        assert count == 0
        assert (await _reload(session_factory, target.id)).consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_stored_unit_price_matches_stored_price_and_quantity(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        recorder = OutcomeRecorder(session_factory)
        outcome = await recorder.record(
            _success(target, price=Decimal("45.999"), quantity=Decimal("0.0625"))
        )

        obs = (await _observations(session_factory, target.id))[0]
        assert obs.price == Decimal("46.00")
        assert obs.quantity == Decimal("0.063")
        assert obs.price / obs.quantity == pytest.approx(obs.unit_price)
        assert outcome.unit_price == obs.unit_price

    @pytest.mark.asyncio
    async def test_quantity_rounding_to_zero_recorded_as_failure(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        recorder = OutcomeRecorder(session_factory)
        outcome = await recorder.record(_success(target, quantity=Decimal("0.0004")))

        assert not outcome.success
        assert outcome.failure_kind == FailureKind.VALIDATION
        assert await _observations(session_factory, target.id) == []
        assert (await _reload(session_factory, target.id)).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_unknown_target_success_becomes_persistence_failure(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        recorder = OutcomeRecorder(session_factory)
        ghost = _success(target).model_copy(update={"vendor_target_id": uuid.uuid4()})
        outcome = await recorder.record(ghost)

        assert not outcome.success
        assert outcome.failure_kind == FailureKind.PERSISTENCE
        assert outcome.extraction is None
        assert outcome.unit_price is None
        assert await _observations(session_factory, target.id) == []
        refreshed = await _reload(session_factory, target.id)
        assert refreshed.consecutive_failures == 0
        assert refreshed.last_scraped_at is None

    @pytest.mark.asyncio
    async def test_observed_at_matches_scrape_time(
        self, session_factory: async_sessionmaker[AsyncSession], target: VendorTarget
    ) -> None:
        recorder = OutcomeRecorder(session_factory)
        at = datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc)
        await recorder.record(_success(target, at))
        obs = (await _observations(session_factory, target.id))[0]
        assert obs.observed_at.replace(tzinfo=timezone.utc) == at
