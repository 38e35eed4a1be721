"""
Pricewatch — Outcome Recorder

Persists one ScrapeOutcome atomically:

    success -> insert a PriceObservation, stamp last_scraped_at and
               last_successful_scrape_at, reset consecutive_failures to 0
    failure -> stamp last_scraped_at, consecutive_failures += 1

The failure counter is incremented in SQL (col = col + 1) and writes for the
same vendor target are serialized, so concurrent recordings never lose an
increment. A reading that fails observation validation is recorded as a
failure and nothing is inserted.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch.config import FailureKind
from pricewatch.errors import InvalidObservationError
from pricewatch.models.price_observation import PriceObservation
from pricewatch.models.vendor_target import VendorTarget
from pricewatch.scraper import ScrapeOutcome

logger = structlog.get_logger(__name__)


class OutcomeRecorder:
    """
    Writes scrape outcomes to price_observations and vendor_targets.

    Usage:
        recorder = OutcomeRecorder(session_factory)
        outcome = await recorder.record(outcome)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self._locks: defaultdict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def record(self, outcome: ScrapeOutcome) -> ScrapeOutcome:
        """
        Persist outcome in one transaction.

        Returns:
            The outcome as recorded, carrying the stored unit price. A success
            whose reading fails validation comes back as a VALIDATION failure;
            an unknown vendor target comes back as a PERSISTENCE failure.

        Raises:
            SQLAlchemyError: the transaction failed and was rolled back.
        """
        observation: PriceObservation | None = None
        if outcome.success:
            try:
                observation = self._build_observation(outcome)
                outcome = outcome.model_copy(update={"unit_price": observation.unit_price})
            except InvalidObservationError as e:
                logger.warning(
                    "record_observation_rejected",
                    vendor_target_id=str(outcome.vendor_target_id),
                    error=str(e),
                    source="recorder",
                )
                outcome = outcome.as_failure(FailureKind.VALIDATION, f"Invalid observation: {e}")

        async with self._locks[outcome.vendor_target_id]:
            async with self.session_factory() as session:
                try:
                    if observation is not None:
                        values = {
                            "last_scraped_at": outcome.scraped_at,
                            "last_successful_scrape_at": outcome.scraped_at,
                            "consecutive_failures": 0,
                        }
                    else:
                        values = {
                            "last_scraped_at": outcome.scraped_at,
                            "consecutive_failures": VendorTarget.consecutive_failures + 1,
                        }

                    result = await session.execute(
                        update(VendorTarget)
                        .where(VendorTarget.id == outcome.vendor_target_id)
                        .values(**values)
                    )
                    if result.rowcount == 0:
                        logger.warning(
                            "record_vendor_target_missing",
                            vendor_target_id=str(outcome.vendor_target_id),
                            source="recorder",
                        )
                        await session.rollback()
                        return outcome.as_failure(FailureKind.PERSISTENCE, "vendor target not found")

                    if observation is not None:
                        session.add(observation)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        logger.info(
            "record_outcome_stored",
            vendor_target_id=str(outcome.vendor_target_id),
            success=outcome.success,
            failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
            unit_price=str(outcome.unit_price) if outcome.unit_price is not None else None,
            source="recorder",
        )
        return outcome

    @staticmethod
    def _build_observation(outcome: ScrapeOutcome) -> PriceObservation:
        extraction = outcome.extraction
        if extraction is None:
            raise InvalidObservationError("successful outcome carries no extraction")
        return PriceObservation.create(
            vendor_target_id=outcome.vendor_target_id,
            price=extraction.price,
            quantity=extraction.quantity,
            unit=extraction.unit,
            confidence=extraction.confidence,
            extraction_method=extraction.method.value,
            source_url=outcome.source_url,
            observed_at=outcome.scraped_at,
            raw_snippet=extraction.raw_text,
        )
