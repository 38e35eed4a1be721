"""
Pricewatch — Scrape Orchestrator

Runs the per-vendor pipeline as a linear state machine:

    FETCH -> PRIMARY_EXTRACT -> DONE_SUCCESS
                    |
                    v
             FALLBACK_EXTRACT -> DONE_SUCCESS | DONE_FAILURE

(a fetch failure goes straight to DONE_FAILURE). No retries inside one run.

Batch mode walks targets strictly one at a time inside a single browser
session, pauses a fixed delay between vendors, records each outcome before
moving on, and never lets one vendor's failure stop the batch.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError

from pricewatch.config import FailureKind
from pricewatch.errors import ExtractionError, FetchError, InvalidObservationError
from pricewatch.models.price_observation import compute_unit_price
from pricewatch.scraper import ExtractionResult, ScrapeOutcome, ScrapeReport, ScrapeTarget
from pricewatch.scraper.anti_detect import AntiDetect
from pricewatch.scraper.fetcher import BrowserSession, fetch_page_text
from pricewatch.scraper.llm_extractor import StructuredExtractor
from pricewatch.scraper.pattern_fallback import extract_via_patterns
from pricewatch.scraper.recorder import OutcomeRecorder

logger = structlog.get_logger(__name__)

NO_PATTERNS_MATCHED = "no patterns matched"


class ScrapeState(str, Enum):
    """States of one vendor's scrape."""
    FETCH = "fetch"
    PRIMARY_EXTRACT = "primary_extract"
    FALLBACK_EXTRACT = "fallback_extract"
    DONE_SUCCESS = "done_success"
    DONE_FAILURE = "done_failure"

    @property
    def is_terminal(self) -> bool:
        return self in (ScrapeState.DONE_SUCCESS, ScrapeState.DONE_FAILURE)


_TRANSITIONS: dict[tuple[ScrapeState, bool], ScrapeState] = {
    (ScrapeState.FETCH, True): ScrapeState.PRIMARY_EXTRACT,
    (ScrapeState.FETCH, False): ScrapeState.DONE_FAILURE,
    (ScrapeState.PRIMARY_EXTRACT, True): ScrapeState.DONE_SUCCESS,
    (ScrapeState.PRIMARY_EXTRACT, False): ScrapeState.FALLBACK_EXTRACT,
    (ScrapeState.FALLBACK_EXTRACT, True): ScrapeState.DONE_SUCCESS,
    (ScrapeState.FALLBACK_EXTRACT, False): ScrapeState.DONE_FAILURE,
}


def next_state(state: ScrapeState, ok: bool) -> ScrapeState:
    """
    Transition function for the per-vendor state machine.

    Raises:
        ValueError: state is terminal.
    """
    try:
        return _TRANSITIONS[(state, ok)]
    except KeyError:
        raise ValueError(f"no transition out of terminal state {state.value}") from None


def _is_set(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


_FETCH_FAILURE_KINDS = {
    "timeout": FailureKind.TIMEOUT,
    "network": FailureKind.NETWORK,
    "empty_content": FailureKind.EMPTY_CONTENT,
}


class ScrapeOrchestrator:
    """
    Drives fetch -> LLM extract -> pattern fallback for vendor targets.

    Usage:
        orchestrator = ScrapeOrchestrator(recorder=OutcomeRecorder(session_factory))
        report = await orchestrator.run_batch(targets)
    """

    def __init__(
        self,
        extractor_factory: Callable[[], StructuredExtractor] | None = None,
        browser_factory: Callable[[], Any] | None = None,
        recorder: OutcomeRecorder | None = None,
        delay_seconds: float | None = None,
        anti_detect: AntiDetect | None = None,
    ) -> None:
        self.anti_detect = anti_detect or AntiDetect(delay_seconds=delay_seconds)
        self.recorder = recorder
        # Each scrape_single / run_batch call opens its own extractor and browser
        self._extractor_factory = extractor_factory or StructuredExtractor
        self._browser_factory = browser_factory or (lambda: BrowserSession(anti_detect=self.anti_detect))

    # -----------------------------------------------------------------------
    # Single vendor
    # -----------------------------------------------------------------------

    async def scrape_vendor(
        self,
        target: ScrapeTarget,
        browser: Any,
        extractor: StructuredExtractor | None = None,
    ) -> ScrapeOutcome:
        """
        Run the state machine for one target. Always returns exactly one outcome.

        Args:
            target: Vendor target snapshot.
            browser: Open BrowserSession owned by the caller.
            extractor: Open extractor owned by the caller. Without one, a
                fresh extractor is opened for this call only.
        """
        if extractor is None:
            extractor = self._extractor_factory()
            async with extractor:
                return await self.scrape_vendor(target, browser, extractor)

        log = logger.bind(vendor_target_id=str(target.id), vendor_name=target.vendor_name, source="runner")
        state = ScrapeState.FETCH
        page_text = ""
        chosen: ExtractionResult | None = None
        primary_error: str | None = None

        try:
            # FETCH
            log.info("scrape_fetch_start", url=target.url)
            try:
                page_text = await fetch_page_text(browser, target.url, target.extraction_hint)
                state = next_state(state, True)
            except FetchError as e:
                log.warning("scrape_fetch_failed", kind=e.kind.value, error=str(e))
                state = next_state(state, False)
                return self._failure(target, state, _FETCH_FAILURE_KINDS[e.kind.value], str(e))

            # PRIMARY_EXTRACT
            try:
                primary = await extractor.extract(page_text, target.product_name, target.vendor_name)
                if primary.is_valid:
                    chosen = primary
                else:
                    primary_error = "LLM returned no usable pricing (zero or invalid fields)"
                    log.info("scrape_primary_invalid", price=str(primary.price), unit=primary.unit,
                             confidence=primary.confidence)
            except ExtractionError as e:
                primary_error = str(e)
                log.info("scrape_primary_failed", kind=e.kind.value, error=primary_error)
            state = next_state(state, chosen is not None)

            # FALLBACK_EXTRACT
            if state is ScrapeState.FALLBACK_EXTRACT:
                fallback = extract_via_patterns(page_text, target.url)
                if fallback is not None and fallback.is_valid:
                    chosen = fallback
                state = next_state(state, chosen is not None)

            if state is ScrapeState.DONE_FAILURE or chosen is None:
                reason = NO_PATTERNS_MATCHED if primary_error is None else f"{NO_PATTERNS_MATCHED} ({primary_error})"
                log.warning("scrape_all_methods_failed", url=target.url, reason=reason)
                return self._failure(target, state, FailureKind.NO_PATTERNS_MATCHED, reason, primary_error)

            # DONE_SUCCESS
            try:
                unit_price = compute_unit_price(chosen.price, chosen.quantity)
            except InvalidObservationError as e:
                return self._failure(target, ScrapeState.DONE_FAILURE, FailureKind.VALIDATION, str(e), primary_error)

            log.info(
                "scrape_success",
                method=chosen.method.value,
                price=str(chosen.price),
                quantity=str(chosen.quantity),
                unit=chosen.unit,
                unit_price=str(unit_price),
                confidence=chosen.confidence,
            )
            return ScrapeOutcome(
                vendor_target_id=target.id,
                vendor_name=target.vendor_name,
                source_url=target.url,
                success=True,
                extraction=chosen,
                unit_price=unit_price,
                primary_error=primary_error,
                final_state=state.value,
                scraped_at=datetime.now(timezone.utc),
            )

        except Exception as e:
            log.error("scrape_unexpected_error", state=state.value, error=str(e), error_type=type(e).__name__)
            return self._failure(
                target,
                ScrapeState.DONE_FAILURE,
                FailureKind.UNEXPECTED,
                str(e) or type(e).__name__,
                primary_error,
            )

    async def scrape_single(self, target: ScrapeTarget) -> ScrapeOutcome:
        """
        Scrape one vendor now with its own browser session and record it.

        Used by the admin "test this vendor" action; never shares a session
        with a running batch.
        """
        extractor = self._extractor_factory()
        try:
            async with self._browser_factory() as browser, extractor:
                outcome = await self.scrape_vendor(target, browser, extractor)
        except Exception as e:
            logger.error(
                "scrape_single_session_failed",
                vendor_target_id=str(target.id),
                error=str(e),
                error_type=type(e).__name__,
                source="runner",
            )
            outcome = self._failure(
                target, ScrapeState.DONE_FAILURE, FailureKind.UNEXPECTED, f"Browser session failed: {e}"
            )
        return await self._record(outcome)

    # -----------------------------------------------------------------------
    # Batch
    # -----------------------------------------------------------------------

    async def run_batch(
        self,
        targets: Sequence[ScrapeTarget],
        cancel_event: asyncio.Event | None = None,
    ) -> ScrapeReport:
        """
        Scrape targets sequentially inside one browser session.

        Outcomes are recorded and reported in submission order. Setting
        cancel_event stops the batch before the next vendor starts; the
        in-flight vendor finishes first and nothing is recorded for the
        vendors that never started.

        Returns:
            ScrapeReport, always, including partial results when the
            browser session itself fails.
        """
        report = ScrapeReport(total_vendors=len(targets), started_at=datetime.now(timezone.utc))
        logger.info("scrape_batch_start", total_vendors=len(targets), source="runner")

        extractor = self._extractor_factory()
        try:
            async with self._browser_factory() as browser, extractor:
                for index, target in enumerate(targets):
                    if index > 0 and not _is_set(cancel_event):
                        await self.anti_detect.inter_request_delay()
                    if _is_set(cancel_event):
                        report.cancelled = True
                        report.skipped_vendors = len(targets) - index
                        logger.info("scrape_batch_cancelled", completed=index,
                                    skipped=report.skipped_vendors, source="runner")
                        break

                    outcome = await self.scrape_vendor(target, browser, extractor)
                    report.add(await self._record(outcome))
        except Exception as e:
            report.aborted_error = str(e) or type(e).__name__
            report.skipped_vendors = len(targets) - len(report.results)
            logger.error(
                "scrape_batch_aborted",
                error=report.aborted_error,
                error_type=type(e).__name__,
                completed=len(report.results),
                source="runner",
            )
        finally:
            report.finished_at = datetime.now(timezone.utc)

        logger.info(
            "scrape_batch_complete",
            total_vendors=report.total_vendors,
            successful=report.successful_scrapes,
            failed=report.failed_scrapes,
            skipped=report.skipped_vendors,
            duration_seconds=report.duration_seconds,
            source="runner",
        )
        return report

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    async def _record(self, outcome: ScrapeOutcome) -> ScrapeOutcome:
        """Persist through the recorder; a database error fails the outcome instead of the batch."""
        if self.recorder is None:
            return outcome
        try:
            return await self.recorder.record(outcome)
        except SQLAlchemyError as e:
            logger.error(
                "scrape_record_failed",
                vendor_target_id=str(outcome.vendor_target_id),
                error=str(e),
                source="runner",
            )
            return outcome.as_failure(FailureKind.PERSISTENCE, f"Failed to record outcome: {e}")

    @staticmethod
    def _failure(
        target: ScrapeTarget,
        state: ScrapeState,
        kind: FailureKind,
        error: str,
        primary_error: str | None = None,
    ) -> ScrapeOutcome:
        return ScrapeOutcome(
            vendor_target_id=target.id,
            vendor_name=target.vendor_name,
            source_url=target.url,
            success=False,
            error=error,
            failure_kind=kind,
            primary_error=primary_error,
            final_state=state.value,
            scraped_at=datetime.now(timezone.utc),
        )
