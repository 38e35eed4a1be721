"""
Pricewatch — Exception Types

Raised at component seams and converted into ScrapeOutcome data by the
orchestrator. Messages are human-readable; admin tooling shows them verbatim.
"""

from __future__ import annotations

from pricewatch.config import ExtractionFailureKind, FetchFailureKind


class PricewatchError(Exception):
    """Base class for all Pricewatch errors."""


class FetchError(PricewatchError):
    """The page fetcher could not produce text for a URL."""

    def __init__(self, kind: FetchFailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class ExtractionError(PricewatchError):
    """The LLM extractor failed; callers fall back to pattern extraction."""

    def __init__(self, kind: ExtractionFailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class InvalidObservationError(PricewatchError, ValueError):
    """A would-be PriceObservation breaks the price/quantity/unit-price rules."""


class VendorTargetUnavailable(PricewatchError, LookupError):
    """A vendor target id is unknown or the target is inactive."""
