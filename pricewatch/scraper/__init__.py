"""Pricewatch — Scraper Layer data contracts"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from pricewatch.config import ExtractionMethod, FailureKind, Unit


class ExtractionResult(BaseModel):
    """Price/quantity/unit reading produced by either extractor."""

    price: Decimal
    quantity: Decimal
    unit: str
    confidence: float = Field(ge=0.0, le=1.0)
    raw_text: str = ""
    method: ExtractionMethod

    @property
    def canonical_unit(self) -> Unit | None:
        return Unit.normalize(self.unit)

    @property
    def is_valid(self) -> bool:
        """price > 0, quantity > 0, unit in the unit set, confidence > 0."""
        return (
            self.price > 0
            and self.quantity > 0
            and self.canonical_unit is not None
            and self.confidence > 0
        )


class ScrapeTarget(BaseModel):
    """Snapshot of a VendorTarget row plus its product name, as fed to the orchestrator."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_name: str = "unknown product"
    vendor_name: str
    url: str
    extraction_hint: str | None = None
    is_active: bool = True


class ScrapeOutcome(BaseModel):
    """Result of one orchestrator run for one vendor target."""

    vendor_target_id: uuid.UUID
    vendor_name: str
    source_url: str
    success: bool
    extraction: ExtractionResult | None = None
    unit_price: Decimal | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None
    primary_error: str | None = None  # LLM extractor reason when the fallback ran
    final_state: str
    scraped_at: datetime

    def as_failure(self, kind: FailureKind, error: str) -> ScrapeOutcome:
        """Copy of this outcome downgraded to a failure, extracted data dropped."""
        return self.model_copy(
            update={
                "success": False,
                "extraction": None,
                "unit_price": None,
                "failure_kind": kind,
                "error": error,
            }
        )


class ScrapeReport(BaseModel):
    """Batch summary returned to the scheduling collaborator."""

    total_vendors: int = 0
    successful_scrapes: int = 0
    failed_scrapes: int = 0
    skipped_vendors: int = 0
    results: list[ScrapeOutcome] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime | None = None
    cancelled: bool = False
    aborted_error: str | None = None

    def add(self, outcome: ScrapeOutcome) -> None:
        self.results.append(outcome)
        if outcome.success:
            self.successful_scrapes += 1
        else:
            self.failed_scrapes += 1

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
