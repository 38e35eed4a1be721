"""
Pricewatch — Price Observation Model

Append-only log of extracted prices per vendor target.
Never updated: each successful scrape inserts a new row.
Read by engine/ranking.py, engine/price_trend.py, engine/alerts.py and
engine/history.py.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import (
    BOOLEAN,
    DECIMAL,
    FLOAT,
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from pricewatch.config import Unit, settings
from pricewatch.errors import InvalidObservationError
from pricewatch.models.base import Base

# (precision, scale) of the stored DECIMAL columns
PRICE_DIGITS = (12, 2)
QUANTITY_DIGITS = (12, 3)
UNIT_PRICE_DIGITS = (18, 6)


def round_to_column(value: Decimal, digits: tuple[int, int], name: str) -> Decimal:
    """
    Round value half-up to the scale of a DECIMAL(precision, scale) column.

    Raises:
        InvalidObservationError: value is not positive, rounds to 0, or does
            not fit the column.
    """
    precision, scale = digits
    if not value.is_finite() or value <= 0:
        raise InvalidObservationError(f"{name} must be greater than 0 (got {value})")
    try:
        rounded = value.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise InvalidObservationError(f"{name} {value} cannot be stored: {e}") from e
    if rounded <= 0:
        raise InvalidObservationError(f"{name} {value} rounds to 0 at {scale} decimal places")
    if rounded >= Decimal(10) ** (precision - scale):
        raise InvalidObservationError(f"{name} {value} exceeds DECIMAL({precision},{scale})")
    return rounded


def compute_unit_price(price: Decimal, quantity: Decimal) -> Decimal:
    """
    price / quantity, rejecting anything that is not a finite positive number.

    Raises:
        InvalidObservationError: non-positive price or quantity, or a
            non-finite quotient.
    """
    if not price.is_finite() or price <= 0:
        raise InvalidObservationError(f"price must be greater than 0 (got {price})")
    if not quantity.is_finite() or quantity <= 0:
        raise InvalidObservationError(f"quantity must be greater than 0 (got {quantity})")
    try:
        unit_price = price / quantity
    except (InvalidOperation, ZeroDivisionError) as e:
        raise InvalidObservationError(f"unit price calculation failed: {e}") from e
    if not unit_price.is_finite() or unit_price <= 0:
        raise InvalidObservationError(f"unit price must be finite and positive (got {unit_price})")
    return unit_price


class PriceObservation(Base):
    """
    One point-in-time price reading for a vendor target.

    unit_price is always derived from price and quantity at creation time via
    PriceObservation.create(); rows are immutable after insert.

    Index: (vendor_target_id, observed_at) supports latest-price and window scans.
    """

    __tablename__ = "price_observations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    vendor_target_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vendor_targets.id", ondelete="CASCADE"),
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(DECIMAL(*PRICE_DIGITS), nullable=False, comment="Listed price")
    quantity: Mapped[Decimal] = mapped_column(
        DECIMAL(*QUANTITY_DIGITS), nullable=False, comment="Amount sold at that price, in unit"
    )
    unit: Mapped[str] = mapped_column(String(16), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(
        DECIMAL(*UNIT_PRICE_DIGITS), nullable=False, comment="price / quantity"
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_available: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=True)
    confidence: Mapped[float] = mapped_column(FLOAT, nullable=False, comment="Extraction confidence 0-1")
    extraction_method: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="llm | pattern | pattern_url_size"
    )
    raw_snippet: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Bounded page text kept for audit"
    )
    source_url: Mapped[str] = mapped_column(String, nullable=False)
    observed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_price_observations_price_positive"),
        CheckConstraint("quantity > 0", name="ck_price_observations_quantity_positive"),
        CheckConstraint("unit_price > 0", name="ck_price_observations_unit_price_positive"),
        Index("ix_price_observations_target_observed", "vendor_target_id", "observed_at"),
        Index("ix_price_observations_unit_price", "unit_price"),
    )

    @classmethod
    def create(
        cls,
        *,
        vendor_target_id: uuid.UUID,
        price: Decimal,
        quantity: Decimal,
        unit: str,
        confidence: float,
        extraction_method: str,
        source_url: str,
        observed_at: datetime,
        raw_snippet: str | None = None,
        currency: str | None = None,
        is_available: bool = True,
    ) -> PriceObservation:
        """
        Build a validated observation with its unit price computed.

        Raises:
            InvalidObservationError: the reading must not be persisted.
        """
        canonical_unit = Unit.normalize(unit)
        if canonical_unit is None:
            raise InvalidObservationError(f"unit {unit!r} is not a supported unit")
        if not 0.0 <= confidence <= 1.0:
            raise InvalidObservationError(f"confidence must be within [0, 1] (got {confidence})")

        # Derived from the values as stored: stored price / stored quantity
        # equals unit_price to six decimal places.
        price = round_to_column(price, PRICE_DIGITS, "price")
        quantity = round_to_column(quantity, QUANTITY_DIGITS, "quantity")
        unit_price = round_to_column(compute_unit_price(price, quantity), UNIT_PRICE_DIGITS, "unit price")
        snippet = raw_snippet[: settings.RAW_SNIPPET_MAX_CHARS] if raw_snippet else None

        return cls(
            id=uuid.uuid4(),
            vendor_target_id=vendor_target_id,
            price=price,
            quantity=quantity,
            unit=canonical_unit.value,
            unit_price=unit_price,
            currency=currency or settings.DEFAULT_CURRENCY,
            is_available=is_available,
            confidence=confidence,
            extraction_method=extraction_method,
            raw_snippet=snippet,
            source_url=source_url,
            observed_at=observed_at,
        )

    def __repr__(self) -> str:
        return (
            f"<PriceObservation target={self.vendor_target_id} price={self.price} "
            f"qty={self.quantity}{self.unit} unit_price={self.unit_price} at={self.observed_at}>"
        )
