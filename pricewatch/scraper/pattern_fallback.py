"""
Pricewatch — Pattern Fallback Extractor (BACKUP)

Deterministic regex extraction of price, quantity and unit from page text,
used when the LLM extractor fails or returns nothing usable. No network, no
state: the same text and URL always give the same result.

Confidence is a fixed constant, not a match-quality score:
    price + quantity from text            -> FALLBACK_CONFIDENCE (0.6)
    price from text + size from the URL   -> FALLBACK_URL_SIZE_CONFIDENCE (0.7)
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

import structlog

from pricewatch.config import ExtractionMethod, Unit, settings
from pricewatch.scraper import ExtractionResult

logger = structlog.get_logger(__name__)

_NUMBER = r"(\d+(?:\.\d+)?)"
_UNIT = r"(mcg|mg|ml|g|capsules?|tablets?|iu)\b"

# Highest priority first; within a pattern, document order.
_PRICE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"[$€£]\s?(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)"),
    re.compile(r"(\d+(?:\.\d{1,2})?)\s*USD\b", re.IGNORECASE),
    re.compile(r"Price[:\s]*[$€£]?\s*(\d+(?:\.\d{1,2})?)", re.IGNORECASE),
    re.compile(r"(\d+(?:\.\d{1,2})?)\s*dollars?\b", re.IGNORECASE),
)

# "2 x 5mg" is a multipack: quantity = count * size.
_MULTIPACK_PATTERN = re.compile(r"(?<![\w.])(\d+)\s*[x×]\s*" + _NUMBER + r"\s*" + _UNIT, re.IGNORECASE)

_QUANTITY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Quantity[:\s]*" + _NUMBER + r"\s*" + _UNIT, re.IGNORECASE),
    re.compile(r"size[=:]\s*" + _NUMBER + r"\s*" + _UNIT, re.IGNORECASE),
    re.compile(r"(?<![\w.])" + _NUMBER + r"\s*-?\s*" + _UNIT, re.IGNORECASE),
)

# Vendor-declared size in the URL, e.g. ?size=10mg
_URL_SIZE_PATTERN = re.compile(r"size[=:]\s*" + _NUMBER + r"\s*(mcg|mg|ml|g|iu)\b", re.IGNORECASE)


def _to_decimal(raw: str) -> Decimal | None:
    try:
        value = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def find_price_candidates(text: str) -> list[Decimal]:
    """All plausible prices (0 < p < FALLBACK_MAX_PRICE), in priority order."""
    ceiling = Decimal(str(settings.FALLBACK_MAX_PRICE))
    prices: list[Decimal] = []
    for pattern in _PRICE_PATTERNS:
        for match in pattern.finditer(text):
            price = _to_decimal(match.group(1))
            if price is not None and Decimal("0") < price < ceiling:
                prices.append(price)
    return prices


def find_quantity_candidates(text: str) -> list[tuple[Decimal, Unit]]:
    """All (quantity, unit) readings in priority order, units normalized."""
    quantities: list[tuple[Decimal, Unit]] = []

    for match in _MULTIPACK_PATTERN.finditer(text):
        count = _to_decimal(match.group(1))
        size = _to_decimal(match.group(2))
        unit = Unit.normalize(match.group(3))
        if count and size and unit is not None and count > 0 and size > 0:
            quantities.append((count * size, unit))

    for pattern in _QUANTITY_PATTERNS:
        for match in pattern.finditer(text):
            amount = _to_decimal(match.group(1))
            unit = Unit.normalize(match.group(2))
            if amount is not None and amount > 0 and unit is not None:
                quantities.append((amount, unit))

    return quantities


def find_url_size(url: str | None) -> tuple[Decimal, Unit] | None:
    """Size encoded in the vendor URL (size=10mg / size:10mg), if any."""
    if not url:
        return None
    match = _URL_SIZE_PATTERN.search(url)
    if match is None:
        return None
    amount = _to_decimal(match.group(1))
    unit = Unit.normalize(match.group(2))
    if amount is None or amount <= 0 or unit is None:
        return None
    return amount, unit


def extract_via_patterns(text: str, url: str | None = None) -> ExtractionResult | None:
    """
    Recover price, quantity and unit from page text (and the vendor URL).

    Args:
        text: Page text from the fetcher.
        url: Vendor URL; consulted for a size=<n><unit> parameter.

    Returns:
        ExtractionResult, or None when nothing usable matched. None is the
        normal "no signal" answer, not an error.
    """
    prices = find_price_candidates(text)
    quantities = find_quantity_candidates(text)
    url_size = find_url_size(url)
    raw_text = text[: settings.EXTRACTION_RAW_TEXT_CHARS]

    logger.debug(
        "pattern_fallback_candidates",
        prices=[str(p) for p in prices[:5]],
        quantities=[f"{q}{u.value}" for q, u in quantities[:5]],
        url_size=f"{url_size[0]}{url_size[1].value}" if url_size else None,
        source="pattern_fallback",
    )

    if not prices:
        logger.info("pattern_fallback_no_price", url=url, source="pattern_fallback")
        return None

    if quantities:
        quantity, unit = quantities[0]
        method = ExtractionMethod.PATTERN
        confidence = settings.FALLBACK_CONFIDENCE
    elif url_size is not None:
        quantity, unit = url_size
        method = ExtractionMethod.PATTERN_URL_SIZE
        confidence = settings.FALLBACK_URL_SIZE_CONFIDENCE
    else:
        logger.info("pattern_fallback_no_quantity", url=url, source="pattern_fallback")
        return None

    result = ExtractionResult(
        price=prices[0],
        quantity=quantity,
        unit=unit.value,
        confidence=confidence,
        raw_text=raw_text,
        method=method,
    )
    logger.info(
        "pattern_fallback_success",
        price=str(result.price),
        quantity=str(result.quantity),
        unit=result.unit,
        method=method.value,
        source="pattern_fallback",
    )
    return result
