"""
Pricewatch — LLM Structured Extractor (PRIMARY)

Sends page text to an OpenAI-compatible chat-completions endpoint and parses a
strict four-field JSON object back: price, quantity, unit, confidence.

Every failure is raised as ExtractionError with a kind the orchestrator can
tell apart (authentication, quota, rate limit, transport, empty response,
unparsable response). None of them abort a scrape; they trigger the pattern
fallback. No retries happen here.
"""

from __future__ import annotations

import json
import math
import re
from decimal import Decimal
from typing import Any

import httpx
import structlog
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from pricewatch.config import ExtractionFailureKind, ExtractionMethod, Unit, settings
from pricewatch.errors import ExtractionError
from pricewatch.scraper import ExtractionResult

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a precise data extraction assistant. Extract pricing information "
    "from webpage content and return only valid JSON."
)

_QUOTA_MARKERS = ("insufficient", "credits", "quota", "billing")
_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def build_extraction_prompt(
    page_text: str,
    product_name: str,
    vendor_name: str | None = None,
    max_chars: int | None = None,
) -> str:
    """Build the user instruction; page_text is truncated to max_chars first."""
    limit = max_chars if max_chars is not None else settings.LLM_MAX_INPUT_CHARS
    content = page_text if len(page_text) <= limit else page_text[:limit] + "..."
    vendor_clause = f" from {vendor_name}" if vendor_name else ""
    units = ", ".join(u.value for u in Unit)

    return f"""
Extract pricing information for "{product_name}"{vendor_clause} from this webpage content.

Find:
1. Price (numeric value in USD, remove $ symbols)
2. Quantity (numeric amount of product sold at that price)
3. Unit ({units})

Content:
{content}

Return ONLY a JSON object in this exact format:
{{
  "price": number,
  "quantity": number,
  "unit": "string",
  "confidence": number_between_0_and_1
}}

Rules:
- If multiple prices exist, choose the main/current price
- Confidence should be 0.9+ for clear data, 0.7+ for probable data, 0.5+ for uncertain data
- If no clear pricing found, return: {{"price": 0, "quantity": 0, "unit": "", "confidence": 0}}
- Units must be one of: {units}
- Do not include any text outside the JSON object
"""


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


class LLMExtractionPayload(BaseModel):
    """Schema the model's JSON must satisfy before anything downstream sees it."""

    price: float
    quantity: float = Field(validation_alias=AliasChoices("quantity", "amount"))
    unit: str
    confidence: float

    @field_validator("price", "quantity", "confidence", mode="before")
    @classmethod
    def require_number(cls, v: Any) -> float:
        """Only real JSON numbers; "12.50" strings and booleans are rejected."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError(f"expected a number, got {type(v).__name__}")
        if not math.isfinite(v):
            raise ValueError("number must be finite")
        return float(v)

    @field_validator("unit", mode="before")
    @classmethod
    def require_string(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError(f"expected a string, got {type(v).__name__}")
        return v.strip().lower()


def _first_json_object(text: str) -> str | None:
    """Return the first balanced {...} span, ignoring braces inside JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def parse_extraction_response(content: str, raw_text: str = "") -> ExtractionResult:
    """
    Turn the model's message content into a validated ExtractionResult.

    Confidence is clamped into [0, 1], then halved when the unit is outside
    the unit set. A {"price": 0, ...} "nothing found" answer parses fine; it
    is the caller's is_valid check that rejects it.

    Raises:
        ExtractionError: UNPARSABLE when no JSON object or a schema violation.
    """
    cleaned = _CODE_FENCE.sub("", content).strip()
    candidate = _first_json_object(cleaned)
    if candidate is None:
        raise ExtractionError(ExtractionFailureKind.UNPARSABLE, "No JSON object found in LLM response")

    try:
        data = json.loads(candidate)
        payload = LLMExtractionPayload.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ExtractionError(
            ExtractionFailureKind.UNPARSABLE,
            f"Failed to parse LLM response: {str(e).splitlines()[0]}",
        ) from e

    confidence = min(1.0, max(0.0, payload.confidence))
    if Unit.normalize(payload.unit) is None:
        logger.warning("llm_extract_unknown_unit", unit=payload.unit, source="llm_extractor")
        confidence *= 0.5

    return ExtractionResult(
        price=Decimal(str(payload.price)),
        quantity=Decimal(str(payload.quantity)),
        unit=payload.unit,
        confidence=confidence,
        raw_text=raw_text,
        method=ExtractionMethod.LLM,
    )


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class StructuredExtractor:
    """
    Async client for the LLM extraction endpoint.

    Usage:
        async with StructuredExtractor() as extractor:
            result = await extractor.extract(page_text, "BPC-157", "Acme Labs")
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self._base_url = base_url or settings.LLM_BASE_URL
        self._model = model or settings.LLM_MODEL_ID
        self._timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
        self._client: httpx.AsyncClient | None = None

        if not self._api_key:
            logger.warning("llm_api_key_missing", note="pattern fallback only", source="llm_extractor")

    async def __aenter__(self) -> StructuredExtractor:
        if self._client is not None:
            raise RuntimeError("Extractor already open. Create one StructuredExtractor per scrape.")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def model(self) -> str:
        return self._model

    async def extract(
        self,
        page_text: str,
        product_name: str,
        vendor_name: str | None = None,
    ) -> ExtractionResult:
        """
        Ask the model for price/quantity/unit/confidence.

        Args:
            page_text: Text from the page fetcher.
            product_name: Product the page is expected to sell.
            vendor_name: Optional vendor name for prompt context.

        Returns:
            ExtractionResult with method=llm. May still be invalid (e.g. the
            explicit all-zero answer); validity is the caller's decision.

        Raises:
            ExtractionError: see module docstring for the failure kinds.
        """
        if not self._api_key:
            raise ExtractionError(ExtractionFailureKind.AUTHENTICATION, "LLM API key not configured")
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with'.")

        body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_extraction_prompt(page_text, product_name, vendor_name)},
            ],
            "temperature": settings.LLM_TEMPERATURE,
            "max_tokens": settings.LLM_MAX_TOKENS,
        }

        logger.info(
            "llm_extract_request",
            product_name=product_name,
            vendor_name=vendor_name,
            content_length=len(page_text),
            model=self._model,
            source="llm_extractor",
        )

        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as e:
            raise ExtractionError(
                ExtractionFailureKind.TRANSPORT, f"LLM API request timed out after {self._timeout:g}s"
            ) from e
        except httpx.RequestError as e:
            raise ExtractionError(ExtractionFailureKind.TRANSPORT, f"LLM API request failed: {e}") from e

        if response.status_code >= 400:
            raise _classify_http_error(response)

        try:
            payload = response.json()
        except ValueError as e:
            raise ExtractionError(ExtractionFailureKind.UNPARSABLE, "LLM API returned a non-JSON body") from e

        content = _first_message_content(payload)
        if not content:
            raise ExtractionError(ExtractionFailureKind.EMPTY_RESPONSE, "No response from LLM API")

        result = parse_extraction_response(
            content, raw_text=page_text[: settings.EXTRACTION_RAW_TEXT_CHARS]
        )

        usage = payload.get("usage") or {}
        logger.info(
            "llm_extract_complete",
            product_name=product_name,
            price=str(result.price),
            quantity=str(result.quantity),
            unit=result.unit,
            confidence=result.confidence,
            total_tokens=usage.get("total_tokens"),
            source="llm_extractor",
        )
        return result

    async def test_connection(self) -> tuple[bool, str | None]:
        """Call GET /models. Returns (ok, error message)."""
        if not self._api_key:
            return False, "API key not configured"
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with'.")

        try:
            response = await self._client.get("/models")
        except httpx.RequestError as e:
            return False, str(e)

        if response.is_success:
            return True, None
        return False, f"API test failed: {response.status_code} - {response.text[:200]}"


def _classify_http_error(response: httpx.Response) -> ExtractionError:
    """Map a non-2xx response onto an ExtractionError kind."""
    status = response.status_code
    body = response.text
    lowered = body.lower()

    if status == 402 or any(marker in lowered for marker in _QUOTA_MARKERS):
        kind = ExtractionFailureKind.QUOTA
        message = "LLM API: insufficient credits or quota. Add funding to the LLM API account."
    elif status in (401, 403):
        kind = ExtractionFailureKind.AUTHENTICATION
        message = "LLM API: invalid API key. Check the LLM_API_KEY configuration."
    elif status == 429:
        kind = ExtractionFailureKind.RATE_LIMIT
        message = "LLM API: rate limit exceeded. Try again later."
    else:
        kind = ExtractionFailureKind.TRANSPORT
        message = f"LLM API error: {status} - {body[:200]}"

    logger.warning("llm_extract_http_error", status_code=status, kind=kind.value, source="llm_extractor")
    return ExtractionError(kind, message)


def _first_message_content(payload: Any) -> str | None:
    """choices[0].message.content, or None when any level is missing or blank."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        return None
    return content
