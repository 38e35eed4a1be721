"""
Pricewatch — Page Fetcher

Loads a vendor page in headless Chromium and returns its rendered text.

BrowserSession owns the Playwright driver, browser and context for the
lifetime of one batch; every fetch opens its own tab and closes it on every
exit path. There is no process-wide browser; concurrent batches each hold
their own session.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from pricewatch.config import FetchFailureKind, settings
from pricewatch.errors import FetchError
from pricewatch.scraper.anti_detect import AntiDetect

logger = structlog.get_logger(__name__)

_BODY_TEXT_JS = "() => document.body ? document.body.innerText : ''"


class BrowserSession:
    """
    One headless browser for one batch.

    Usage:
        async with BrowserSession() as browser:
            text = await fetch_page_text(browser, url, extraction_hint)
    """

    def __init__(
        self,
        anti_detect: AntiDetect | None = None,
        headless: bool | None = None,
    ) -> None:
        self.anti_detect = anti_detect or AntiDetect()
        self._headless = headless
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None

    async def __aenter__(self) -> BrowserSession:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                **self.anti_detect.launch_options(self._headless)
            )
            self._context = await self._browser.new_context(**self.anti_detect.context_options())
        except Exception:
            await self.close()
            raise
        logger.info("browser_session_started", source="fetcher")
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release context, browser and driver. Safe to call twice."""
        for name in ("_context", "_browser"):
            resource = getattr(self, name)
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError as e:
                logger.warning("browser_session_close_failed", resource=name, error=str(e), source="fetcher")
            setattr(self, name, None)

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("browser_session_closed", source="fetcher")

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Any]:
        """Open a tab; it is closed when the block exits, however it exits."""
        if self._context is None:
            raise RuntimeError("Browser session not started. Use 'async with'.")

        page = await self._context.new_page()
        try:
            yield page
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.warning("browser_page_close_failed", error=str(e), source="fetcher")


async def fetch_page_text(
    browser: BrowserSession,
    url: str,
    extraction_hint: str | None = None,
) -> str:
    """
    Navigate to url and return text suitable for price extraction.

    Waits for network idle plus FETCH_SETTLE_SECONDS so client-rendered
    prices have painted. With an extraction_hint, text is read from the first
    matching element; no match or blank text falls back to the whole page,
    capped at FETCH_MAX_TEXT_CHARS.

    Args:
        browser: Open BrowserSession for the current batch.
        url: Vendor page URL.
        extraction_hint: Optional CSS selector for the price block.

    Returns:
        Stripped page text (never empty).

    Raises:
        FetchError: TIMEOUT, NETWORK or EMPTY_CONTENT.
    """
    timeout_seconds = settings.FETCH_TIMEOUT_MS / 1000

    async with browser.page() as page:
        try:
            await page.goto(url, wait_until="networkidle", timeout=settings.FETCH_TIMEOUT_MS)
        except PlaywrightTimeoutError as e:
            raise FetchError(
                FetchFailureKind.TIMEOUT,
                f"Timeout error: page took longer than {timeout_seconds:g}s to load ({url})",
            ) from e
        except PlaywrightError as e:
            raise FetchError(
                FetchFailureKind.NETWORK,
                f"Network error: could not reach {url} ({_first_line(e)})",
            ) from e

        await asyncio.sleep(settings.FETCH_SETTLE_SECONDS)

        text = ""
        if extraction_hint:
            text = await _read_hint_text(page, extraction_hint)
        if not text:
            try:
                text = await _read_body_text(page)
            except PlaywrightError as e:
                raise FetchError(
                    FetchFailureKind.NETWORK,
                    f"Network error: page content unavailable for {url} ({_first_line(e)})",
                ) from e

    if not text:
        raise FetchError(FetchFailureKind.EMPTY_CONTENT, "No content could be extracted from the page")

    logger.info(
        "fetch_page_text_complete",
        url=url,
        used_hint=bool(extraction_hint),
        text_length=len(text),
        source="fetcher",
    )
    return text


async def _read_hint_text(page: Any, selector: str) -> str:
    """Text of the first element matching selector, or "" on no match / bad selector."""
    try:
        element = await page.query_selector(selector)
        if element is None:
            logger.info("fetch_hint_no_match", selector=selector, source="fetcher")
            return ""
        return (await element.text_content() or "").strip()[: settings.FETCH_MAX_TEXT_CHARS]
    except PlaywrightError as e:
        logger.warning("fetch_hint_failed", selector=selector, error=_first_line(e), source="fetcher")
        return ""


async def _read_body_text(page: Any) -> str:
    """Rendered body text, truncated."""
    text = await page.evaluate(_BODY_TEXT_JS)
    return (text or "").strip()[: settings.FETCH_MAX_TEXT_CHARS]


def _first_line(error: Exception) -> str:
    message = str(error).strip()
    return message.splitlines()[0] if message else type(error).__name__
