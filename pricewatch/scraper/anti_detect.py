"""
Pricewatch — Anti-Detection Layer

Browser-context fingerprint (user agent, viewport), proxy configuration, and
the fixed pause between vendors in a batch.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any

import structlog

from pricewatch.config import settings

logger = structlog.get_logger(__name__)


class AntiDetect:
    """
    Anti-detection settings for one Playwright browser session.

    Manages:
    - User-agent rotation (one agent per session)
    - Proxy configuration
    - Fixed delay between vendors (SCRAPE_DELAY_SECONDS)
    """

    # Realistic user agents for rotation
    USER_AGENTS = [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Safari/605.1.15",
    ]

    VIEWPORT = {"width": 1920, "height": 1080}

    LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-accelerated-2d-canvas",
        "--no-first-run",
        "--disable-gpu",
    ]

    def __init__(self, delay_seconds: float | None = None) -> None:
        self._delay_seconds: float = (
            delay_seconds if delay_seconds is not None else settings.SCRAPE_DELAY_SECONDS
        )

    @property
    def delay_seconds(self) -> float:
        return self._delay_seconds

    async def inter_request_delay(self) -> None:
        """Sleep for the fixed pause between two vendors."""
        if self._delay_seconds <= 0:
            return
        logger.debug("anti_detect_delay", delay_seconds=self._delay_seconds, source="anti_detect")
        await asyncio.sleep(self._delay_seconds)

    def get_random_user_agent(self) -> str:
        """Return a random user agent string."""
        return random.choice(self.USER_AGENTS)

    def get_proxy_config(self) -> dict[str, str] | None:
        """Return proxy configuration if PROXY_URL is set."""
        if settings.PROXY_URL:
            return {"server": settings.PROXY_URL}
        return None

    def launch_options(self, headless: bool | None = None) -> dict[str, Any]:
        """Keyword arguments for Playwright's chromium.launch()."""
        options: dict[str, Any] = {
            "headless": settings.BROWSER_HEADLESS if headless is None else headless,
            "args": list(self.LAUNCH_ARGS),
        }
        proxy = self.get_proxy_config()
        if proxy is not None:
            options["proxy"] = proxy
        return options

    def context_options(self) -> dict[str, Any]:
        """Keyword arguments for Playwright's browser.new_context()."""
        return {
            "user_agent": self.get_random_user_agent(),
            "viewport": dict(self.VIEWPORT),
        }
