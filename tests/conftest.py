"""
Pricewatch — Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- aiosqlite in-memory database with every table created
- Product / vendor-target row factories
- Fake Playwright page and browser session
- ScrapeTarget snapshots
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pricewatch.config import settings
from pricewatch.models import Base, PriceObservation, Product, VendorTarget
from pricewatch.scraper import ScrapeTarget


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def no_waits(monkeypatch: pytest.MonkeyPatch) -> None:
    """Zero the page-settle and inter-vendor pauses; tests assert on calls, not time."""
    monkeypatch.setattr(settings, "FETCH_SETTLE_SECONDS", 0.0)
    monkeypatch.setattr(settings, "SCRAPE_DELAY_SECONDS", 0.0)
    monkeypatch.setattr(settings, "LLM_API_KEY", "test-key")
    monkeypatch.setattr(settings, "PROXY_URL", "")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory over a fresh in-memory SQLite database.

    StaticPool keeps one connection so every session sees the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def create_product(session: AsyncSession, name: str = "BPC-157", slug: str | None = None) -> Product:
    product = Product(
        id=uuid.uuid4(),
        name=name,
        slug=slug or name.lower().replace(" ", "-"),
        category="peptides",
        unit="mg",
    )
    session.add(product)
    await session.commit()
    return product


async def create_vendor_target(
    session: AsyncSession,
    product: Product,
    vendor_name: str = "Acme Labs",
    url: str = "https://acme.example/bpc-157",
    is_active: bool = True,
    consecutive_failures: int = 0,
    created_offset_minutes: int = 0,
    extraction_hint: str | None = None,
) -> VendorTarget:
    target = VendorTarget(
        id=uuid.uuid4(),
        product_id=product.id,
        vendor_name=vendor_name,
        url=url,
        extraction_hint=extraction_hint,
        is_active=is_active,
        consecutive_failures=consecutive_failures,
        created_at=BASE_TIME + timedelta(minutes=created_offset_minutes),
    )
    session.add(target)
    await session.commit()
    return target


async def add_observation(
    session: AsyncSession,
    target: VendorTarget,
    unit_price: str,
    observed_at: datetime,
    quantity: str = "1",
    is_available: bool = True,
) -> PriceObservation:
    """Insert an observation whose unit price is exactly `unit_price` (price = unit_price * quantity)."""
    obs = PriceObservation.create(
        vendor_target_id=target.id,
        price=Decimal(unit_price) * Decimal(quantity),
        quantity=Decimal(quantity),
        unit="mg",
        confidence=0.9,
        extraction_method="llm",
        source_url=target.url,
        observed_at=observed_at,
        is_available=is_available,
    )
    session.add(obs)
    await session.commit()
    return obs


# ---------------------------------------------------------------------------
# Scraper fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_page() -> AsyncMock:
    """Playwright page that loads fine and renders a short price block."""
    page = AsyncMock()
    page.goto = AsyncMock(return_value=None)
    page.query_selector = AsyncMock(return_value=None)
    page.evaluate = AsyncMock(return_value="BPC-157 5mg  $45.99  In stock")
    page.close = AsyncMock()
    return page


class FakeBrowserSession:
    """Stand-in for BrowserSession: hands out one fake page per fetch."""

    def __init__(self, page: Any = None, fail_on_enter: Exception | None = None) -> None:
        self._page = page
        self._fail_on_enter = fail_on_enter
        self.entered = False
        self.closed = False
        self.pages_opened = 0

    async def __aenter__(self) -> FakeBrowserSession:
        if self._fail_on_enter is not None:
            raise self._fail_on_enter
        self.entered = True
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.closed = True

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Any]:
        self.pages_opened += 1
        try:
            yield self._page
        finally:
            await self._page.close()


@pytest.fixture
def fake_browser(mock_page: AsyncMock) -> FakeBrowserSession:
    return FakeBrowserSession(mock_page)


def make_target(
    vendor_name: str = "Acme Labs",
    url: str = "https://acme.example/bpc-157",
    product_name: str = "BPC-157",
    extraction_hint: str | None = None,
    target_id: uuid.UUID | None = None,
) -> ScrapeTarget:
    return ScrapeTarget(
        id=target_id or uuid.uuid4(),
        product_name=product_name,
        vendor_name=vendor_name,
        url=url,
        extraction_hint=extraction_hint,
    )


@pytest.fixture
def scrape_target() -> ScrapeTarget:
    return make_target()


def make_extractor(result: Any = None, error: Exception | None = None) -> MagicMock:
    """Async-context-manager extractor whose extract() returns result or raises error."""
    extractor = MagicMock()
    extractor.__aenter__ = AsyncMock(return_value=extractor)
    extractor.__aexit__ = AsyncMock(return_value=None)
    if error is not None:
        extractor.extract = AsyncMock(side_effect=error)
    else:
        extractor.extract = AsyncMock(return_value=result)
    return extractor
