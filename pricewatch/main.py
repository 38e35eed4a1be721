"""
Pricewatch — Application Entrypoint

Initializes async SQLAlchemy engine, configures structlog, and runs one
scrape batch over the active vendor targets.

Run via:
    python -m pricewatch.main
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pricewatch.config import settings
from pricewatch.pipeline.scrape_jobs import run_scrape_batch


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    # stdlib logging for third-party libraries (httpx, sqlalchemy)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


async def create_db_engine(
    database_url: str | None = None,
) -> tuple[Any, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory.

    Uses asyncpg for async Postgres connections unless database_url says
    otherwise.

    Returns:
        (engine, session_factory) tuple.
    """
    logger = structlog.get_logger(__name__)
    url = database_url or settings.DATABASE_URL

    logger.info("database_engine_initializing", database_url=url.split("@")[-1])

    engine_kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        engine_kwargs.update(pool_size=5, max_overflow=10)
    engine = create_async_engine(url, **engine_kwargs)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready")
    return engine, session_factory


async def check_database(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """SELECT 1 against the database; raises on failure."""
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))


# ---------------------------------------------------------------------------
# Application Startup
# ---------------------------------------------------------------------------


async def main() -> None:
    """
    Application entrypoint.

    Execution order:
    1. Configure logging (structlog JSON)
    2. Create async database engine and session factory
    3. Verify database connection (health check)
    4. Run one scrape batch and log the report
    """
    _configure_logging(log_level=settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    logger.info("pricewatch_startup_begin", version="0.1.0")

    if not settings.LLM_API_KEY:
        logger.warning("config_llm_api_key_missing", note="pattern fallback only")

    try:
        engine, session_factory = await create_db_engine()
    except Exception as e:
        logger.error(
            "database_engine_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    try:
        await check_database(session_factory)
        logger.info("database_health_check_passed")
    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        await engine.dispose()
        raise

    try:
        report = await run_scrape_batch(session_factory)
        logger.info(
            "pricewatch_batch_report",
            total_vendors=report.total_vendors,
            successful=report.successful_scrapes,
            failed=report.failed_scrapes,
            skipped=report.skipped_vendors,
            aborted_error=report.aborted_error,
            duration_seconds=report.duration_seconds,
        )
    except KeyboardInterrupt:
        logger.info("pricewatch_interrupted_by_user")
    except Exception as e:
        logger.error(
            "pricewatch_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await engine.dispose()
        logger.info("pricewatch_shutdown_complete")


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    asyncio.run(main())
