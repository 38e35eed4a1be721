"""
Pricewatch — Manual Batch Scrape Script

Runs one scrape batch over active vendor targets and prints the report.
This is what the admin "run scraper" action and the cron job invoke.

Usage:
    python scripts/run_scrape.py
    python scripts/run_scrape.py --limit 25
    python scripts/run_scrape.py --product-id 6f1c2d9e-...
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pricewatch.config import settings
from pricewatch.main import _configure_logging, create_db_engine
from pricewatch.pipeline.scrape_jobs import run_scrape_batch
from pricewatch.scraper import ScrapeReport


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Scrape active vendor targets once and print the batch report.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_scrape.py
  python scripts/run_scrape.py --limit 25
  python scripts/run_scrape.py --product-id 6f1c2d9e-8a8b-4c3e-9a61-0f3f5b1f2a10
""",
    )
    parser.add_argument(
        "--product-id",
        type=uuid.UUID,
        default=None,
        help="Only scrape vendors of this product.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.SCRAPE_BATCH_LIMIT,
        help=f"Maximum vendor targets in the batch (default: {settings.SCRAPE_BATCH_LIMIT}).",
    )
    return parser.parse_args()


def print_report(report: ScrapeReport) -> None:
    print(
        f"Batch finished: {report.successful_scrapes} succeeded, "
        f"{report.failed_scrapes} failed, {report.skipped_vendors} skipped "
        f"of {report.total_vendors} vendors"
    )
    if report.duration_seconds is not None:
        print(f"  duration           = {report.duration_seconds:.1f}s")
    if report.aborted_error:
        print(f"  aborted            = {report.aborted_error}")
    for outcome in report.results:
        if outcome.success and outcome.extraction is not None:
            print(
                f"  OK   {outcome.vendor_name:<24} {outcome.extraction.price} / "
                f"{outcome.extraction.quantity}{outcome.extraction.unit} = {outcome.unit_price} "
                f"({outcome.extraction.method.value}, confidence {outcome.extraction.confidence:.2f})"
            )
        else:
            print(f"  FAIL {outcome.vendor_name:<24} {outcome.error}")


async def main() -> None:
    args = parse_args()
    _configure_logging(settings.LOG_LEVEL)

    engine, session_factory = await create_db_engine()
    try:
        report = await run_scrape_batch(session_factory, product_id=args.product_id, limit=args.limit)
    except Exception as e:
        print(f"Batch failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await engine.dispose()

    print_report(report)
    if report.aborted_error:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
