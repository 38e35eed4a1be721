from pricewatch.engine.alerts import PriceDropAlert, find_price_drops, is_price_drop
from pricewatch.engine.history import (
    TIMEFRAME_DAYS,
    DailyPricePoint,
    aggregate_daily,
    get_price_history,
    summarize_history,
)
from pricewatch.engine.price_trend import classify_trend, get_price_trend
from pricewatch.engine.ranking import (
    PriceStats,
    VendorRanking,
    get_vendor_rankings,
    rank_vendors,
    summarize_prices,
)

__all__ = [
    "DailyPricePoint",
    "PriceDropAlert",
    "PriceStats",
    "TIMEFRAME_DAYS",
    "VendorRanking",
    "aggregate_daily",
    "classify_trend",
    "find_price_drops",
    "get_price_history",
    "get_price_trend",
    "get_vendor_rankings",
    "is_price_drop",
    "rank_vendors",
    "summarize_history",
    "summarize_prices",
]
