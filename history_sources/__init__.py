"""
History Sources Package - Pluggable daily price history providers.

Features:
- Isolated, replaceable providers returning typed RawPoint values
- Tagged FetchOk / FetchErr results (fetch() never raises)
- Priority-ordered fallback through SourceRegistry
- Per-source timeouts, retries and health tracking

Quick Start:
    from history_sources import SourceRegistry, CoinGeckoHistorySource, FetchOk

    async def latest_week():
        registry = SourceRegistry()
        registry.register(CoinGeckoHistorySource())

        result = await registry.fetch_from("coingecko", "bitcoin", days=7)
        if isinstance(result, FetchOk):
            for point in result.points:
                print(point.t, point.p)

Adding New Providers:
    1. Create class extending BaseHistorySource
    2. Implement: name, fetch_raw(), parse(), metadata()
    3. Register with SourceRegistry
"""

from history_sources.base import BaseHistorySource
from history_sources.exceptions import (
    FetchError,
    HistorySourceError,
    NoAvailableSourceError,
    ParseError,
    RateLimitError,
    UnusableDataError,
)
from history_sources.models import (
    FetchErr,
    FetchOk,
    FetchResult,
    HistoryRequest,
    RawPoint,
    SourceHealth,
    SourceIncident,
    SourceMetadata,
    SourceStatus,
)
from history_sources.providers import (
    BinanceHistorySource,
    CoinGeckoHistorySource,
    CryptoCompareHistorySource,
)
from history_sources.registry import SourceRegistry, create_default_registry


__version__ = "1.0.0"

__all__ = [
    # Base
    "BaseHistorySource",

    # Models
    "RawPoint",
    "FetchOk",
    "FetchErr",
    "FetchResult",
    "HistoryRequest",
    "SourceHealth",
    "SourceIncident",
    "SourceMetadata",
    "SourceStatus",

    # Exceptions
    "HistorySourceError",
    "FetchError",
    "ParseError",
    "RateLimitError",
    "NoAvailableSourceError",
    "UnusableDataError",

    # Providers
    "BinanceHistorySource",
    "CoinGeckoHistorySource",
    "CryptoCompareHistorySource",

    # Registry
    "SourceRegistry",
    "create_default_registry",
]
