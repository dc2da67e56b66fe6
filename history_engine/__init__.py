"""
History Engine Package - Fused daily price history with safe incremental refresh.

Pipeline (one per symbol):
    history_sources -> normalize -> sanitize (MAD) -> fuse -> SeriesStore

Quick Start:
    from history_engine import create_orchestrator

    async def main():
        orchestrator = create_orchestrator()
        await orchestrator.backfill_symbol("BTC")
        await orchestrator.refresh_history("BTC", days=7)

        series = await orchestrator.load_history("BTC")
        last_month = orchestrator.slice_range(series, "30d")

Public surface:
    backfill_symbol, refresh_history, backfill_all, load_history, slice_range
"""

from history_engine.config import FusionPolicy, HistoryConfig, get_config, set_config
from history_engine.currency import CoinGeckoRateProvider, StaticRateProvider, UsdRateProvider
from history_engine.exceptions import (
    CorruptRecordError,
    FusionError,
    HistoryEngineError,
    NoDataError,
    PersistenceError,
    SourceRefreshError,
    UnknownSymbolError,
    UnsupportedCurrencyError,
)
from history_engine.fusion import FusionEngine
from history_engine.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from history_engine.models import (
    FusedPoint,
    FusedSeries,
    NormalizedPoint,
    RangeWindow,
    RefreshResult,
    SeriesMetadata,
    SourcePoints,
    SymbolResult,
)
from history_engine.normalizer import PointNormalizer
from history_engine.orchestrator import HistoryOrchestrator, create_orchestrator
from history_engine.refresh_loop import HistoryRefreshLoop
from history_engine.reports import build_status, export_history
from history_engine.sanitizer import sanitize_points
from history_engine.slicer import slice_range
from history_engine.store import SeriesStore


__version__ = "1.0.0"

__all__ = [
    # Config
    "FusionPolicy",
    "HistoryConfig",
    "get_config",
    "set_config",
    # Currency
    "UsdRateProvider",
    "CoinGeckoRateProvider",
    "StaticRateProvider",
    # Exceptions
    "HistoryEngineError",
    "UnknownSymbolError",
    "NoDataError",
    "SourceRefreshError",
    "PersistenceError",
    "CorruptRecordError",
    "UnsupportedCurrencyError",
    "FusionError",
    # Models
    "NormalizedPoint",
    "SourcePoints",
    "FusedPoint",
    "FusedSeries",
    "SeriesMetadata",
    "RefreshResult",
    "SymbolResult",
    "RangeWindow",
    # Pipeline
    "PointNormalizer",
    "sanitize_points",
    "FusionEngine",
    # Storage
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "SeriesStore",
    # Orchestration
    "HistoryOrchestrator",
    "create_orchestrator",
    "HistoryRefreshLoop",
    "slice_range",
    # Reports
    "build_status",
    "export_history",
]
