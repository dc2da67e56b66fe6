"""
History Engine - Backfill/refresh orchestrator.

============================================================
RESPONSIBILITY
============================================================
The only component with retry and merge policy. Drives:

fetch -> normalize -> sanitize -> fuse -> persist

- backfill_symbol: build full history (early success across
  sources); gap-filling backfills never overwrite stored days
- refresh_history: trailing window from the primary source
  only; fresh values overwrite stored days
- backfill_all / refresh_all: one independent pipeline per
  symbol, run concurrently; failures stay per-symbol

============================================================
CONCURRENCY
============================================================
Pipelines for different symbols share no in-memory state and
meet only in the store. Two concurrent refreshes of the same
symbol are not coordinated: the last writer wins.

============================================================
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

from history_engine.config import HistoryConfig, get_config
from history_engine.currency import CoinGeckoRateProvider
from history_engine.exceptions import (
    FusionError,
    NoDataError,
    SourceRefreshError,
    UnknownSymbolError,
    UnsupportedCurrencyError,
)
from history_engine.fusion import FusionEngine
from history_engine.kv import RedisKeyValueStore
from history_engine.models import (
    FusedSeries,
    RangeWindow,
    RefreshResult,
    SourcePoints,
    SymbolResult,
    UpdateLogEntry,
    now_ms,
)
from history_engine.normalizer import PointNormalizer
from history_engine.pipeline import prepare_source
from history_engine.slicer import slice_range
from history_engine.store import SeriesStore
from history_sources.exceptions import NoAvailableSourceError, UnusableDataError
from history_sources.models import FetchErr, FetchOk
from history_sources.registry import SourceRegistry, create_default_registry


logger = logging.getLogger(__name__)


class HistoryOrchestrator:
    """
    Public surface of the history engine.

    Callers use backfill_symbol, refresh_history, backfill_all,
    load_history and slice_range. The store handle is injected, so
    tests can run against an in-memory key-value store.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        store: SeriesStore,
        config: Optional[HistoryConfig] = None,
        normalizer: Optional[PointNormalizer] = None,
        fusion: Optional[FusionEngine] = None,
    ) -> None:
        self._config = config or HistoryConfig()
        self._registry = registry
        self._store = store
        self._normalizer = normalizer or PointNormalizer(
            CoinGeckoRateProvider(
                fallback_rates=self._config.fx_fallback_rates,
                cache_seconds=self._config.fx_cache_seconds,
            )
        )
        self._fusion = fusion or FusionEngine(self._config.fusion)

    @property
    def config(self) -> HistoryConfig:
        return self._config

    @property
    def store(self) -> SeriesStore:
        return self._store

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    def list_symbols(self) -> list[str]:
        return self._config.list_symbols()

    def _provider_ids(self, symbol: str) -> dict[str, str]:
        ids = self._config.provider_ids(symbol)
        if not ids:
            raise UnknownSymbolError(symbol)
        return ids

    async def _prepare(self, result: FetchOk) -> SourcePoints:
        source = self._registry.get_source(result.source_name)
        currency = source.currency if source is not None else "USD"
        return await prepare_source(
            result.source_name,
            result.points,
            currency,
            self._normalizer,
            self._fusion.policy.mad_multiplier,
        )

    # =========================================================
    # BACKFILL
    # =========================================================

    async def backfill_symbol(
        self,
        symbol: str,
        days: Optional[int] = None,
        force: bool = False,
    ) -> FusedSeries:
        """
        Build or extend a symbol's history.

        - Stored series, full-history request, no force: returned as is
        - Stored series, windowed request, no force: only days missing
          from the stored series are added
        - force: rebuilt from the fetched data

        Raises:
            UnknownSymbolError: Symbol is not configured
            NoDataError: Every source failed; carries each source's last error
        """
        symbol = symbol.upper()
        ids = self._provider_ids(symbol)

        existing = None if force else await self._store.load(symbol)
        if existing is not None and days is None:
            logger.info(f"[{symbol}] History exists ({len(existing.points)} points), skipping backfill")
            return existing

        async def prepare_and_fuse(fetched: FetchOk) -> FusedSeries:
            try:
                prepared = await self._prepare(fetched)
                return self._fusion.fuse(symbol, [prepared])
            except (UnsupportedCurrencyError, FusionError) as e:
                raise UnusableDataError(e.message, source_name=fetched.source_name, original_error=e)

        try:
            result, fused = await self._registry.fetch_first_usable(
                ids, prepare_and_fuse, days=days, symbol=symbol,
            )
        except NoAvailableSourceError as e:
            raise NoDataError(
                f"No data available for {symbol} from any source",
                symbol=symbol,
                errors=e.errors,
            )

        if existing is not None:
            series = self._merge_additive(existing, fused)
            logger.info(
                f"[{symbol}] Backfill added {len(series.points) - len(existing.points)} days "
                f"to {len(existing.points)} stored"
            )
        else:
            series = fused

        await self._store.save(series, force=force)
        await self._store.append_update_log(UpdateLogEntry(
            symbol=symbol,
            action="backfill",
            timestamp=now_ms(),
            points_total=len(series.points),
            days_requested=days,
            extra={"from": series.from_ts, "to": series.to_ts, "source": result.source_name},
        ))
        return series

    @staticmethod
    def _merge_additive(existing: FusedSeries, fresh: FusedSeries) -> FusedSeries:
        """Stored days win; only new days are taken from `fresh`."""
        merged = existing.by_day()
        for point in fresh.points:
            merged.setdefault(point.t, point)
        return FusedSeries.build(
            symbol=existing.symbol,
            points=merged.values(),
            sources_used=[*existing.sources_used, *fresh.sources_used],
        )

    async def backfill_all(
        self,
        days: Optional[int] = None,
        force: bool = False,
    ) -> list[SymbolResult]:
        """Backfill every configured symbol concurrently."""
        async def run(symbol: str) -> int:
            series = await self.backfill_symbol(symbol, days=days, force=force)
            return len(series.points)

        return await self._run_all(run)

    # =========================================================
    # REFRESH
    # =========================================================

    async def refresh_history(
        self,
        symbol: str,
        days: int,
        force: bool = False,
    ) -> RefreshResult:
        """
        Overwrite the trailing `days` window from the primary source.

        A metadata backup is written before anything changes. Fresh
        values replace stored values for the same day; new days are
        added.

        Raises:
            UnknownSymbolError: Symbol is not configured
            SourceRefreshError: The primary source failed
        """
        symbol = symbol.upper()
        ids = self._provider_ids(symbol)
        primary = self._fusion.policy.primary_source

        if primary not in ids or self._registry.get_source(primary) is None:
            raise SourceRefreshError(symbol, primary, "primary source not configured")

        existing = await self._store.load(symbol)
        if existing is not None:
            await self._store.backup_metadata(existing, force_flag=force)

        result = await self._registry.fetch_from(primary, ids[primary], days)
        if isinstance(result, FetchErr):
            raise SourceRefreshError(symbol, primary, result.reason)

        try:
            prepared = await self._prepare(result)
            fresh = self._fusion.fuse(symbol, [prepared])
        except (UnsupportedCurrencyError, FusionError) as e:
            raise SourceRefreshError(symbol, primary, str(e))

        updated_days = len({point.t for point in fresh.points})

        merged = existing.by_day() if existing is not None else {}
        for point in fresh.points:
            merged[point.t] = point

        series = FusedSeries.build(
            symbol=symbol,
            points=merged.values(),
            sources_used=[*(existing.sources_used if existing else []), *fresh.sources_used],
        )

        written = await self._store.save(series, updated_days=updated_days, force=force)

        refresh = RefreshResult(
            symbol=symbol,
            merged=len(fresh.points),
            total=len(series.points),
            updated_days=updated_days,
            written=written,
        )
        await self._store.append_update_log(UpdateLogEntry(
            symbol=symbol,
            action="refresh",
            timestamp=now_ms(),
            points_merged=refresh.merged,
            points_total=refresh.total,
            updated_days=updated_days,
            days_requested=days,
        ))

        logger.info(
            f"[{symbol}] Refreshed {refresh.merged} points over {updated_days} days, "
            f"total {refresh.total}{'' if written else ' (unchanged)'}"
        )
        return refresh

    async def refresh_all(self, days: Optional[int] = None) -> list[SymbolResult]:
        """Refresh every configured symbol concurrently."""
        window = days or self._config.refresh_days

        async def run(symbol: str) -> int:
            result = await self.refresh_history(symbol, window)
            return result.total

        return await self._run_all(run)

    async def _run_all(self, run: Callable[[str], Awaitable[int]]) -> list[SymbolResult]:
        async def isolated(symbol: str) -> SymbolResult:
            try:
                points = await run(symbol)
                return SymbolResult(symbol=symbol, ok=True, points=points)
            except Exception as e:
                logger.error(f"[{symbol}] Failed: {e}")
                return SymbolResult(symbol=symbol, ok=False, error=str(e))

        return list(await asyncio.gather(*(isolated(s) for s in self.list_symbols())))

    # =========================================================
    # READ / MAINTENANCE
    # =========================================================

    async def load_history(self, symbol: str) -> Optional[FusedSeries]:
        return await self._store.load(symbol.upper())

    def slice_range(
        self,
        series: FusedSeries,
        window: Union[str, RangeWindow],
        now: Optional[int] = None,
    ) -> FusedSeries:
        return slice_range(series, window, now)

    async def clear_symbol(self, symbol: str) -> list[str]:
        symbol = symbol.upper()
        self._provider_ids(symbol)
        return await self._store.delete(symbol)

    async def clear_all(self) -> dict[str, list[str]]:
        return {symbol: await self._store.delete(symbol) for symbol in self.list_symbols()}

    async def close(self) -> None:
        await self._registry.close()
        await self._store.kv.close()


def create_orchestrator(config: Optional[HistoryConfig] = None) -> HistoryOrchestrator:
    """Wire the standard providers, a Redis store and live FX rates."""
    config = config or get_config()
    registry = create_default_registry(
        coingecko_api_key=config.coingecko_api_key,
        cryptocompare_api_key=config.cryptocompare_api_key,
        cryptocompare_currency=config.cryptocompare_currency,
        timeout=config.source_timeout_seconds,
    )
    store = SeriesStore(
        RedisKeyValueStore(config.redis_url),
        compression_threshold_days=config.compression_threshold_days,
        update_log_max_entries=config.update_log_max_entries,
    )
    return HistoryOrchestrator(registry, store, config=config)
