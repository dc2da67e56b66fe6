"""
Source Registry - Central registry for history sources with fallback logic.

Provides:
- Source registration in priority order
- Early-success fallback across sources (fetch_first)
- Concurrent fan-out to every source (fetch_all)
- Incident tracking across sources
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from history_sources.base import BaseHistorySource
from history_sources.exceptions import NoAvailableSourceError, UnusableDataError
from history_sources.models import (
    FetchErr,
    FetchOk,
    FetchResult,
    HistoryRequest,
    SourceHealth,
    SourceIncident,
    SourceMetadata,
    SourceStatus,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _accept(result: FetchOk) -> FetchOk:
    return result


class SourceRegistry:
    """
    Central registry for history sources.

    Sources are keyed by name and kept in priority order (lower value
    first). Provider identifiers differ per source, so every fetch takes
    a mapping of source name -> provider id; sources without an id for
    the symbol are skipped.

    Usage:
        registry = SourceRegistry()
        registry.register(CoinGeckoHistorySource())
        registry.register(CryptoCompareHistorySource())

        result = await registry.fetch_first(
            {"coingecko": "bitcoin", "cryptocompare": "BTC"},
        )
    """

    def __init__(self, max_incidents: int = 1000) -> None:
        self._sources: dict[str, BaseHistorySource] = {}
        self._priorities: dict[str, int] = {}
        self._source_order: list[str] = []

        self._incidents: list[SourceIncident] = []
        self._max_incidents = max_incidents

        self._on_fallback_callbacks: list[Callable[[str, str], None]] = []

    def register(
        self,
        source: BaseHistorySource,
        priority: Optional[int] = None,
    ) -> None:
        """
        Register a history source.

        Args:
            source: Source instance
            priority: Lower = tried first (defaults to metadata priority)
        """
        name = source.name

        if name in self._sources:
            logger.warning(f"Source '{name}' already registered, replacing")
            self._source_order.remove(name)

        if priority is None:
            priority = source.metadata().priority

        self._sources[name] = source
        self._priorities[name] = priority

        insert_idx = len(self._source_order)
        for i, existing_name in enumerate(self._source_order):
            if priority < self._priorities[existing_name]:
                insert_idx = i
                break
        self._source_order.insert(insert_idx, name)

        logger.info(f"Registered source '{name}' with priority {priority}")

    def unregister(self, name: str) -> Optional[BaseHistorySource]:
        """Unregister a history source."""
        if name not in self._sources:
            return None
        source = self._sources.pop(name)
        self._priorities.pop(name, None)
        self._source_order.remove(name)
        logger.info(f"Unregistered source '{name}'")
        return source

    def get_source(self, name: str) -> Optional[BaseHistorySource]:
        return self._sources.get(name)

    def list_sources(self) -> list[str]:
        """List all registered source names in priority order."""
        return self._source_order.copy()

    def get_all_metadata(self) -> dict[str, SourceMetadata]:
        return {name: source.metadata() for name, source in self._sources.items()}

    def get_all_health(self) -> dict[str, SourceHealth]:
        return {name: source.get_health() for name, source in self._sources.items()}

    async def fetch_from(
        self,
        source_name: str,
        provider_id: str,
        days: Optional[int] = None,
    ) -> FetchResult:
        """Fetch from one named source without fallback."""
        source = self._sources.get(source_name)
        if source is None:
            return FetchErr(source_name=source_name, reason="source not registered")
        return await source.fetch(HistoryRequest(provider_id=provider_id, days=days))

    async def fetch_first(
        self,
        provider_ids: Mapping[str, str],
        days: Optional[int] = None,
        symbol: Optional[str] = None,
    ) -> FetchOk:
        """
        Try sources in priority order and return the first non-empty result.

        Args:
            provider_ids: Source name -> provider-specific identifier
            days: Trailing window, or None for full history
            symbol: Canonical symbol, for error context only

        Raises:
            NoAvailableSourceError: Every attempted source failed; carries
                the last error reason of each attempted source
        """
        result, _ = await self.fetch_first_usable(provider_ids, _accept, days, symbol)
        return result

    async def fetch_first_usable(
        self,
        provider_ids: Mapping[str, str],
        prepare: Callable[[FetchOk], Awaitable[T]],
        days: Optional[int] = None,
        symbol: Optional[str] = None,
    ) -> tuple[FetchOk, T]:
        """
        Like fetch_first, but a source only wins once `prepare` accepts it.

        `prepare` turns a FetchOk into the caller's working form and
        raises UnusableDataError when nothing usable remains; the next
        source is then tried.

        Returns:
            (winning fetch result, prepared value)
        """
        candidates = [name for name in self._source_order if name in provider_ids]

        # Unavailable sources go last rather than being skipped outright
        candidates.sort(key=lambda name: not self._sources[name].is_usable())

        errors: dict[str, str] = {}
        previous: Optional[str] = None

        for source_name in candidates:
            result = await self.fetch_from(source_name, provider_ids[source_name], days)

            if isinstance(result, FetchOk):
                try:
                    prepared = await prepare(result)
                except UnusableDataError as e:
                    reason = str(e)
                    incident_type = "unusable_data"
                else:
                    if previous is not None:
                        self._on_fallback(previous, source_name)
                    return result, prepared
            else:
                reason = result.reason
                incident_type = "fetch_error"

            logger.warning(f"[{source_name}] No usable data: {reason}")
            errors[source_name] = reason
            self._log_incident(source_name, incident_type, reason, symbol)
            previous = source_name

        logger.error(f"All sources failed for {symbol or provider_ids}: {list(errors)}")
        self._log_incident(
            "registry",
            "all_sources_failed",
            f"Attempted sources: {candidates}",
            symbol,
        )
        raise NoAvailableSourceError(
            message=f"No source returned data for {symbol or 'request'}",
            attempted_sources=candidates,
            errors=errors,
            symbol=symbol,
        )

    async def fetch_all(
        self,
        provider_ids: Mapping[str, str],
        days: Optional[int] = None,
    ) -> dict[str, FetchResult]:
        """Fetch from every mapped source concurrently."""
        names = [name for name in self._source_order if name in provider_ids]
        results = await asyncio.gather(
            *(self.fetch_from(name, provider_ids[name], days) for name in names)
        )
        return dict(zip(names, results))

    def on_fallback(self, callback: Callable[[str, str], None]) -> None:
        """Register callback for source fallback (from_source, to_source)."""
        self._on_fallback_callbacks.append(callback)

    def _log_incident(
        self,
        source_name: str,
        incident_type: str,
        message: str,
        symbol: Optional[str] = None,
    ) -> None:
        incident = SourceIncident(
            source_name=source_name,
            incident_type=incident_type,
            timestamp=datetime.now(timezone.utc),
            error_message=message,
            request_params={"symbol": symbol} if symbol else None,
        )

        self._incidents.append(incident)

        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

    def _on_fallback(self, from_source: str, to_source: str) -> None:
        logger.warning(f"Fallback: {from_source} -> {to_source}")

        self._log_incident(from_source, "fallback", f"Switched to {to_source}")

        for callback in self._on_fallback_callbacks:
            try:
                callback(from_source, to_source)
            except Exception as e:
                logger.error(f"Fallback callback error: {e}")

    def get_incidents(self, limit: int = 100) -> list[SourceIncident]:
        return self._incidents[-limit:]

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        health_summary = {}
        for status in SourceStatus:
            health_summary[status.value] = sum(
                1 for s in self._sources.values()
                if s.get_health().status == status
            )

        return {
            "total_sources": len(self._sources),
            "source_order": self._source_order.copy(),
            "health_summary": health_summary,
            "total_incidents": len(self._incidents),
            "sources": {
                name: {
                    "status": source.get_health().status.value,
                    "is_usable": source.is_usable(),
                    "priority": self._priorities[name],
                }
                for name, source in self._sources.items()
            },
        }

    async def close(self) -> None:
        """Close all sources."""
        for source in self._sources.values():
            try:
                await source.close()
            except Exception as e:
                logger.error(f"Error closing source {source.name}: {e}")
        logger.info("Registry closed")

    async def __aenter__(self) -> "SourceRegistry":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def create_default_registry(
    coingecko_api_key: Optional[str] = None,
    cryptocompare_api_key: Optional[str] = None,
    cryptocompare_currency: str = "USD",
    timeout: float = BaseHistorySource.DEFAULT_TIMEOUT,
) -> SourceRegistry:
    """
    Build a registry with the standard providers.

    CoinGecko is primary (priority 1), CryptoCompare secondary (2) and
    Binance tertiary (3).
    """
    from history_sources.providers import (
        BinanceHistorySource,
        CoinGeckoHistorySource,
        CryptoCompareHistorySource,
    )

    registry = SourceRegistry()
    registry.register(CoinGeckoHistorySource(api_key=coingecko_api_key, timeout=timeout))
    registry.register(CryptoCompareHistorySource(
        quote_currency=cryptocompare_currency,
        api_key=cryptocompare_api_key,
        timeout=timeout,
    ))
    registry.register(BinanceHistorySource(timeout=timeout))
    return registry
