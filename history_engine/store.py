"""
History Engine - Series store.

============================================================
LAYOUT
============================================================
history:{symbol}:v1:meta           SeriesMetadata (JSON)
history:{symbol}:v1:year:{year}    points of one UTC year (JSON,
                                   gzip when the series spans
                                   >= 30 days)
history:{symbol}:v1:backup:{ms}    metadata snapshot before refresh
logs:history_updates               append-only update log (capped)

Metadata is the only entry point for reads: a symbol without a
metadata record has no history, and only the chunks it names
are loaded. No record is written with a TTL.
============================================================
"""

import gzip
import json
import logging
import zlib
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Optional

from history_engine.config import (
    COMPRESSION_THRESHOLD_DAYS,
    KEY_NAMESPACE_VERSION,
    UPDATE_LOG_MAX_ENTRIES,
)
from history_engine.exceptions import CorruptRecordError, PersistenceError
from history_engine.kv import KeyValueStore
from history_engine.models import (
    FusedPoint,
    FusedSeries,
    SeriesMetadata,
    UpdateLogEntry,
    now_ms,
)


logger = logging.getLogger(__name__)

UPDATE_LOG_KEY = "logs:history_updates"


def meta_key(symbol: str) -> str:
    return f"history:{symbol}:{KEY_NAMESPACE_VERSION}:meta"


def year_key(symbol: str, year: int) -> str:
    return f"history:{symbol}:{KEY_NAMESPACE_VERSION}:year:{year}"


def backup_key(symbol: str, timestamp: int) -> str:
    return f"history:{symbol}:{KEY_NAMESPACE_VERSION}:backup:{timestamp}"


def utc_year(timestamp_ms: int) -> int:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).year


def encode_chunk(points: list[FusedPoint], compressed: bool) -> bytes:
    payload = json.dumps([point.to_dict() for point in points], separators=(",", ":")).encode("utf-8")
    return gzip.compress(payload, mtime=0) if compressed else payload


def decode_chunk(data: bytes, compressed: bool) -> list[FusedPoint]:
    payload = gzip.decompress(data) if compressed else data
    return [FusedPoint.from_dict(item) for item in json.loads(payload.decode("utf-8"))]


class SeriesStore:
    """Persists FusedSeries as metadata plus per-year chunks."""

    def __init__(
        self,
        kv: KeyValueStore,
        compression_threshold_days: int = COMPRESSION_THRESHOLD_DAYS,
        update_log_max_entries: int = UPDATE_LOG_MAX_ENTRIES,
    ) -> None:
        self._kv = kv
        self._compression_threshold_days = compression_threshold_days
        self._update_log_max_entries = update_log_max_entries

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    def should_compress(self, series: FusedSeries) -> bool:
        return series.span_days >= self._compression_threshold_days

    # =========================================================
    # WRITE
    # =========================================================

    async def save(
        self,
        series: FusedSeries,
        updated_days: Optional[int] = None,
        force: bool = False,
    ) -> bool:
        """
        Persist a series.

        Skips every write when the stored checksum equals the series
        checksum and `force` is False.

        Args:
            series: Series to persist
            updated_days: Days touched by the latest refresh; None keeps
                the stored value
            force: Rewrite even when the checksum is unchanged

        Returns:
            True if written, False if skipped as unchanged
        """
        symbol = series.symbol
        try:
            existing = await self.load_metadata(symbol)
            stale_years = set(existing.years) if existing else set()
        except CorruptRecordError as e:
            if not force:
                raise
            logger.warning(f"[{symbol}] Overwriting corrupt metadata: {e.message}")
            existing = None
            stale_years = set(await self._stored_years(symbol))

        if existing is not None and existing.checksum == series.checksum and not force:
            logger.debug(f"[{symbol}] Checksum {series.checksum} unchanged, skipping write")
            return False

        by_year: dict[int, list[FusedPoint]] = defaultdict(list)
        for point in series.points:
            by_year[utc_year(point.t)].append(point)
        years = sorted(by_year)

        compressed = self.should_compress(series)
        for year in years:
            await self._set(year_key(symbol, year), encode_chunk(by_year[year], compressed))

        if updated_days is None:
            updated_days = existing.updated_days if existing else 0

        metadata = SeriesMetadata(
            symbol=symbol,
            years=years,
            from_ts=series.from_ts,
            to_ts=series.to_ts,
            points=len(series.points),
            confidence=series.confidence,
            sources_used=list(series.sources_used),
            version=series.version,
            checksum=series.checksum,
            last_updated=now_ms(),
            updated_days=updated_days,
            compressed=compressed,
        )
        await self._set(meta_key(symbol), json.dumps(metadata.to_dict()).encode("utf-8"))

        for year in stale_years - set(years):
            await self._kv.delete(year_key(symbol, year))

        logger.info(
            f"[{symbol}] Saved {len(series.points)} points in {len(years)} year chunks "
            f"({'compressed' if compressed else 'raw'}), checksum {series.checksum}"
        )
        return True

    async def _set(self, key: str, value: bytes) -> None:
        if not await self._kv.set(key, value, None):
            raise PersistenceError(f"Write rejected for {key}", key=key)

    # =========================================================
    # READ
    # =========================================================

    async def load_metadata(self, symbol: str) -> Optional[SeriesMetadata]:
        raw = await self._kv.get(meta_key(symbol))
        if raw is None:
            return None
        try:
            return SeriesMetadata.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise CorruptRecordError(
                f"Corrupt metadata for {symbol}: {e}",
                key=meta_key(symbol),
                original_error=e,
            )

    async def load(self, symbol: str) -> Optional[FusedSeries]:
        """
        Reload a series from metadata and its year chunks.

        Returns:
            The series, or None when there is no metadata or no points
        """
        metadata = await self.load_metadata(symbol)
        if metadata is None or not metadata.years:
            return None

        points: list[FusedPoint] = []
        for year in metadata.years:
            data = await self._kv.get(year_key(symbol, year))
            if data is None:
                logger.error(f"[{symbol}] Chunk for {year} referenced by metadata is missing")
                continue
            try:
                points.extend(decode_chunk(data, metadata.compressed))
            except (OSError, EOFError, zlib.error, ValueError, KeyError, TypeError) as e:
                logger.error(f"[{symbol}] Error decoding chunk for {year}: {e}")

        if not points:
            return None

        points.sort(key=lambda point: point.t)
        if points[0].t != metadata.from_ts or points[-1].t != metadata.to_ts:
            logger.warning(
                f"[{symbol}] Reloaded bounds {points[0].t}-{points[-1].t} differ from "
                f"metadata {metadata.from_ts}-{metadata.to_ts}"
            )

        return FusedSeries(
            symbol=metadata.symbol,
            from_ts=points[0].t,
            to_ts=points[-1].t,
            points=points,
            sources_used=list(metadata.sources_used),
            confidence=metadata.confidence,
            version=metadata.version,
            checksum=metadata.checksum,
        )

    async def footprint(self, symbol: str, metadata: Optional[SeriesMetadata] = None) -> int:
        """Stored bytes across all year chunks."""
        metadata = metadata or await self.load_metadata(symbol)
        if metadata is None:
            return 0
        total = 0
        for year in metadata.years:
            data = await self._kv.get(year_key(symbol, year))
            if data is not None:
                total += len(data)
        return total

    async def _stored_years(self, symbol: str) -> list[int]:
        """Years with a chunk on the backend, regardless of metadata."""
        prefix = year_key(symbol, 0)[:-1]
        years = []
        for key in await self._kv.scan(prefix + "*"):
            suffix = key[len(prefix):]
            if suffix.isdigit():
                years.append(int(suffix))
        return sorted(years)

    # =========================================================
    # DELETE
    # =========================================================

    async def delete(self, symbol: str) -> list[str]:
        """
        Delete every chunk named by metadata, then the metadata itself.

        With corrupt metadata the chunks are found by key scan instead.
        """
        deleted: list[str] = []
        try:
            metadata = await self.load_metadata(symbol)
            if metadata is None:
                return deleted
            years = metadata.years
        except CorruptRecordError as e:
            logger.warning(f"[{symbol}] Deleting corrupt metadata: {e.message}")
            years = await self._stored_years(symbol)

        for year in years:
            if await self._kv.delete(year_key(symbol, year)):
                deleted.append(f"year:{year}")
        if await self._kv.delete(meta_key(symbol)):
            deleted.append("meta")

        logger.info(f"[{symbol}] Deleted {deleted}")
        return deleted

    # =========================================================
    # BACKUPS AND UPDATE LOG
    # =========================================================

    async def backup_metadata(
        self,
        series: FusedSeries,
        force_flag: bool = False,
        timestamp: Optional[int] = None,
    ) -> str:
        """Snapshot the current series metadata before a refresh mutates it."""
        timestamp = timestamp or now_ms()
        key = backup_key(series.symbol, timestamp)
        snapshot = {
            "symbol": series.symbol,
            "from": series.from_ts,
            "to": series.to_ts,
            "points": len(series.points),
            "confidence": series.confidence,
            "sources_used": list(series.sources_used),
            "version": series.version,
            "checksum": series.checksum,
            "backup_timestamp": timestamp,
            "force_flag": force_flag,
        }
        await self._set(key, json.dumps(snapshot).encode("utf-8"))
        return key

    async def list_backups(self, symbol: str) -> list[str]:
        return await self._kv.scan(f"history:{symbol}:{KEY_NAMESPACE_VERSION}:backup:*")

    async def append_update_log(self, entry: UpdateLogEntry) -> None:
        """Append to the capped update log; failures are logged, never raised."""
        try:
            await self._kv.append_capped(
                UPDATE_LOG_KEY,
                json.dumps(entry.to_dict()).encode("utf-8"),
                self._update_log_max_entries,
            )
        except Exception as e:
            logger.error(f"Error logging history update for {entry.symbol}: {e}")

    async def get_update_log(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        logs = []
        for raw in await self._kv.read_list(UPDATE_LOG_KEY):
            try:
                logs.append(json.loads(raw))
            except ValueError:
                logger.warning("Skipping corrupt update log entry")
        return logs[-limit:] if limit else logs
