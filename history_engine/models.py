"""
History Engine - Models.

Canonical in-memory and persisted shapes of a price history:

- NormalizedPoint: one source observation at UTC midnight, in USD
- FusedPoint: one canonical daily price with a confidence score
- FusedSeries: an ordered, immutable series of FusedPoints
- SeriesMetadata: the persisted index record of a stored series
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from history_engine.config import DAY_MS, STORAGE_VERSION


@dataclass(frozen=True)
class NormalizedPoint:
    """Source observation at UTC midnight (ms), priced in USD."""
    t: int
    p: float


@dataclass(frozen=True)
class SourcePoints:
    """Normalized, sanitized, per-day points of one source."""
    name: str
    points: list[NormalizedPoint]

    def by_day(self) -> dict[int, float]:
        return {point.t: point.p for point in self.points}


@dataclass(frozen=True)
class FusedPoint:
    """Canonical daily price with confidence in [0, 1]."""
    t: int
    p: float
    c: float

    def to_dict(self) -> dict[str, Any]:
        return {"t": self.t, "p": self.p, "c": self.c}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FusedPoint":
        return cls(t=int(data["t"]), p=float(data["p"]), c=float(data["c"]))


def compute_checksum(points: Iterable[FusedPoint]) -> str:
    """Stable short content hash over an ordered point list."""
    payload = json.dumps(
        [point.to_dict() for point in points],
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def mean_confidence(points: list[FusedPoint]) -> float:
    if not points:
        return 0.0
    return round(sum(point.c for point in points) / len(points), 3)


@dataclass(frozen=True)
class FusedSeries:
    """
    Canonical per-symbol daily series.

    Points are strictly ascending by day with no duplicate days, and
    from_ts / to_ts always equal the first and last point timestamps.
    Build instances with FusedSeries.build(); never mutate in place.
    """
    symbol: str
    from_ts: int
    to_ts: int
    points: list[FusedPoint]
    sources_used: list[str]
    confidence: float
    version: int
    checksum: str

    def __post_init__(self) -> None:
        if not self.points:
            raise ValueError("FusedSeries requires at least one point")
        for previous, current in zip(self.points, self.points[1:]):
            if previous.t >= current.t:
                raise ValueError(
                    f"points must be strictly ascending: {previous.t} >= {current.t}"
                )
        if self.from_ts != self.points[0].t or self.to_ts != self.points[-1].t:
            raise ValueError("from_ts/to_ts must match the first/last point")

    @classmethod
    def build(
        cls,
        symbol: str,
        points: Iterable[FusedPoint],
        sources_used: Iterable[str],
        confidence: Optional[float] = None,
        version: int = STORAGE_VERSION,
    ) -> "FusedSeries":
        """
        Construct a series from points in any order.

        Points are sorted by day; confidence defaults to the mean point
        confidence and the checksum is computed from the sorted points.
        """
        ordered = sorted(points, key=lambda point: point.t)
        if not ordered:
            raise ValueError("FusedSeries requires at least one point")
        return cls(
            symbol=symbol,
            from_ts=ordered[0].t,
            to_ts=ordered[-1].t,
            points=ordered,
            sources_used=sorted(set(sources_used)),
            confidence=mean_confidence(ordered) if confidence is None else confidence,
            version=version,
            checksum=compute_checksum(ordered),
        )

    @property
    def span_days(self) -> int:
        return (self.to_ts - self.from_ts) // DAY_MS

    def by_day(self) -> dict[int, FusedPoint]:
        return {point.t: point for point in self.points}

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "from": self.from_ts,
            "to": self.to_ts,
            "points": [point.to_dict() for point in self.points],
            "sources_used": list(self.sources_used),
            "confidence": self.confidence,
            "version": self.version,
            "checksum": self.checksum,
        }


@dataclass
class SeriesMetadata:
    """
    Persisted index record of a stored series.

    Authoritative: a symbol without a metadata record has no history.
    """
    symbol: str
    years: list[int]
    from_ts: int
    to_ts: int
    points: int
    confidence: float
    sources_used: list[str]
    version: int
    checksum: str
    last_updated: int
    updated_days: int = 0
    compressed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "years": list(self.years),
            "from": self.from_ts,
            "to": self.to_ts,
            "points": self.points,
            "confidence": self.confidence,
            "sources_used": list(self.sources_used),
            "version": self.version,
            "checksum": self.checksum,
            "last_updated": self.last_updated,
            "updated_days": self.updated_days,
            "compressed": self.compressed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeriesMetadata":
        return cls(
            symbol=data["symbol"],
            years=[int(y) for y in data["years"]],
            from_ts=int(data["from"]),
            to_ts=int(data["to"]),
            points=int(data["points"]),
            confidence=float(data["confidence"]),
            sources_used=list(data.get("sources_used", [])),
            version=int(data.get("version", STORAGE_VERSION)),
            checksum=data["checksum"],
            last_updated=int(data.get("last_updated", 0)),
            updated_days=int(data.get("updated_days", 0)),
            compressed=bool(data.get("compressed", False)),
        )


@dataclass
class RefreshResult:
    """Outcome of refreshing one symbol."""
    symbol: str
    merged: int
    total: int
    updated_days: int
    written: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "merged": self.merged,
            "total": self.total,
            "updated_days": self.updated_days,
            "written": self.written,
        }


@dataclass
class SymbolResult:
    """Per-symbol outcome inside a batch run."""
    symbol: str
    ok: bool
    points: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "ok": self.ok,
            "points": self.points,
            "error": self.error,
        }


class RangeWindow(Enum):
    """Symbolic slicing windows."""
    H24 = "24h"
    D7 = "7d"
    D30 = "30d"
    D90 = "90d"
    Y1 = "1y"
    Y5 = "5y"
    ALL = "all"

    @property
    def duration_ms(self) -> Optional[int]:
        """Window length in ms; None for ALL."""
        return _WINDOW_DAYS[self] * DAY_MS if self in _WINDOW_DAYS else None


_WINDOW_DAYS = {
    RangeWindow.H24: 1,
    RangeWindow.D7: 7,
    RangeWindow.D30: 30,
    RangeWindow.D90: 90,
    RangeWindow.Y1: 365,
    RangeWindow.Y5: 5 * 365,
}


@dataclass
class UpdateLogEntry:
    """One append-only record of a backfill or refresh."""
    symbol: str
    action: str
    timestamp: int
    points_merged: Optional[int] = None
    points_total: Optional[int] = None
    updated_days: Optional[int] = None
    days_requested: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "symbol": self.symbol,
            "action": self.action,
            "timestamp": self.timestamp,
        }
        for key in ("points_merged", "points_total", "updated_days", "days_requested"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data.update(self.extra)
        return data


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
