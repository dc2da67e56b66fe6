"""
History Source Models - Typed values at the provider boundary.

Provider payloads are loosely typed JSON. Every adapter converts them
into RawPoint values here, and reports the outcome of a fetch as either
FetchOk or FetchErr so the fallback policy is visible in the types.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class SourceStatus(Enum):
    """Health status of a history source."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RawPoint:
    """
    One provider observation in provider-native units.

    `t` may be epoch seconds or epoch milliseconds; `p` may be quoted in
    a currency other than USD. Nothing is normalized at this stage.
    """
    t: int
    p: float

    @classmethod
    def parse(cls, t: Any, p: Any) -> "RawPoint":
        """
        Build a RawPoint from untyped payload values.

        Accepts numeric timestamps or ISO-8601 strings and numeric or
        numeric-string prices.

        Raises:
            ValueError: If either value is missing, non-numeric or non-finite
        """
        if isinstance(t, bool) or isinstance(p, bool):
            raise ValueError("boolean is not a valid timestamp or price")

        if isinstance(t, str):
            parsed = datetime.fromisoformat(t.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            timestamp = int(parsed.timestamp() * 1000)
        elif isinstance(t, (int, float)):
            if not math.isfinite(t):
                raise ValueError(f"non-finite timestamp: {t!r}")
            timestamp = int(t)
        else:
            raise ValueError(f"invalid timestamp: {t!r}")

        if isinstance(p, str):
            price = float(p)
        elif isinstance(p, (int, float)):
            price = float(p)
        else:
            raise ValueError(f"invalid price: {p!r}")

        if not math.isfinite(price):
            raise ValueError(f"non-finite price: {p!r}")

        return cls(t=timestamp, p=price)


@dataclass(frozen=True)
class FetchOk:
    """Successful fetch with at least one point."""
    source_name: str
    points: list[RawPoint]
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class FetchErr:
    """Failed fetch; the caller should move on to the next source."""
    source_name: str
    reason: str
    error: Optional[Exception] = None
    ok: bool = field(default=False, init=False)


FetchResult = Union[FetchOk, FetchErr]


@dataclass
class HistoryRequest:
    """Request parameters for fetching daily history."""
    provider_id: str
    days: Optional[int] = None

    def validate(self) -> None:
        """Validate request parameters."""
        if not self.provider_id:
            raise ValueError("provider_id is required")
        if self.days is not None and self.days < 1:
            raise ValueError("days must be >= 1 when given")

    @property
    def is_windowed(self) -> bool:
        return self.days is not None


@dataclass
class SourceHealth:
    """Health status of a history source."""
    status: SourceStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    uptime_percentage: float = 100.0

    def is_healthy(self) -> bool:
        return self.status == SourceStatus.HEALTHY

    def is_usable(self) -> bool:
        """Check if source can still be used (healthy, degraded or not yet checked)."""
        return self.status != SourceStatus.UNAVAILABLE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "uptime_percentage": self.uptime_percentage,
        }


@dataclass
class SourceMetadata:
    """Metadata about a history provider."""
    name: str
    display_name: str
    currency: str = "USD"
    priority: int = 0  # Lower = tried first
    is_primary: bool = False
    base_url: str = ""
    documentation_url: str = ""
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "display_name": self.display_name,
            "currency": self.currency,
            "priority": self.priority,
            "is_primary": self.is_primary,
            "base_url": self.base_url,
            "documentation_url": self.documentation_url,
            "tags": self.tags,
        }


@dataclass
class SourceIncident:
    """Record of a history source incident."""
    source_name: str
    incident_type: str
    timestamp: datetime
    error_message: str
    request_params: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source_name": self.source_name,
            "incident_type": self.incident_type,
            "timestamp": self.timestamp.isoformat(),
            "error_message": self.error_message,
            "request_params": self.request_params,
        }
