"""
History Engine - Point normalizer.

Converts provider-native RawPoints to NormalizedPoints:
1. Timestamps: seconds -> milliseconds, then truncated to UTC midnight
2. Prices: converted to USD via the rate provider
3. Non-positive prices are dropped

Every source is normalized before any cross-source comparison.
"""

import logging
from typing import Iterable

from history_engine.config import DAY_MS, SECONDS_THRESHOLD
from history_engine.currency import USD_EQUIVALENTS, UsdRateProvider
from history_engine.models import NormalizedPoint
from history_sources.models import RawPoint


logger = logging.getLogger(__name__)


def to_milliseconds(timestamp: int) -> int:
    """Values below the 10-billion threshold are epoch seconds."""
    return timestamp * 1000 if timestamp < SECONDS_THRESHOLD else timestamp


def normalize_timestamp(timestamp: int) -> int:
    """Epoch seconds or ms -> ms at UTC midnight of that day."""
    ms = to_milliseconds(int(timestamp))
    return ms - ms % DAY_MS


def dedupe_by_day(points: Iterable[NormalizedPoint]) -> list[NormalizedPoint]:
    """One point per day, last value wins, ascending by day."""
    by_day: dict[int, float] = {}
    for point in points:
        by_day[point.t] = point.p
    return [NormalizedPoint(t=t, p=p) for t, p in sorted(by_day.items())]


class PointNormalizer:
    """Timestamp and currency normalization for one source's points."""

    def __init__(self, rate_provider: UsdRateProvider) -> None:
        self._rates = rate_provider

    async def normalize(
        self,
        raw_points: Iterable[RawPoint],
        currency: str = "USD",
    ) -> list[NormalizedPoint]:
        """
        Normalize raw points quoted in `currency`.

        Output is ordered by the original instant, so a later
        same-day observation follows an earlier one.

        Raises:
            UnsupportedCurrencyError: No USD rate for `currency`
        """
        code = currency.upper()
        rate = 1.0 if code in USD_EQUIVALENTS else await self._rates.usd_rate(code)

        ordered = sorted(raw_points, key=lambda raw: to_milliseconds(raw.t))
        normalized = [
            NormalizedPoint(t=normalize_timestamp(raw.t), p=raw.p * rate)
            for raw in ordered
        ]

        kept = [point for point in normalized if point.p > 0]
        dropped = len(normalized) - len(kept)
        if dropped:
            logger.debug(f"Dropped {dropped} non-positive prices")
        if rate != 1.0:
            logger.debug(f"Converted {len(kept)} prices from {code} at {rate:.4f}")
        return kept
