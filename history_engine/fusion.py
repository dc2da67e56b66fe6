"""
History Engine - Fusion engine.

============================================================
ALGORITHM
============================================================
Input: one SourcePoints per source, already normalized,
sanitized and reduced to one point per day.

1. The primary source's days form the base date set
2. Per day, candidates are the primary price (weight 1.0) plus
   any secondary price for the same day within 10% of the
   primary (weight 0.5); farther secondaries are excluded
3. Fused price = weighted mean of the candidates
4. Point confidence = 0.85 for a single candidate, otherwise
   clamp(1 - stddev/fused, 0, 1), stddev taken around the
   weighted fused price
5. Without a primary source, the first non-empty source is
   used directly at a flat 0.85 confidence
6. Series confidence = mean point confidence

============================================================
"""

import logging
import math
from typing import Optional, Sequence

from history_engine.config import FusionPolicy
from history_engine.exceptions import FusionError
from history_engine.models import FusedPoint, FusedSeries, SourcePoints


logger = logging.getLogger(__name__)


class FusionEngine:
    """Reconciles per-source daily points into one FusedSeries."""

    def __init__(self, policy: Optional[FusionPolicy] = None) -> None:
        self._policy = policy or FusionPolicy()

    @property
    def policy(self) -> FusionPolicy:
        return self._policy

    def fuse(self, symbol: str, sources: Sequence[SourcePoints]) -> FusedSeries:
        """
        Fuse sources into a canonical series.

        Args:
            symbol: Canonical symbol of the series
            sources: Per-source points, in priority order

        Raises:
            FusionError: No source has any points
        """
        valid = [source for source in sources if source.points]
        if not valid:
            raise FusionError("No valid sources provided", symbol=symbol)

        primary = next(
            (source for source in valid if source.name == self._policy.primary_source),
            None,
        )

        if primary is None:
            series = self._single_source(symbol, valid[0])
        else:
            secondaries = [source for source in valid if source is not primary]
            series = self._weighted(symbol, primary, secondaries)

        self._log_summary(series)
        return series

    def _single_source(self, symbol: str, source: SourcePoints) -> FusedSeries:
        confidence = self._policy.single_source_confidence
        logger.info(f"[{symbol}] No primary source, using {source.name} directly")
        return FusedSeries.build(
            symbol=symbol,
            points=[FusedPoint(t=p.t, p=p.p, c=confidence) for p in source.points],
            sources_used=[source.name],
            confidence=confidence,
        )

    def _weighted(
        self,
        symbol: str,
        primary: SourcePoints,
        secondaries: list[SourcePoints],
    ) -> FusedSeries:
        policy = self._policy
        secondary_days = [(source.name, source.by_day()) for source in secondaries]

        fused: list[FusedPoint] = []
        contributors: set[str] = set()
        rejected = 0

        for day, primary_price in primary.by_day().items():
            candidates = [(primary_price, policy.primary_weight)]
            contributors.add(primary.name)

            for name, prices in secondary_days:
                price = prices.get(day)
                if price is None:
                    continue
                if abs(price - primary_price) / primary_price < policy.deviation_gate:
                    candidates.append((price, policy.secondary_weight))
                    contributors.add(name)
                else:
                    rejected += 1

            total_weight = sum(weight for _, weight in candidates)
            fused_price = sum(price * weight for price, weight in candidates) / total_weight

            fused.append(FusedPoint(
                t=day,
                p=fused_price,
                c=round(self._point_confidence([price for price, _ in candidates], fused_price), 3),
            ))

        if rejected:
            logger.info(f"[{symbol}] Excluded {rejected} secondary prices outside the deviation gate")

        return FusedSeries.build(symbol=symbol, points=fused, sources_used=contributors)

    def _point_confidence(self, prices: list[float], fused_price: float) -> float:
        if len(prices) == 1:
            return self._policy.single_source_confidence
        if fused_price <= 0:
            return 0.0
        variance = math.fsum((price - fused_price) ** 2 for price in prices) / len(prices)
        return max(0.0, min(1.0, 1 - math.sqrt(variance) / fused_price))

    def _log_summary(self, series: FusedSeries) -> None:
        prices = [point.p for point in series.points]
        latest = series.points[-1]
        logger.info(
            f"[{series.symbol}] Fused {len(series.points)} points from {series.sources_used}, "
            f"range ${min(prices):.2f}-${max(prices):.2f}, latest ${latest.p:.2f} at {latest.t}, "
            f"confidence {series.confidence}"
        )
