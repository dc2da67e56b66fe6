"""
History Engine - Outlier sanitizer.

Per-source, pre-fusion filter based on the Median Absolute Deviation:

    median = median(prices)
    MAD    = median(|price - median|)
    keep   median - k*MAD <= price <= median + k*MAD

with k = 6, which is wider than a 3-sigma rule so real volatility
survives. A MAD of zero collapses the bounds onto the median.
"""

import logging
from statistics import median
from typing import Optional

from history_engine.config import MAD_MULTIPLIER
from history_engine.models import NormalizedPoint


logger = logging.getLogger(__name__)


def mad_bounds(
    prices: list[float],
    multiplier: float = MAD_MULTIPLIER,
) -> Optional[tuple[float, float]]:
    """(lower, upper) acceptance bounds, or None for no prices."""
    if not prices:
        return None
    center = median(prices)
    mad = median(abs(price - center) for price in prices)
    threshold = multiplier * mad
    return center - threshold, center + threshold


def sanitize_points(
    points: list[NormalizedPoint],
    multiplier: float = MAD_MULTIPLIER,
    source_name: str = "",
) -> list[NormalizedPoint]:
    """Drop points outside the MAD bounds; preserves input order."""
    positive = [point for point in points if point.p > 0]
    bounds = mad_bounds([point.p for point in positive], multiplier)
    if bounds is None:
        return []

    lower, upper = bounds
    kept = [point for point in positive if lower <= point.p <= upper]

    removed = len(points) - len(kept)
    if removed:
        logger.info(
            f"[{source_name or 'source'}] Removed {removed} outliers "
            f"outside [{lower:.6g}, {upper:.6g}]"
        )
    return kept
