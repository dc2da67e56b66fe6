"""
History Engine - Per-source preparation.

normalize -> sanitize -> one point per day, applied to each source
before fusion.
"""

from typing import Iterable

from history_engine.config import MAD_MULTIPLIER
from history_engine.models import SourcePoints
from history_engine.normalizer import PointNormalizer, dedupe_by_day
from history_engine.sanitizer import sanitize_points
from history_sources.models import RawPoint


async def prepare_source(
    name: str,
    raw_points: Iterable[RawPoint],
    currency: str,
    normalizer: PointNormalizer,
    mad_multiplier: float = MAD_MULTIPLIER,
) -> SourcePoints:
    normalized = await normalizer.normalize(raw_points, currency)
    sanitized = sanitize_points(normalized, mad_multiplier, source_name=name)
    return SourcePoints(name=name, points=dedupe_by_day(sanitized))
