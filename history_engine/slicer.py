"""
History Engine - Range slicer.

Read-only windowing over an in-memory series.
"""

import dataclasses
from typing import Optional, Union

from history_engine.models import FusedSeries, RangeWindow, now_ms


def parse_window(window: Union[str, RangeWindow]) -> RangeWindow:
    if isinstance(window, RangeWindow):
        return window
    try:
        return RangeWindow(window)
    except ValueError:
        valid = ", ".join(w.value for w in RangeWindow)
        raise ValueError(f"Invalid range '{window}', expected one of: {valid}")


def slice_range(
    series: FusedSeries,
    window: Union[str, RangeWindow],
    now: Optional[int] = None,
) -> FusedSeries:
    """
    Points with t >= now - window.

    `all` returns the series itself. When no point falls inside the
    window the original series is returned unfiltered.
    """
    duration = parse_window(window).duration_ms
    if duration is None:
        return series

    cutoff = (now if now is not None else now_ms()) - duration
    filtered = [point for point in series.points if point.t >= cutoff]

    if not filtered or len(filtered) == len(series.points):
        return series

    return dataclasses.replace(
        series,
        from_ts=filtered[0].t,
        to_ts=filtered[-1].t,
        points=filtered,
    )
