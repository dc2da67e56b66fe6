"""
History Engine - Status and export reports.

============================================================
REPORTS
============================================================
build_status    per-symbol storage status read from metadata
                (years, bounds, confidence, footprint, gaps)
export_history  every stored point of every symbol, ordered
                by timestamp, as CSV or JSON

Both are read-only views over the store.
============================================================
"""

import csv
import io
import json
from datetime import datetime, timezone
from typing import Any, Optional

from history_engine.models import SeriesMetadata
from history_engine.orchestrator import HistoryOrchestrator
from history_engine.store import utc_year


EXPORT_HEADER = ["Symbol", "Date", "Timestamp", "Price (USD)", "Confidence"]
EXPORT_FORMATS = ("csv", "json")


def _iso(timestamp_ms: Optional[int]) -> Optional[str]:
    if not timestamp_ms:
        return None
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


def missing_years(metadata: SeriesMetadata) -> list[int]:
    """Years between the first and last stored day without a chunk."""
    expected = range(utc_year(metadata.from_ts), utc_year(metadata.to_ts) + 1)
    stored = set(metadata.years)
    return [year for year in expected if year not in stored]


def _unavailable(symbol: str) -> dict[str, Any]:
    return {
        "symbol": symbol,
        "available": False,
        "years": [],
        "points": 0,
        "from": None,
        "to": None,
        "confidence": None,
        "sources_used": [],
        "footprint_bytes": 0,
        "missing_years": [],
        "last_updated": None,
        "updated_days": 0,
    }


async def symbol_status(orchestrator: HistoryOrchestrator, symbol: str) -> dict[str, Any]:
    store = orchestrator.store
    metadata = await store.load_metadata(symbol)
    if metadata is None:
        return _unavailable(symbol)

    return {
        "symbol": symbol,
        "available": True,
        "years": list(metadata.years),
        "points": metadata.points,
        "from": _iso(metadata.from_ts),
        "to": _iso(metadata.to_ts),
        "confidence": metadata.confidence,
        "sources_used": list(metadata.sources_used),
        "footprint_bytes": await store.footprint(symbol, metadata),
        "missing_years": missing_years(metadata),
        "last_updated": _iso(metadata.last_updated),
        "updated_days": metadata.updated_days,
    }


async def build_status(orchestrator: HistoryOrchestrator) -> dict[str, Any]:
    """
    Storage status of every configured symbol.

    Returns:
        {"timestamp": ISO now, "statuses": [per-symbol dict, ...]}
    """
    statuses = [
        await symbol_status(orchestrator, symbol)
        for symbol in orchestrator.list_symbols()
    ]
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "statuses": statuses,
    }


async def collect_rows(orchestrator: HistoryOrchestrator) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for symbol in orchestrator.list_symbols():
        series = await orchestrator.load_history(symbol)
        if series is None:
            continue
        for point in series.points:
            rows.append({
                "symbol": symbol,
                "date": datetime.fromtimestamp(point.t / 1000, tz=timezone.utc).date().isoformat(),
                "timestamp": point.t,
                "price": point.p,
                "confidence": point.c,
            })
    rows.sort(key=lambda row: row["timestamp"])
    return rows


async def export_history(orchestrator: HistoryOrchestrator, fmt: str = "csv") -> str:
    """
    Export all stored points of all symbols.

    Args:
        orchestrator: Orchestrator whose store is read
        fmt: "csv" or "json"

    Raises:
        ValueError: Unknown format
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format '{fmt}', expected one of {EXPORT_FORMATS}")

    rows = await collect_rows(orchestrator)

    if fmt == "json":
        return json.dumps({
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "total_points": len(rows),
            "symbols": orchestrator.list_symbols(),
            "data": rows,
        }, indent=2)

    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(EXPORT_HEADER)
    for row in rows:
        writer.writerow([row["symbol"], row["date"], row["timestamp"], row["price"], row["confidence"]])
    return output.getvalue()
