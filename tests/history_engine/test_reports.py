"""
Status and Export Report Tests.
"""

import json

import pytest

from history_engine.config import DAY_MS
from history_engine.models import FusedPoint, FusedSeries
from history_engine.reports import EXPORT_HEADER, build_status, export_history


JAN_1_2022 = 1640995200000
JAN_1_2024 = 1704067200000


def _series(symbol, starts, price, c=0.85):
    points = [FusedPoint(t=t, p=price, c=c) for t in starts]
    return FusedSeries.build(symbol=symbol, points=points, sources_used=["coingecko"])


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


class TestBuildStatus:
    """Tests for build_status."""

    @pytest.mark.asyncio
    async def test_available_and_missing(self, orchestrator, store):
        series = _series("BTC", [JAN_1_2022, JAN_1_2022 + DAY_MS, JAN_1_2024], 100.0)
        await store.save(series, updated_days=1)

        report = await build_status(orchestrator)

        btc, eth = report["statuses"]
        assert btc["symbol"] == "BTC"
        assert btc["available"] is True
        assert btc["years"] == [2022, 2024]
        assert btc["missing_years"] == [2023]
        assert btc["points"] == 3
        assert btc["from"] == "2022-01-01T00:00:00+00:00"
        assert btc["to"] == "2024-01-01T00:00:00+00:00"
        assert btc["confidence"] == 0.85
        assert btc["sources_used"] == ["coingecko"]
        assert btc["footprint_bytes"] == await store.footprint("BTC")
        assert btc["footprint_bytes"] > 0
        assert btc["updated_days"] == 1
        assert btc["last_updated"] is not None

        assert eth["available"] is False
        assert eth["points"] == 0
        assert eth["from"] is None
        assert "timestamp" in report


class TestExportHistory:
    """Tests for export_history."""

    @pytest.mark.asyncio
    async def test_csv_sorted_by_timestamp(self, orchestrator, store):
        await store.save(_series("BTC", [JAN_1_2024, JAN_1_2024 + 2 * DAY_MS], 42000.5))
        await store.save(_series("ETH", [JAN_1_2024 + DAY_MS], 2200.25, c=0.976))

        csv_text = await export_history(orchestrator, fmt="csv")

        lines = csv_text.strip().split("\n")
        assert lines[0] == ",".join(EXPORT_HEADER) == "Symbol,Date,Timestamp,Price (USD),Confidence"
        assert lines[1:] == [
            "BTC,2024-01-01,1704067200000,42000.5,0.85",
            "ETH,2024-01-02,1704153600000,2200.25,0.976",
            "BTC,2024-01-03,1704240000000,42000.5,0.85",
        ]

    @pytest.mark.asyncio
    async def test_json(self, orchestrator, store):
        await store.save(_series("BTC", [JAN_1_2024], 42000.5))

        data = json.loads(await export_history(orchestrator, fmt="json"))

        assert data["total_points"] == 1
        assert data["symbols"] == ["BTC", "ETH"]
        assert data["data"] == [{
            "symbol": "BTC",
            "date": "2024-01-01",
            "timestamp": JAN_1_2024,
            "price": 42000.5,
            "confidence": 0.85,
        }]

    @pytest.mark.asyncio
    async def test_empty_csv(self, orchestrator):
        assert await export_history(orchestrator) == "Symbol,Date,Timestamp,Price (USD),Confidence\n"

    @pytest.mark.asyncio
    async def test_unknown_format(self, orchestrator):
        with pytest.raises(ValueError):
            await export_history(orchestrator, fmt="xml")
