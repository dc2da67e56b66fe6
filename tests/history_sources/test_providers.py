"""
History Provider Tests.

============================================================
PURPOSE
============================================================
Payload parsing, request building and the never-raising
fetch() contract of the bundled providers. The network seam
(_make_request / fetch_raw) is replaced with AsyncMock.

============================================================
"""

from unittest.mock import AsyncMock, patch

import pytest

from history_sources.exceptions import FetchError, ParseError
from history_sources.models import FetchErr, FetchOk, HistoryRequest, RawPoint, SourceStatus
from history_sources.providers import (
    BinanceHistorySource,
    CoinGeckoHistorySource,
    CryptoCompareHistorySource,
)


# ============================================================
# COINGECKO
# ============================================================

class TestCoinGeckoHistorySource:
    """Tests for CoinGeckoHistorySource."""

    def test_metadata(self):
        source = CoinGeckoHistorySource()
        meta = source.metadata()

        assert source.name == "coingecko"
        assert meta.currency == "USD"
        assert meta.priority == 1
        assert meta.is_primary is True

    def test_parse_prices(self):
        source = CoinGeckoHistorySource()
        payload = {"prices": [[1704067200000, 42000.1], [1704153600000, 42500.9]]}

        points = source.parse(payload)

        assert points == [
            RawPoint(t=1704067200000, p=42000.1),
            RawPoint(t=1704153600000, p=42500.9),
        ]

    def test_parse_skips_malformed_entries(self):
        source = CoinGeckoHistorySource()
        payload = {"prices": [[1704067200000, 42000.1], [1704153600000], ["x", 1], None]}

        points = source.parse(payload)

        assert len(points) == 1

    def test_parse_rejects_bad_shape(self):
        source = CoinGeckoHistorySource()

        with pytest.raises(ParseError):
            source.parse({"error": "coin not found"})

    @pytest.mark.asyncio
    async def test_fetch_raw_full_history_params(self):
        source = CoinGeckoHistorySource(api_key="demo-key")

        with patch.object(source, "_make_request", new=AsyncMock(return_value={"prices": []})) as request:
            await source.fetch_raw(HistoryRequest(provider_id="bitcoin"))

        args, kwargs = request.call_args
        assert args[1].endswith("/coins/bitcoin/market_chart")
        assert kwargs["params"] == {"vs_currency": "usd", "days": "max"}
        assert kwargs["headers"] == {"x-cg-demo-api-key": "demo-key"}

    @pytest.mark.asyncio
    async def test_fetch_raw_windowed_params(self):
        source = CoinGeckoHistorySource()

        with patch.object(source, "_make_request", new=AsyncMock(return_value={"prices": []})) as request:
            await source.fetch_raw(HistoryRequest(provider_id="bitcoin", days=7))

        assert request.call_args.kwargs["params"]["days"] == "7"
        assert request.call_args.kwargs["headers"] is None


# ============================================================
# CRYPTOCOMPARE
# ============================================================

class TestCryptoCompareHistorySource:
    """Tests for CryptoCompareHistorySource."""

    def test_quote_currency_is_source_currency(self):
        source = CryptoCompareHistorySource(quote_currency="eur")

        assert source.currency == "EUR"
        assert source.metadata().priority == 2

    def test_parse_histoday(self):
        source = CryptoCompareHistorySource()
        payload = {"Response": "Success", "Data": {"Data": [
            {"time": 1704067200, "close": 42000.0},
            {"time": 1704153600, "close": "42500.5"},
            {"time": 1704240000},
        ]}}

        points = source.parse(payload)

        assert points == [
            RawPoint(t=1704067200, p=42000.0),
            RawPoint(t=1704153600, p=42500.5),
        ]

    def test_parse_rejects_bad_shape(self):
        source = CryptoCompareHistorySource()

        with pytest.raises(ParseError):
            source.parse({"Data": []})

    @pytest.mark.asyncio
    async def test_in_band_error_becomes_fetch_err_without_retry(self):
        source = CryptoCompareHistorySource()
        error_payload = {"Response": "Error", "Message": "fsym is not valid"}

        with patch.object(source, "_make_request", new=AsyncMock(return_value=error_payload)) as request:
            result = await source.fetch(HistoryRequest(provider_id="NOPE"))

        assert isinstance(result, FetchErr)
        assert "fsym is not valid" in result.reason
        assert request.await_count == 1

    @pytest.mark.asyncio
    async def test_windowed_params(self):
        source = CryptoCompareHistorySource(quote_currency="EUR")
        payload = {"Data": {"Data": []}}

        with patch.object(source, "_make_request", new=AsyncMock(return_value=payload)) as request:
            await source.fetch_raw(HistoryRequest(provider_id="btc", days=30))

        params = request.call_args.kwargs["params"]
        assert params == {"fsym": "BTC", "tsym": "EUR", "limit": 30}


# ============================================================
# BINANCE
# ============================================================

class TestBinanceHistorySource:
    """Tests for BinanceHistorySource."""

    def test_metadata(self):
        source = BinanceHistorySource()

        assert source.currency == "USDT"
        assert source.metadata().priority == 3

    def test_parse_uses_close_price(self):
        source = BinanceHistorySource()
        payload = [[1704067200000, "42000", "43000", "41000", "42800.5", "1000"]]

        assert source.parse(payload) == [RawPoint(t=1704067200000, p=42800.5)]

    def test_parse_rejects_bad_shape(self):
        source = BinanceHistorySource()

        with pytest.raises(ParseError):
            source.parse({"code": -1121, "msg": "Invalid symbol."})

    @pytest.mark.asyncio
    async def test_windowed_request(self):
        source = BinanceHistorySource()

        with patch.object(source, "_make_request", new=AsyncMock(return_value=[])) as request:
            await source.fetch_raw(HistoryRequest(provider_id="btcusdt", days=7))

        params = request.call_args.kwargs["params"]
        assert params["symbol"] == "BTCUSDT"
        assert params["interval"] == "1d"
        assert params["limit"] == 8
        assert params["startTime"] > 0

    @pytest.mark.asyncio
    async def test_full_history_paginates(self):
        source = BinanceHistorySource()
        day = 86_400_000
        first_page = [[i * day, "1", "1", "1", "1"] for i in range(source.PAGE_LIMIT)]
        second_page = [[(source.PAGE_LIMIT + i) * day, "2", "2", "2", "2"] for i in range(3)]

        with patch.object(
            source, "_make_request", new=AsyncMock(side_effect=[first_page, second_page])
        ) as request:
            klines = await source.fetch_raw(HistoryRequest(provider_id="BTCUSDT"))

        assert len(klines) == source.PAGE_LIMIT + 3
        assert request.await_count == 2
        second_params = request.call_args_list[1].kwargs["params"]
        assert second_params["startTime"] == source.PAGE_LIMIT * day


# ============================================================
# FETCH CONTRACT
# ============================================================

class TestFetchContract:
    """fetch() never raises and tracks health."""

    @pytest.mark.asyncio
    async def test_ok_result(self):
        source = CoinGeckoHistorySource()
        payload = {"prices": [[1704067200000, 42000.0]]}

        with patch.object(source, "fetch_raw", new=AsyncMock(return_value=payload)):
            result = await source.fetch(HistoryRequest(provider_id="bitcoin"))

        assert isinstance(result, FetchOk)
        assert result.points == [RawPoint(t=1704067200000, p=42000.0)]
        assert source.get_health().status == SourceStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_empty_response_is_err(self):
        source = CoinGeckoHistorySource()

        with patch.object(source, "fetch_raw", new=AsyncMock(return_value={"prices": []})):
            result = await source.fetch(HistoryRequest(provider_id="bitcoin"))

        assert isinstance(result, FetchErr)
        assert result.reason == "empty response"

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        source = CoinGeckoHistorySource(max_retries=3)
        error = FetchError("HTTP 404", source_name="coingecko", status_code=404)

        with patch.object(source, "fetch_raw", new=AsyncMock(side_effect=error)) as fetch_raw:
            result = await source.fetch(HistoryRequest(provider_id="nope"))

        assert isinstance(result, FetchErr)
        assert result.error is error
        assert fetch_raw.await_count == 1
        assert source.get_health().error_count == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        source = CoinGeckoHistorySource(max_retries=2)
        payload = {"prices": [[1704067200000, 42000.0]]}
        fetch_raw = AsyncMock(side_effect=[FetchError("HTTP 503", status_code=503), payload])

        with patch.object(source, "fetch_raw", new=fetch_raw), \
             patch("history_sources.base.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await source.fetch(HistoryRequest(provider_id="bitcoin"))

        assert isinstance(result, FetchOk)
        assert fetch_raw.await_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_err(self):
        source = CoinGeckoHistorySource()

        with patch.object(source, "fetch_raw", new=AsyncMock(side_effect=RuntimeError("boom"))):
            result = await source.fetch(HistoryRequest(provider_id="bitcoin"))

        assert isinstance(result, FetchErr)
        assert "boom" in result.reason

    @pytest.mark.asyncio
    async def test_unavailable_after_repeated_failures(self):
        source = CoinGeckoHistorySource(max_retries=1)
        error = FetchError("HTTP 404", status_code=404)

        with patch.object(source, "fetch_raw", new=AsyncMock(side_effect=error)):
            for _ in range(source.UNAVAILABLE_THRESHOLD):
                await source.fetch(HistoryRequest(provider_id="bitcoin"))

        assert source.get_health().status == SourceStatus.UNAVAILABLE
        assert source.is_usable() is False
        assert len(source.get_incidents()) == source.UNAVAILABLE_THRESHOLD
