"""
History Source Model Tests.

Typed parsing at the provider boundary and the tagged fetch result.
"""

import math

import pytest

from history_sources.exceptions import FetchError, NoAvailableSourceError, RateLimitError
from history_sources.models import FetchErr, FetchOk, HistoryRequest, RawPoint


class TestRawPointParse:
    """Tests for RawPoint.parse."""

    def test_numeric_values(self):
        point = RawPoint.parse(1704067200000, 42000.5)

        assert point == RawPoint(t=1704067200000, p=42000.5)

    def test_numeric_string_price(self):
        point = RawPoint.parse(1704067200, "0.0812")

        assert point.t == 1704067200
        assert point.p == pytest.approx(0.0812)

    def test_iso_timestamp(self):
        point = RawPoint.parse("2024-01-01T00:00:00Z", 100)

        assert point.t == 1704067200000

    def test_naive_iso_timestamp_is_utc(self):
        point = RawPoint.parse("2024-01-01T00:00:00", 100)

        assert point.t == 1704067200000

    @pytest.mark.parametrize("t,p", [
        (None, 100),
        (1704067200000, None),
        (True, 100),
        (1704067200000, False),
        (1704067200000, "abc"),
        (1704067200000, math.nan),
        (math.inf, 100),
        ("not a date", 100),
    ])
    def test_rejects_malformed(self, t, p):
        with pytest.raises(ValueError):
            RawPoint.parse(t, p)


class TestFetchResult:
    """Tests for the tagged FetchOk / FetchErr result."""

    def test_ok_flag(self):
        ok = FetchOk(source_name="coingecko", points=[RawPoint(t=1, p=1.0)])
        err = FetchErr(source_name="coingecko", reason="timeout")

        assert ok.ok is True
        assert err.ok is False
        assert err.error is None


class TestHistoryRequest:
    """Tests for HistoryRequest validation."""

    def test_full_history(self):
        request = HistoryRequest(provider_id="bitcoin")
        request.validate()

        assert request.is_windowed is False

    def test_windowed(self):
        request = HistoryRequest(provider_id="bitcoin", days=7)
        request.validate()

        assert request.is_windowed is True

    def test_invalid_days(self):
        with pytest.raises(ValueError, match="days"):
            HistoryRequest(provider_id="bitcoin", days=0).validate()

    def test_missing_provider_id(self):
        with pytest.raises(ValueError, match="provider_id"):
            HistoryRequest(provider_id="").validate()


class TestSourceErrors:
    """Tests for the source exception hierarchy."""

    def test_retryable(self):
        assert FetchError("HTTP 503", status_code=503).is_retryable()
        assert FetchError("timed out").is_retryable()
        assert not FetchError("HTTP 404", status_code=404).is_retryable()

    def test_rate_limit_is_fetch_error(self):
        error = RateLimitError("slow down", source_name="binance", retry_after_seconds=3)

        assert isinstance(error, FetchError)
        assert error.status_code == 429
        assert error.retry_after_seconds == 3
        assert str(error) == "RateLimitError: slow down [source=binance]"

    def test_no_available_source_lists_reasons(self):
        error = NoAvailableSourceError(
            message="No source returned data for BTC",
            attempted_sources=["coingecko", "binance"],
            errors={"coingecko": "timeout", "binance": "HTTP 451"},
            symbol="BTC",
        )

        text = str(error)
        assert "coingecko: timeout" in text
        assert "binance: HTTP 451" in text
