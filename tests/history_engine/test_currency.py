"""
Currency Collaborator Tests.
"""

from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from history_engine.currency import CoinGeckoRateProvider, StaticRateProvider
from history_engine.exceptions import UnsupportedCurrencyError


class TestStaticRateProvider:
    """Tests for StaticRateProvider."""

    @pytest.mark.asyncio
    async def test_rates(self):
        provider = StaticRateProvider({"eur": 1.08})

        assert await provider.usd_rate("USD") == 1.0
        assert await provider.usd_rate("usdt") == 1.0
        assert await provider.usd_rate("EUR") == 1.08

    @pytest.mark.asyncio
    async def test_unknown_currency(self):
        with pytest.raises(UnsupportedCurrencyError) as exc_info:
            await StaticRateProvider().usd_rate("GBP")

        assert exc_info.value.currency == "GBP"


class TestCoinGeckoRateProvider:
    """Tests for CoinGeckoRateProvider."""

    @pytest.mark.asyncio
    async def test_usd_never_fetched(self):
        provider = CoinGeckoRateProvider()

        with patch.object(provider, "_fetch_rate", new=AsyncMock()) as fetch_rate:
            assert await provider.usd_rate("USDT") == 1.0

        fetch_rate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_live_rate_cached(self):
        now = [1000.0]
        provider = CoinGeckoRateProvider(cache_seconds=60, clock=lambda: now[0])

        with patch.object(provider, "_fetch_rate", new=AsyncMock(return_value=1.09)) as fetch_rate:
            assert await provider.usd_rate("EUR") == 1.09
            assert await provider.usd_rate("EUR") == 1.09
            assert fetch_rate.await_count == 1

            now[0] += 61
            await provider.usd_rate("EUR")
            assert fetch_rate.await_count == 2

    @pytest.mark.asyncio
    async def test_fallback_on_network_error(self):
        provider = CoinGeckoRateProvider()

        with patch.object(provider, "_fetch_rate", new=AsyncMock(side_effect=aiohttp.ClientError("down"))):
            assert await provider.usd_rate("EUR") == 1.08

    @pytest.mark.asyncio
    async def test_fallback_on_malformed_payload(self):
        provider = CoinGeckoRateProvider(fallback_rates={"GBP": 1.27})

        with patch.object(provider, "_fetch_rate", new=AsyncMock(side_effect=KeyError("gbp"))):
            assert await provider.usd_rate("GBP") == 1.27

    @pytest.mark.asyncio
    async def test_no_fallback_raises(self):
        provider = CoinGeckoRateProvider()

        with patch.object(provider, "_fetch_rate", new=AsyncMock(side_effect=aiohttp.ClientError("down"))):
            with pytest.raises(UnsupportedCurrencyError):
                await provider.usd_rate("JPY")
