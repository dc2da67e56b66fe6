"""
History Engine - Currency conversion collaborator.

Converts provider quote currencies to USD. USD passes through, USDT is
treated 1:1 with USD, and other fiat currencies are priced from a
reference asset quoted in both USD and the fiat on CoinGecko. Any
failure falls back to a hard-coded rate table.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Mapping, Optional

import aiohttp

from history_engine.exceptions import UnsupportedCurrencyError


logger = logging.getLogger(__name__)

USD_EQUIVALENTS = frozenset({"USD", "USDT"})


class UsdRateProvider(ABC):
    """Source of `1 unit of currency = rate USD`."""

    @abstractmethod
    async def usd_rate(self, currency: str) -> float:
        """
        Rate that converts `currency` prices to USD.

        Raises:
            UnsupportedCurrencyError: No live or fallback rate exists
        """
        pass


class StaticRateProvider(UsdRateProvider):
    """Fixed rate table; used offline and in tests."""

    def __init__(self, rates: Optional[Mapping[str, float]] = None) -> None:
        self._rates = {k.upper(): v for k, v in (rates or {}).items()}

    async def usd_rate(self, currency: str) -> float:
        code = currency.upper()
        if code in USD_EQUIVALENTS:
            return 1.0
        if code not in self._rates:
            raise UnsupportedCurrencyError(code)
        return self._rates[code]


class CoinGeckoRateProvider(UsdRateProvider):
    """
    Live fiat rates derived from CoinGecko simple/price.

    rate(EUR) = reference_usd / reference_eur for the reference asset.
    Successful rates are cached for `cache_seconds`.
    """

    BASE_URL = "https://api.coingecko.com/api/v3"
    REFERENCE_ASSET = "ethereum"

    def __init__(
        self,
        fallback_rates: Optional[Mapping[str, float]] = None,
        cache_seconds: float = 3600.0,
        timeout: float = 5.0,
        base_url: str = BASE_URL,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fallback = {k.upper(): v for k, v in (fallback_rates or {"EUR": 1.08}).items()}
        self._cache_seconds = cache_seconds
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._clock = clock
        self._cache: dict[str, tuple[float, float]] = {}

    async def usd_rate(self, currency: str) -> float:
        code = currency.upper()
        if code in USD_EQUIVALENTS:
            return 1.0

        cached = self._cache.get(code)
        if cached and self._clock() - cached[1] < self._cache_seconds:
            return cached[0]

        try:
            rate = await self._fetch_rate(code)
            self._cache[code] = (rate, self._clock())
            return rate
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, TypeError, ValueError) as e:
            if code not in self._fallback:
                raise UnsupportedCurrencyError(code)
            logger.warning(
                f"Failed to fetch {code}/USD rate, using fallback {self._fallback[code]}: {e}"
            )
            return self._fallback[code]

    async def _fetch_rate(self, code: str) -> float:
        fiat = code.lower()
        url = f"{self._base_url}/simple/price"
        params = {"ids": self.REFERENCE_ASSET, "vs_currencies": f"usd,{fiat}"}

        session = self._session
        owns_session = session is None
        if owns_session:
            session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
        try:
            async with session.get(url, params=params) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        finally:
            if owns_session:
                await session.close()

        quote = data[self.REFERENCE_ASSET]
        usd = float(quote["usd"])
        other = float(quote[fiat])
        if usd <= 0 or other <= 0:
            raise ValueError(f"non-positive reference price: usd={usd} {fiat}={other}")
        return usd / other
