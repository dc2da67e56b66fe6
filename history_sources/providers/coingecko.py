"""
CoinGecko History Source - Public API adapter.

Primary (authoritative) provider. Timestamps are epoch milliseconds and
prices are quoted in USD.
"""

import logging
from typing import Any, Optional

import aiohttp

from history_sources.base import BaseHistorySource
from history_sources.exceptions import ParseError
from history_sources.models import HistoryRequest, RawPoint, SourceMetadata


logger = logging.getLogger(__name__)


class CoinGeckoHistorySource(BaseHistorySource):
    """
    CoinGecko public API history source.

    Endpoints used:
    - /coins/{id}/market_chart - price history (days=max or days=N)

    Rate limits:
    - ~10-30 calls/minute on the free tier
    """

    BASE_URL = "https://api.coingecko.com/api/v3"
    SOURCE_NAME = "coingecko"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = BASE_URL,
        timeout: float = BaseHistorySource.DEFAULT_TIMEOUT,
        max_retries: int = BaseHistorySource.MAX_RETRIES,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout, max_retries, session)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return self.SOURCE_NAME

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="CoinGecko",
            currency="USD",
            priority=1,
            is_primary=True,
            base_url=self._base_url,
            documentation_url="https://docs.coingecko.com/reference/coins-id-market-chart",
            tags=["aggregator", "crypto", "primary"],
        )

    async def fetch_raw(self, request: HistoryRequest) -> Any:
        """Fetch market_chart for the requested window."""
        url = f"{self._base_url}/coins/{request.provider_id}/market_chart"
        params = {
            "vs_currency": "usd",
            "days": str(request.days) if request.is_windowed else "max",
        }

        headers = {}
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key

        return await self._make_request("GET", url, params=params, headers=headers or None)

    def parse(self, payload: Any) -> list[RawPoint]:
        """Parse `{"prices": [[ms, price], ...]}`."""
        if not isinstance(payload, dict) or not isinstance(payload.get("prices"), list):
            raise ParseError(
                message="Invalid CoinGecko response: missing 'prices' array",
                source_name=self.name,
            )

        return self._parse_entries(payload["prices"], lambda pair: (pair[0], pair[1]))
