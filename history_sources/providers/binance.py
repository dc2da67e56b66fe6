"""
Binance History Source - Public spot API adapter.

Daily klines quoted in USDT, which downstream treats 1:1 with USD.
Timestamps are epoch milliseconds (kline open time).
"""

import logging
import time
from typing import Any, Optional

import aiohttp

from history_sources.base import BaseHistorySource
from history_sources.exceptions import ParseError
from history_sources.models import HistoryRequest, RawPoint, SourceMetadata


logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


class BinanceHistorySource(BaseHistorySource):
    """
    Binance spot public API history source.

    Endpoints used:
    - /api/v3/klines - 1d candles, at most 1000 per call

    Full history is paged forward from the listing date until a short
    page is returned or MAX_PAGES is reached.
    """

    BASE_URL = "https://api.binance.com"
    SOURCE_NAME = "binance"
    PAGE_LIMIT = 1000
    MAX_PAGES = 10

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = BaseHistorySource.DEFAULT_TIMEOUT,
        max_retries: int = BaseHistorySource.MAX_RETRIES,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout, max_retries, session)
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return self.SOURCE_NAME

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Binance Spot",
            currency="USDT",
            priority=3,
            base_url=self._base_url,
            documentation_url="https://developers.binance.com/docs/binance-spot-api-docs/rest-api",
            tags=["exchange", "crypto", "binance"],
        )

    async def fetch_raw(self, request: HistoryRequest) -> Any:
        url = f"{self._base_url}/api/v3/klines"
        symbol = request.provider_id.upper()

        if request.is_windowed:
            params = {
                "symbol": symbol,
                "interval": "1d",
                "startTime": int(time.time() * 1000) - request.days * DAY_MS,
                "limit": min(request.days + 1, self.PAGE_LIMIT),
            }
            return await self._make_request("GET", url, params=params)

        klines: list[Any] = []
        start_time = 0
        for _ in range(self.MAX_PAGES):
            params = {
                "symbol": symbol,
                "interval": "1d",
                "startTime": start_time,
                "limit": self.PAGE_LIMIT,
            }
            page = await self._make_request("GET", url, params=params)
            if not isinstance(page, list) or not page:
                break
            klines.extend(page)
            if len(page) < self.PAGE_LIMIT:
                break
            start_time = int(page[-1][0]) + DAY_MS

        return klines

    def parse(self, payload: Any) -> list[RawPoint]:
        """Parse `[[open_time, open, high, low, close, ...], ...]` using close."""
        if not isinstance(payload, list):
            raise ParseError(
                message="Invalid Binance response: expected kline array",
                source_name=self.name,
            )

        return self._parse_entries(payload, lambda kline: (kline[0], kline[4]))
