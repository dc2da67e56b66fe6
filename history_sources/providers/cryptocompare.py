"""
CryptoCompare History Source - Public API adapter.

Daily OHLCV from /data/v2/histoday. Timestamps are epoch seconds. The
quote currency is configurable, so prices may arrive in EUR or another
fiat and must be converted downstream.
"""

import logging
from typing import Any, Optional

import aiohttp

from history_sources.base import BaseHistorySource
from history_sources.exceptions import FetchError, ParseError
from history_sources.models import HistoryRequest, RawPoint, SourceMetadata


logger = logging.getLogger(__name__)


class CryptoCompareHistorySource(BaseHistorySource):
    """
    CryptoCompare min-api history source.

    Endpoints used:
    - /data/v2/histoday - daily candles (allData=true or limit=N)
    """

    BASE_URL = "https://min-api.cryptocompare.com"
    SOURCE_NAME = "cryptocompare"

    def __init__(
        self,
        quote_currency: str = "USD",
        api_key: Optional[str] = None,
        base_url: str = BASE_URL,
        timeout: float = BaseHistorySource.DEFAULT_TIMEOUT,
        max_retries: int = BaseHistorySource.MAX_RETRIES,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout, max_retries, session)
        self._quote_currency = quote_currency.upper()
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return self.SOURCE_NAME

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="CryptoCompare",
            currency=self._quote_currency,
            priority=2,
            base_url=self._base_url,
            documentation_url="https://min-api.cryptocompare.com/documentation",
            tags=["aggregator", "crypto"],
        )

    async def fetch_raw(self, request: HistoryRequest) -> Any:
        url = f"{self._base_url}/data/v2/histoday"
        params: dict[str, Any] = {
            "fsym": request.provider_id.upper(),
            "tsym": self._quote_currency,
        }
        if request.is_windowed:
            params["limit"] = request.days
        else:
            params["allData"] = "true"

        headers = {}
        if self._api_key:
            headers["authorization"] = f"Apikey {self._api_key}"

        data = await self._make_request("GET", url, params=params, headers=headers or None)

        # Errors are reported in-band with HTTP 200
        if isinstance(data, dict) and data.get("Response") == "Error":
            raise FetchError(
                message=data.get("Message") or "CryptoCompare API error",
                source_name=self.name,
                status_code=400,
                request_url=url,
            )
        return data

    def parse(self, payload: Any) -> list[RawPoint]:
        """Parse `{"Data": {"Data": [{"time": s, "close": p}, ...]}}`."""
        inner = payload.get("Data") if isinstance(payload, dict) else None
        entries = inner.get("Data") if isinstance(inner, dict) else None
        if not isinstance(entries, list):
            raise ParseError(
                message="Invalid CryptoCompare response: missing Data.Data array",
                source_name=self.name,
            )

        return self._parse_entries(entries, lambda item: (item["time"], item["close"]))
