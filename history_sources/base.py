"""
Base History Source - Abstract interface for all daily price providers.

All providers MUST implement this interface to ensure:
- Isolation
- Replaceability
- Fail-safety (fetch() never raises)
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import aiohttp

from history_sources.exceptions import (
    FetchError,
    HistorySourceError,
    ParseError,
    RateLimitError,
)
from history_sources.models import (
    FetchErr,
    FetchOk,
    FetchResult,
    HistoryRequest,
    RawPoint,
    SourceHealth,
    SourceIncident,
    SourceMetadata,
    SourceStatus,
)


logger = logging.getLogger(__name__)


class BaseHistorySource(ABC):
    """
    Abstract base class for all history sources.

    Each source implementation must:
    1. Implement fetch_raw() - Get the raw payload from the provider
    2. Implement parse() - Convert the payload to RawPoint values
    3. Implement metadata() - Return provider metadata

    Features:
    - Per-source request timeout
    - Retry with exponential backoff on server errors
    - Rate limiting protection
    - Health tracking and incident logging
    """

    DEFAULT_TIMEOUT = 8.0
    MAX_RETRIES = 2
    RETRY_BACKOFF_BASE = 2.0
    DEGRADED_THRESHOLD = 3  # consecutive failures before degraded
    UNAVAILABLE_THRESHOLD = 5  # consecutive failures before unavailable

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._session = session
        self._owns_session = session is None

        self._health = SourceHealth(
            status=SourceStatus.UNKNOWN,
            last_check=datetime.now(timezone.utc),
        )
        self._last_successful_request: Optional[datetime] = None
        self._request_count = 0
        self._success_count = 0
        self._error_count = 0

        self._incidents: list[SourceIncident] = []
        self._max_incidents = 100

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this source."""
        pass

    @abstractmethod
    async def fetch_raw(self, request: HistoryRequest) -> Any:
        """
        Fetch the raw payload from the provider API.

        Raises:
            FetchError: If the request fails
        """
        pass

    @abstractmethod
    def parse(self, payload: Any) -> list[RawPoint]:
        """
        Convert a provider payload into RawPoint values.

        Raises:
            ParseError: If the payload does not have the expected shape
        """
        pass

    @abstractmethod
    def metadata(self) -> SourceMetadata:
        """Return provider metadata."""
        pass

    @property
    def currency(self) -> str:
        return self.metadata().currency

    async def fetch(self, request: HistoryRequest) -> FetchResult:
        """
        Fetch and parse daily history (main entry point).

        Returns:
            FetchOk with at least one point, or FetchErr with a reason

        Note:
            Never raises - every failure becomes a FetchErr
        """
        try:
            request.validate()

            payload = await self._fetch_with_retry(request)
            points = self.parse(payload)

            if not points:
                logger.warning(f"[{self.name}] Empty response for {request.provider_id}")
                self._on_error(
                    HistorySourceError("empty response", source_name=self.name),
                    request,
                )
                return FetchErr(source_name=self.name, reason="empty response")

            self._on_success()
            logger.debug(f"[{self.name}] Fetched {len(points)} points for {request.provider_id}")
            return FetchOk(source_name=self.name, points=points)

        except HistorySourceError as e:
            self._on_error(e, request)
            return FetchErr(source_name=self.name, reason=str(e), error=e)
        except Exception as e:
            error = HistorySourceError(
                message=f"Unexpected error: {e}",
                source_name=self.name,
                original_error=e,
            )
            self._on_error(error, request)
            return FetchErr(source_name=self.name, reason=str(error), error=error)

    async def _fetch_with_retry(self, request: HistoryRequest) -> Any:
        """Fetch with exponential backoff retry."""
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            is_last = attempt + 1 >= self._max_retries
            try:
                return await self.fetch_raw(request)

            except RateLimitError as e:
                last_error = e
                if is_last:
                    break
                wait_time = e.retry_after_seconds or (self.RETRY_BACKOFF_BASE ** attempt * 10)
                logger.warning(
                    f"[{self.name}] Rate limited, waiting {wait_time}s "
                    f"(attempt {attempt + 1}/{self._max_retries})"
                )
                await asyncio.sleep(wait_time)

            except FetchError as e:
                if not e.is_retryable():
                    raise
                last_error = e
                if is_last:
                    break
                wait_time = self.RETRY_BACKOFF_BASE ** attempt
                logger.warning(
                    f"[{self.name}] {e.message}, retrying in {wait_time}s "
                    f"(attempt {attempt + 1}/{self._max_retries})"
                )
                await asyncio.sleep(wait_time)

            except ParseError:
                raise

        if isinstance(last_error, FetchError):
            raise last_error
        raise FetchError(
            message=f"Failed after {self._max_retries} attempts",
            source_name=self.name,
            original_error=last_error,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "PriceHistoryEngine/1.0",
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make HTTP request with error handling."""
        session = await self._get_session()

        start_time = time.time()
        try:
            async with session.request(
                method,
                url,
                params=params,
                headers=headers,
            ) as response:
                latency_ms = (time.time() - start_time) * 1000
                self._health.latency_ms = latency_ms

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        message="Rate limit exceeded",
                        source_name=self.name,
                        retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                    )

                if response.status >= 400:
                    body = await response.text()
                    logger.debug(f"[{self.name}] HTTP {response.status} body: {body[:1000]}")
                    raise FetchError(
                        message=f"HTTP {response.status}",
                        source_name=self.name,
                        status_code=response.status,
                        request_url=url,
                    )

                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise ParseError(
                        message=f"Response is not valid JSON: {e}",
                        source_name=self.name,
                        original_error=e,
                    )
                logger.debug(f"[{self.name}] Request completed in {latency_ms:.1f}ms")
                return data

        except asyncio.TimeoutError as e:
            raise FetchError(
                message=f"Request timed out after {self._timeout}s",
                source_name=self.name,
                request_url=url,
                original_error=e,
            )
        except aiohttp.ClientError as e:
            raise FetchError(
                message=f"Connection error: {e}",
                source_name=self.name,
                request_url=url,
                original_error=e,
            )

    def _parse_entries(
        self,
        entries: Iterable[Any],
        extract: Callable[[Any], tuple[Any, Any]],
    ) -> list[RawPoint]:
        """
        Parse provider entries into RawPoints, skipping malformed ones.

        `extract` maps one entry to its (timestamp, price) pair and may
        raise KeyError/IndexError/TypeError/ValueError for malformed entries.
        """
        points: list[RawPoint] = []
        rejected = 0
        for entry in entries:
            try:
                t, p = extract(entry)
                points.append(RawPoint.parse(t, p))
            except (KeyError, IndexError, TypeError, ValueError):
                rejected += 1

        if rejected:
            logger.debug(f"[{self.name}] Rejected {rejected} malformed entries")
        return points

    def _on_success(self) -> None:
        """Handle successful request."""
        self._request_count += 1
        self._success_count += 1
        self._last_successful_request = datetime.now(timezone.utc)
        self._health.last_check = self._last_successful_request

        self._health.consecutive_failures = 0

        if self._health.status != SourceStatus.HEALTHY:
            self._health.status = SourceStatus.HEALTHY
            logger.info(f"[{self.name}] Recovered to HEALTHY status")

    def _on_error(
        self,
        error: HistorySourceError,
        request: Optional[HistoryRequest] = None,
    ) -> None:
        """Handle request error."""
        self._request_count += 1
        self._error_count += 1
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = datetime.now(timezone.utc)
        self._health.last_check = self._health.last_error_time

        if self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != SourceStatus.UNAVAILABLE:
                self._health.status = SourceStatus.UNAVAILABLE
                logger.error(f"[{self.name}] Marked UNAVAILABLE after {self._health.consecutive_failures} failures")
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != SourceStatus.DEGRADED:
                self._health.status = SourceStatus.DEGRADED
                logger.warning(f"[{self.name}] Marked DEGRADED after {self._health.consecutive_failures} failures")

        self._log_incident(error, request)

    def _log_incident(
        self,
        error: HistorySourceError,
        request: Optional[HistoryRequest] = None,
    ) -> None:
        incident = SourceIncident(
            source_name=self.name,
            incident_type=error.__class__.__name__,
            timestamp=datetime.now(timezone.utc),
            error_message=str(error),
            request_params={
                "provider_id": request.provider_id,
                "days": request.days,
            } if request else None,
        )

        self._incidents.append(incident)

        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

        logger.warning(f"[{self.name}] Incident logged: {error}")

    def get_health(self) -> SourceHealth:
        """Get current health status."""
        if self._request_count > 0:
            self._health.uptime_percentage = (
                self._success_count / self._request_count * 100
            )
        return self._health

    def get_incidents(self, limit: int = 10) -> list[SourceIncident]:
        return self._incidents[-limit:]

    def is_usable(self) -> bool:
        return self._health.is_usable()

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseHistorySource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, status={self._health.status.value})>"
