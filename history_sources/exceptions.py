"""
History Source Exceptions.

Adapters never let these escape from fetch(); they travel inside
FetchErr results. The registry raises NoAvailableSourceError once
every candidate source is exhausted.
"""

from typing import Optional


class HistorySourceError(Exception):
    """Base exception for all history source errors."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_name = source_name
        self.original_error = original_error

    def __str__(self) -> str:
        text = f"{self.__class__.__name__}: {self.message}"
        if self.source_name:
            text += f" [source={self.source_name}]"
        if self.original_error:
            text += f" (caused by: {self.original_error})"
        return text


class FetchError(HistorySourceError):
    """Transport or HTTP failure talking to a provider."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, source_name, original_error)
        self.status_code = status_code
        self.request_url = request_url

    def is_retryable(self) -> bool:
        """Server errors and failures without a status (timeouts, resets)."""
        return self.status_code is None or self.status_code >= 500


class RateLimitError(FetchError):
    """HTTP 429 from a provider."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
    ) -> None:
        super().__init__(message, source_name, status_code=429)
        self.retry_after_seconds = retry_after_seconds


class ParseError(HistorySourceError):
    """Provider payload does not have the expected shape."""


class UnusableDataError(HistorySourceError):
    """Rows were fetched but nothing survived normalization and filtering."""


class NoAvailableSourceError(HistorySourceError):
    """Every attempted source failed or returned nothing usable."""

    def __init__(
        self,
        message: str,
        attempted_sources: Optional[list[str]] = None,
        errors: Optional[dict[str, str]] = None,
        symbol: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.attempted_sources = attempted_sources or []
        self.errors = errors or {}
        self.symbol = symbol

    def __str__(self) -> str:
        if not self.errors:
            return f"{self.__class__.__name__}: {self.message}"
        details = "; ".join(f"{name}: {reason}" for name, reason in self.errors.items())
        return f"{self.__class__.__name__}: {self.message} ({details})"
