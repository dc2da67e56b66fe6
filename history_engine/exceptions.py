"""
History Engine - Exceptions.

Taxonomy:
- UnknownSymbolError: raised before any network activity
- NoDataError: every source exhausted with nothing usable
- SourceRefreshError: the single refresh source failed
- PersistenceError: store read/write failure on a critical path
- UnsupportedCurrencyError: a source quotes a currency with no rate
- FusionError: no input points to reconcile
"""

from typing import Any, Optional


class HistoryEngineError(Exception):
    """Base exception for the history engine."""

    def __init__(
        self,
        message: str,
        symbol: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.symbol = symbol
        self.details = details or {}

    def __str__(self) -> str:
        if self.symbol:
            return f"{self.message} [symbol={self.symbol}]"
        return self.message


class UnknownSymbolError(HistoryEngineError):
    """Symbol has no configured provider mapping."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"Unknown symbol: {symbol}", symbol=symbol)


class NoDataError(HistoryEngineError):
    """All sources were exhausted without usable data."""

    def __init__(
        self,
        message: str,
        symbol: Optional[str] = None,
        errors: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(message, symbol=symbol, details={"errors": errors or {}})
        self.errors = errors or {}

    def __str__(self) -> str:
        base = super().__str__()
        if not self.errors:
            return base
        details = "; ".join(f"{name}: {reason}" for name, reason in self.errors.items())
        return f"{base} ({details})"


class SourceRefreshError(HistoryEngineError):
    """The refresh source failed; refresh has no fallback."""

    def __init__(self, symbol: str, source_name: str, reason: str) -> None:
        super().__init__(
            f"Refresh from {source_name} failed: {reason}",
            symbol=symbol,
            details={"source": source_name, "reason": reason},
        )
        self.source_name = source_name
        self.reason = reason


class PersistenceError(HistoryEngineError):
    """Store read or write failed."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, details={"key": key})
        self.key = key
        self.original_error = original_error


class CorruptRecordError(PersistenceError):
    """A stored record exists but cannot be decoded."""
    pass


class UnsupportedCurrencyError(HistoryEngineError):
    """No live or fallback USD rate exists for the currency."""

    def __init__(self, currency: str) -> None:
        super().__init__(f"No USD conversion available for {currency}", details={"currency": currency})
        self.currency = currency


class FusionError(HistoryEngineError):
    """Nothing to fuse."""
    pass
