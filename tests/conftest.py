"""
Shared fixtures for the history engine test suite.

Everything runs offline: sources are FakeHistorySource instances
serving canned payloads, and storage is an InMemoryKeyValueStore.
"""

from typing import Any, Optional

import pytest

from history_engine.config import HistoryConfig
from history_engine.currency import StaticRateProvider
from history_engine.kv import InMemoryKeyValueStore
from history_engine.normalizer import PointNormalizer
from history_engine.orchestrator import HistoryOrchestrator
from history_engine.store import SeriesStore
from history_sources.base import BaseHistorySource
from history_sources.exceptions import FetchError
from history_sources.models import HistoryRequest, RawPoint, SourceMetadata
from history_sources.registry import SourceRegistry


class FakeHistorySource(BaseHistorySource):
    """
    Offline source serving canned (t, p) pairs per provider id.

    Provider ids missing from `data` fail with a 404 FetchError.
    """

    def __init__(
        self,
        name: str,
        data: Optional[dict[str, list[tuple[Any, Any]]]] = None,
        currency: str = "USD",
        priority: int = 1,
    ) -> None:
        super().__init__(timeout=1.0, max_retries=1)
        self._name = name
        self.data = data or {}
        self._currency = currency
        self._priority = priority
        self.requests: list[HistoryRequest] = []

    @property
    def name(self) -> str:
        return self._name

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self._name,
            display_name=self._name.title(),
            currency=self._currency,
            priority=self._priority,
        )

    async def fetch_raw(self, request: HistoryRequest) -> Any:
        self.requests.append(request)
        if request.provider_id not in self.data:
            raise FetchError(
                message=f"unknown id {request.provider_id}",
                source_name=self._name,
                status_code=404,
            )
        return self.data[request.provider_id]

    def parse(self, payload: Any) -> list[RawPoint]:
        return self._parse_entries(payload, lambda pair: (pair[0], pair[1]))


@pytest.fixture
def make_source():
    """Factory for FakeHistorySource instances."""
    def _make(name: str, data=None, currency: str = "USD", priority: int = 1) -> FakeHistorySource:
        return FakeHistorySource(name, data=data, currency=currency, priority=priority)
    return _make


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return SeriesStore(kv)


@pytest.fixture
def config():
    return HistoryConfig(
        symbols={
            "BTC": {"coingecko": "bitcoin", "cryptocompare": "BTC"},
            "ETH": {"coingecko": "ethereum", "cryptocompare": "ETH"},
        },
    )


@pytest.fixture
def normalizer():
    return PointNormalizer(StaticRateProvider({"EUR": 1.1}))


@pytest.fixture
def make_orchestrator(config, store, normalizer):
    """Build an orchestrator over the given fake sources."""
    def _make(*sources: BaseHistorySource) -> HistoryOrchestrator:
        registry = SourceRegistry()
        for source in sources:
            registry.register(source)
        return HistoryOrchestrator(registry, store, config=config, normalizer=normalizer)
    return _make
