"""Pytest configuration and shared fixtures."""

import copy
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

from report_sync.clients.gateway import AccountCredential, ApiResult, FetchParams, FetchWindow, Gateway
from report_sync.config.settings import SyncConfig
from report_sync.registry import CollectionKind, CollectionRegistry, CollectionSchema
from report_sync.storage.memory import MemoryDAO
from report_sync.utils.retry import RetryPolicy


class FakeGateway(Gateway):
    """
    Serves in-memory records newest first, paging backward from ``end``.

    Like the remote API it does not clip pages to ``start``; the fetcher is
    responsible for that.
    """

    def __init__(self, page_size: int = 50):
        self.page_size = page_size
        self.datasets: Dict[str, Tuple[str, List[dict]]] = {}
        self.listings: Dict[str, List[Any]] = {}
        self.errors: List[Exception] = []
        self.calls: List[Tuple[str, FetchParams, bool]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

    def add_dataset(self, method: str, date_field: str, records: List[dict]):
        self.datasets[method] = (date_field, [dict(r) for r in records])

    def add_listing(self, method: str, listing: List[Any]):
        self.listings[method] = list(listing)

    def has_method(self, method: str) -> bool:
        return method in self.datasets or method in self.listings

    def requests_for(self, method: str, probes: bool = False) -> List[FetchParams]:
        return [params for name, params, is_probe in self.calls if name == method and is_probe == probes]

    async def request(self, method: str, window: FetchWindow, is_probe: bool = False) -> ApiResult:
        params = copy.deepcopy(window.params)
        self.calls.append((method, params, is_probe))

        if self.errors:
            raise self.errors.pop(0)

        if method in self.listings:
            return ApiResult(res=list(self.listings[method]))

        date_field, records = self.datasets[method]
        rows = [
            dict(r) for r in records
            if (params.symbol is None or r.get("symbol") == params.symbol) and
            (params.end is None or r[date_field] <= params.end)
        ]
        rows.sort(key=lambda r: r[date_field], reverse=True)

        limit = 1 if is_probe else min(params.limit or self.page_size, self.page_size)
        page = rows[:limit]

        next_page = None
        if page and len(page) == limit and not is_probe and not params.not_check_next_page:
            next_page = page[-1][date_field] - 1

        return ApiResult(res=page, next_page=next_page)


def make_records(count: int, newest: int = 1000, step: int = 1, **fields) -> List[dict]:
    """Records with ids and ``mts`` dates counting down from ``newest``."""
    return [
        {"id": newest - i * step, "mts": newest - i * step, **fields}
        for i in range(count)
    ]


LEDGERS = CollectionSchema(
    name="ledgers",
    kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
    date_field="mts",
    sort=(("mts", -1),)
)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def memory_dao() -> MemoryDAO:
    return MemoryDAO()


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def retry_policy(fake_gateway, no_sleep) -> RetryPolicy:
    return RetryPolicy(fake_gateway, sleep=no_sleep)


@pytest.fixture
def credential() -> AccountCredential:
    return AccountCredential(api_key="key-1", api_secret="secret-1", account_id="acc-1")


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(rate_limit_delay_seconds=0.0, nonce_delay_seconds=0.0)


@pytest.fixture
def ledgers_schema() -> CollectionSchema:
    return LEDGERS


@pytest.fixture
def account_registry() -> CollectionRegistry:
    """Registry with two account collections and no public ones."""
    return CollectionRegistry(
        ["ledgers", "trades"],
        method_collection_map={
            "getLedgers": LEDGERS,
            "getTrades": CollectionSchema(
                name="trades",
                kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
                date_field="mts",
                sort=(("mts", -1),)
            ),
        }
    )


@pytest.fixture
def sample_listing() -> Dict[str, Any]:
    return {
        "symbols": ["BTCUSD", "ETHUSD", "LTCUSD"],
        "currencies": [
            {"id": "BTC", "name": "Bitcoin"},
            {"id": "ETH", "name": "Ethereum"},
        ]
    }


def stored_ids(dao: MemoryDAO, collection: str, filter: Optional[dict] = None) -> List[Any]:
    return sorted(r["id"] for r in dao.records(collection, filter))
