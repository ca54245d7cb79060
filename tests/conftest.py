from __future__ import annotations

from pathlib import Path
from typing import Iterator

from fastapi.testclient import TestClient
import pytest

from founder_flow.app import create_app
from founder_flow.config import Settings
from founder_flow.ordering import OrderingEngine
from founder_flow.progress import ProgressLedger
from founder_flow.store import DurableStore, MemoryStore, SqlStore
from founder_flow.subscription import SubscriptionLedger


@pytest.fixture(params=["memory", "sqlite", "sqlite-file"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[DurableStore]:
    """Run store-backed tests against both backends."""

    if request.param == "memory":
        yield MemoryStore()
        return
    if request.param == "sqlite-file":
        sql_store = SqlStore.from_url(f"sqlite+pysqlite:///{tmp_path / 'founder_flow.db'}")
    else:
        sql_store = SqlStore.from_url("sqlite+pysqlite:///:memory:")
    yield sql_store
    sql_store.close()


@pytest.fixture
def progress(store: DurableStore) -> ProgressLedger:
    return ProgressLedger(store)


@pytest.fixture
def subscriptions(store: DurableStore) -> SubscriptionLedger:
    return SubscriptionLedger(store)


@pytest.fixture
def ordering(store: DurableStore) -> OrderingEngine:
    return OrderingEngine(store)


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(store=MemoryStore(), settings=Settings()))
