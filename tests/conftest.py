"""
Shared pytest fixtures and configuration for kvspine tests.

This module provides:
- Quiet structlog configuration for the whole session
- File-backed SQLite stores for the SQL-toolkit and ORM families
- A CouchDB store wired to an in-process fake server

SQLite databases live in ``tmp_path`` rather than ``:memory:`` so that
threads in the concurrency tests share one database.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Generator

import httpx
import pytest

from kvspine.adapters.couch import CouchStore
from kvspine.adapters.orm import ORMStore, dispose_engines
from kvspine.adapters.sql import SQLiteStore, SQLStore, open_sql_store
from kvspine.core.engine import create_kv_engine
from kvspine.core.logging import configure_logging
from tests._support.fake_couch import COUCH_URL, FakeCouch


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(scope="session", autouse=True)
def _quiet_logging() -> None:
    configure_logging(level="WARNING", json_format=False)


@pytest.fixture(autouse=True)
def _reset_engine_registry() -> Generator[None, None, None]:
    """Dispose engines the ORM family registered during a test."""
    yield
    dispose_engines()


# =============================================================================
# Relational Fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "kv.db"


@pytest.fixture
def db_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


@pytest.fixture
def sql_store(db_url: str) -> Generator[SQLiteStore, None, None]:
    """SQLite-specialized SQL-toolkit store owning its engine."""
    store = open_sql_store(db_url)
    yield store
    store.close()


@pytest.fixture
def generic_sql_store(db_url: str) -> Generator[SQLStore, None, None]:
    """Generic (dialect-agnostic) SQL-toolkit store on SQLite."""
    engine = create_kv_engine(db_url)
    store = SQLStore(engine)
    yield store
    store.close()
    engine.dispose()


@pytest.fixture
def orm_store(db_url: str) -> Generator[ORMStore, None, None]:
    store = ORMStore(db_url)
    yield store
    store.close()


# =============================================================================
# Document Store Fixtures
# =============================================================================


@pytest.fixture
def couch_server() -> FakeCouch:
    return FakeCouch()


@pytest.fixture
def couch_client(couch_server: FakeCouch) -> Generator[httpx.Client, None, None]:
    client = httpx.Client(transport=httpx.MockTransport(couch_server.handler))
    yield client
    client.close()


@pytest.fixture
def make_couch_store(couch_client: httpx.Client):
    """Factory for stores sharing the fake server; closed after the test."""
    stores: list[CouchStore] = []

    def _make(**kwargs: Any) -> CouchStore:
        kwargs.setdefault("client", couch_client)
        store = CouchStore(COUCH_URL, **kwargs)
        stores.append(store)
        return store

    yield _make
    for store in stores:
        store.close()


@pytest.fixture
def couch_store(make_couch_store) -> CouchStore:
    return make_couch_store()
