"""Process-wide engine registry and session factory for the ORM adapter.

Manifesto:
    Many ORM stores open against the same database. They must share one
    connection pool, and two threads opening the first store at the same
    moment must not register two pools. Pools are therefore keyed by a
    normalized connection spec (credentials stripped, query options sorted)
    and registered under a process-wide lock.

This module provides:

* ``connection_url``      -- URL from a string, ``URL`` or mapping of URL parts.
* ``spec_name``           -- Normalized, credential-free registry key.
* ``retrieve_or_establish_engine`` -- Shared engine for a connection spec.
* ``KVSession`` / ``kv_session_factory`` -- Pre-configured sessions.

Tags:
    kvspine, orm, sqlalchemy, session, engine, pool, registry

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from kvspine.core.engine import create_kv_engine
from kvspine.core.errors import InvalidConfigError
from kvspine.core.logging import get_logger

logger = get_logger(__name__)

_engines: dict[str, Engine] = {}
# Serializes pool registration across every ORM store in the process.
_connection_lock = threading.Lock()

ConnectionSpec = str | URL | Mapping[str, Any]


def connection_url(connection: ConnectionSpec) -> URL:
    """Normalize a connection spec into a SQLAlchemy ``URL``.

    A mapping takes ``URL.create`` keyword arguments (``drivername``,
    ``username``, ``password``, ``host``, ``port``, ``database``, ``query``).
    """
    if isinstance(connection, (str, URL)):
        return make_url(connection)
    if isinstance(connection, Mapping):
        parts = dict(connection)
        if "drivername" not in parts:
            raise InvalidConfigError("connection", connection, "Connection mapping needs a drivername")
        return URL.create(**parts)
    raise InvalidConfigError("connection", connection)


def spec_name(url: URL) -> str:
    """Registry key for ``url``: credentials stripped, query sorted."""
    normalized = URL.create(
        drivername=url.drivername,
        username=url.username,
        host=url.host,
        port=url.port,
        database=url.database,
        query=dict(sorted(url.query.items())),
    )
    return "kvspine?" + normalized.render_as_string(hide_password=False)


def retrieve_engine(connection: ConnectionSpec) -> Engine | None:
    """Registered engine for ``connection``, if any."""
    return _engines.get(spec_name(connection_url(connection)))


def retrieve_or_establish_engine(connection: ConnectionSpec, **engine_kwargs: Any) -> Engine:
    """Shared engine for ``connection``, creating and registering it on first use."""
    url = connection_url(connection)
    name = spec_name(url)

    # unlocked fast path
    engine = _engines.get(name)
    if engine is not None:
        return engine

    with _connection_lock:
        engine = _engines.get(name)
        if engine is None:
            engine = create_kv_engine(url, **engine_kwargs)
            _engines[name] = engine
            logger.info("kv.engine_registered", spec=name)
    return engine


def registered_specs() -> list[str]:
    """Names of all registered connection specs."""
    with _connection_lock:
        return sorted(_engines)


def dispose_engines() -> None:
    """Dispose and forget every registered engine (application shutdown)."""
    with _connection_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()


class KVSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    Values read inside a transaction stay usable after commit.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def kv_session_factory(engine: Engine) -> sessionmaker[KVSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``KVSession`` instances."""
    return sessionmaker(bind=engine, class_=KVSession)


__all__ = [
    "ConnectionSpec",
    "KVSession",
    "connection_url",
    "dispose_engines",
    "kv_session_factory",
    "registered_specs",
    "retrieve_engine",
    "retrieve_or_establish_engine",
    "spec_name",
]
