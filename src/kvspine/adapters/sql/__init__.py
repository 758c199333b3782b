"""SQL-toolkit key-value adapters -- one generic store, per-dialect overrides.

Architecture::

    SQLStore (base.py)           Generic detect-then-recover strategies
        |-- SQLiteStore          INSERT OR REPLACE, DELETE … RETURNING
        |-- PostgreSQLStore      ON CONFLICT DO UPDATE … RETURNING
        |-- MySQLStore           ON DUPLICATE KEY UPDATE

    open_sql_store()             Engine/URL -> the right subclass by dialect

Usage::

    from kvspine.adapters.sql import open_sql_store

    store = open_sql_store("postgresql://app@db/app", table="sessions")
    store.increment("hits")

Tags:
    kvspine, sqlalchemy, sql, adapters, multi-backend
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import URL, Engine

from kvspine.core.engine import create_kv_engine

from .base import DEFAULT_TABLE, SQLStore
from .mysql import MySQLStore
from .postgresql import PostgreSQLStore
from .sqlite import SQLiteStore

DIALECT_STORES: dict[str, type[SQLStore]] = {
    cls.dialect_name: cls for cls in (SQLiteStore, PostgreSQLStore, MySQLStore) if cls.dialect_name
}
# MariaDB reports its own dialect name through the mysql driver family
DIALECT_STORES["mariadb"] = MySQLStore


def store_class_for(dialect_name: str) -> type[SQLStore]:
    """Specialized store for ``dialect_name``, the generic ``SQLStore`` otherwise."""
    return DIALECT_STORES.get(dialect_name, SQLStore)


def open_sql_store(
    engine: Engine | str | URL,
    table: str = DEFAULT_TABLE,
    **kwargs: Any,
) -> SQLStore:
    """Open a SQL-toolkit store, picking the subclass from the engine's dialect.

    A URL creates an engine owned by the returned store; an ``Engine`` is
    shared and left open on ``close``.
    """
    if isinstance(engine, Engine):
        return store_class_for(engine.dialect.name)(engine, table, **kwargs)

    engine_kwargs = {
        name: kwargs.pop(name)
        for name in ("echo", "pool_size", "max_overflow", "pool_timeout", "sqlite_timeout")
        if name in kwargs
    }
    owned = create_kv_engine(engine, **engine_kwargs)
    try:
        return store_class_for(owned.dialect.name)(owned, table, owns_engine=True, **kwargs)
    except Exception:
        owned.dispose()
        raise


__all__ = [
    "DIALECT_STORES",
    "SQLStore",
    "SQLiteStore",
    "PostgreSQLStore",
    "MySQLStore",
    "open_sql_store",
    "store_class_for",
]
