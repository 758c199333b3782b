"""Key-value adapter registry and factory.

Manifesto:
    Applications should pick a backend by name (or from the environment),
    never by importing adapter classes. The registry maps backend names to
    factories and ``store_from_settings()`` builds a configured store from
    ``KVSettings``.

Features:
    - ``AdapterRegistry`` singleton with pre-registered defaults
    - ``register()`` for custom / third-party adapters
    - ``get_store()`` factory: name + options → open store
    - ``store_from_settings()``: ``KVSettings`` → open store

Tags:
    kvspine, registry, factory, singleton

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any, Callable

from kvspine.core.errors import ConfigError
from kvspine.core.logging import configure_logging
from kvspine.core.settings import KVSettings

from .base import KeyValueStore
from .couch import CouchStore
from .orm import ORMStore
from .sql import open_sql_store

StoreFactory = Callable[..., KeyValueStore]


class AdapterRegistry:
    """
    Registry for key-value store factories.

    Pre-registered adapters:
    - ``sql`` / ``sqlalchemy`` - :func:`open_sql_store` (dialect dispatch)
    - ``orm`` - :class:`ORMStore`
    - ``couch`` / ``couchdb`` - :class:`CouchStore`
    """

    def __init__(self):
        self._factories: dict[str, StoreFactory] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self._factories["sql"] = open_sql_store
        self._factories["sqlalchemy"] = open_sql_store  # Alias
        self._factories["orm"] = ORMStore
        self._factories["couch"] = CouchStore
        self._factories["couchdb"] = CouchStore  # Alias

    def register(self, name: str, factory: StoreFactory) -> None:
        """Register a store factory."""
        self._factories[name.lower()] = factory

    def create(self, name: str, **kwargs: Any) -> KeyValueStore:
        """Create a store by backend name."""
        name = name.lower()
        if name not in self._factories:
            raise ConfigError(f"Unknown key-value backend: {name}")
        return self._factories[name](**kwargs)

    def list_adapters(self) -> list[str]:
        """List registered backend names."""
        return sorted(self._factories.keys())


# Global registry
adapter_registry = AdapterRegistry()


def get_store(name: str, **kwargs: Any) -> KeyValueStore:
    """
    Open a store by backend name.

    Usage:
        store = get_store("sql", engine="sqlite:///app.db", table="cache")
        store = get_store("couch", url="http://localhost:5984", db="sessions")
    """
    return adapter_registry.create(name, **kwargs)


def store_from_settings(settings: KVSettings | None = None) -> KeyValueStore:
    """Open the store described by ``settings`` (``KVSPINE_*`` env vars by default).

    With ``log_level`` set, structlog is configured from ``log_level`` and
    ``json_logs`` before the store is opened.
    """
    settings = settings or KVSettings()
    if settings.log_level:
        configure_logging(level=settings.log_level, json_format=settings.json_logs)

    if settings.backend == "couch":
        options: dict[str, Any] = {
            "url": settings.couch_url,
            "db": settings.couch_db,
            "value_field": settings.value_field,
            "type_field": settings.type_field,
            "rev_cache_size": settings.rev_cache_size,
            "page_size": settings.page_size,
            "conflict_retries": settings.conflict_retries,
            "timeout": settings.timeout,
        }
    elif settings.backend == "orm":
        options = {
            "connection": settings.url,
            "table": settings.table,
            "key_column": settings.key_column,
            "value_column": settings.value_column,
            "page_size": settings.page_size,
            "increment_retries": settings.increment_retries,
            "conflict_retries": settings.conflict_retries,
        }
    else:
        options = {
            "engine": settings.url,
            "table": settings.table,
            "page_size": settings.page_size,
            "increment_retries": settings.increment_retries,
            "conflict_retries": settings.conflict_retries,
        }
    return get_store(settings.backend, **options)


__all__ = [
    "AdapterRegistry",
    "StoreFactory",
    "adapter_registry",
    "get_store",
    "store_from_settings",
]
