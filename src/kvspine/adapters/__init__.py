"""Key-value adapters -- one contract, three backend families.

Manifesto:
    Every adapter answers the same operations with the same semantics.
    What differs is how ``create``, ``increment`` and ``delete`` are made
    safe under concurrent access with each backend's own primitives.

Architecture::

    KeyValueStore (base.py)          Contract + generic fallbacks
        |-- SQLStore (sql/)          SQLAlchemy Core, per-dialect overrides
        |     |-- SQLiteStore
        |     |-- PostgreSQLStore
        |     |-- MySQLStore
        |-- ORMStore (orm/)          SQLAlchemy ORM sessions + mapped models
        |-- CouchStore (couch.py)    CouchDB HTTP, revision tokens

    AdapterRegistry (registry.py)    Singleton: backend name -> factory

Install the driver extra for the database you use::

    pip install kvspine[postgresql]   # psycopg2-binary
    pip install kvspine[mysql]        # mysql-connector-python

Tags:
    kvspine, adapters, multi-backend, registry-pattern

Doc-Types:
    package-overview, architecture-map, module-index
"""

from .base import Feature, KeyValueStore
from .couch import CouchStore
from .orm import ORMStore
from .registry import AdapterRegistry, adapter_registry, get_store, store_from_settings
from .sql import MySQLStore, PostgreSQLStore, SQLiteStore, SQLStore, open_sql_store

__all__ = [
    "AdapterRegistry",
    "CouchStore",
    "Feature",
    "KeyValueStore",
    "MySQLStore",
    "ORMStore",
    "PostgreSQLStore",
    "SQLStore",
    "SQLiteStore",
    "adapter_registry",
    "get_store",
    "open_sql_store",
    "store_from_settings",
]
