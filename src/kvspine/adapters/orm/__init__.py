"""ORM-style key-value adapter.

Modules
-------
base            ``KVBase`` declarative base + per-table ``record_model()``
session         Process-wide engine registry + ``KVSession`` factory
store           ``ORMStore`` adapter
"""

from .base import KVBase, record_model
from .session import (
    KVSession,
    dispose_engines,
    kv_session_factory,
    registered_specs,
    retrieve_or_establish_engine,
    spec_name,
)
from .store import ORMStore

__all__ = [
    "KVBase",
    "KVSession",
    "ORMStore",
    "dispose_engines",
    "kv_session_factory",
    "record_model",
    "registered_specs",
    "retrieve_or_establish_engine",
    "spec_name",
]
