"""
kvspine - one key-value contract over SQL databases and CouchDB.

    from kvspine import get_store

    with get_store("sql", engine="sqlite:///app.db") as store:
        store.create("lock:job-1", b"worker-a")
        store.increment("hits")
"""

__version__ = "0.1.0"

from kvspine.adapters import (  # noqa: E402
    CouchStore,
    Feature,
    KeyValueStore,
    ORMStore,
    SQLStore,
    get_store,
    open_sql_store,
    store_from_settings,
)
from kvspine.core import *  # noqa: E402,F403
from kvspine.core import __all__ as _core_all  # noqa: E402

__all__ = [
    "__version__",
    "CouchStore",
    "Feature",
    "KeyValueStore",
    "ORMStore",
    "SQLStore",
    "get_store",
    "open_sql_store",
    "store_from_settings",
    *_core_all,
]
