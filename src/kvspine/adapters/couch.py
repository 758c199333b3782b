"""Document-store key-value adapter (CouchDB HTTP API).

Manifesto:
    A document store has no row locks and no upsert; its only concurrency
    primitive is the conditional write: every ``PUT``/``DELETE`` must present
    the revision token of the version it replaces, and a stale token is
    answered with ``409 Conflict``. This adapter builds the whole contract on
    that primitive.

    - ``store`` sends the last revision it knows for the key (from the
      revision cache, else a ``HEAD``). A ``409`` evicts the cached token and
      the write is retried with a fresh one.
    - ``create`` writes without a revision; ``409`` means the document
      already exists and is answered with ``False``.
    - ``delete`` fetches the document (value and current revision) and
      deletes presenting that revision; a stale revision restarts the
      fetch-then-delete sequence.
    - ``each_key`` pages through ``_all_docs`` with ``limit``/``skip`` and
      refreshes the revision cache from the listing as it goes.

    The revision cache is a hint, never proof: a miss costs a ``HEAD``, a
    stale hit costs one rejected write.

Wire format:
    ::

        "hello"          -> {"value": "hello", "type": "String"}
        42 / 1.5         -> {"value": 42,      "type": "Number"}
        {"a": 1}         -> {"a": 1,           "type": "Hash"}

    ``_id``/``_rev`` and the type field are stripped from structured values
    on the way out.

Tags:
    kvspine, couchdb, httpx, document-store, optimistic-concurrency, adapter

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, ClassVar
from urllib.parse import quote

import httpx

from kvspine.adapters.base import Feature, KeyValueStore
from kvspine.core.cache import CacheBackend, LRUCache
from kvspine.core.errors import (
    BackendError,
    ConflictError,
    HTTPStatusError,
    NetworkError,
    ValueTypeError,
)
from kvspine.core.logging import get_logger
from kvspine.core.retry import ExponentialBackoff, RetryContext

logger = get_logger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5984
DEFAULT_DB = "kvspine"
EACH_KEY_PAGE_SIZE = 1000

_WRITTEN = (201, 202)
_RESERVED_FIELDS = ("_id", "_rev")


class CouchStore(KeyValueStore):
    """
    Key-value store over one CouchDB database.

    Args:
        url: Server base URL (``http://host:port``). Built from ``host`` and
            ``port`` when omitted.
        db: Database name, created on construction if missing.
        client: Existing ``httpx.Client`` to share. Left open on ``close``.
        value_field: Document field holding scalar values.
        type_field: Document field holding the value type tag.
        rev_cache: Revision cache to use instead of a private ``LRUCache``.
        conflict_retries: Retry budget for ``store``/``create``/``delete``.
        retry_delay, max_retry_delay: Exponential backoff (seconds) between
            those retries, with jitter. ``0`` retries immediately.
    """

    backend: ClassVar[str] = "couch"
    features = frozenset({Feature.CREATE, Feature.EACH_KEY})

    def __init__(
        self,
        url: str | None = None,
        *,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        db: str = DEFAULT_DB,
        client: httpx.Client | None = None,
        value_field: str = "value",
        type_field: str = "type",
        rev_cache: CacheBackend | None = None,
        rev_cache_size: int = 10_000,
        page_size: int = EACH_KEY_PAGE_SIZE,
        conflict_retries: int = 10,
        retry_delay: float = 0.005,
        max_retry_delay: float = 0.25,
        timeout: float = 30.0,
    ):
        base = url or f"http://{host}:{port}"
        self.db = db
        self.db_url = base.rstrip("/") + "/" + quote(db, safe="")
        self.value_field = value_field
        self.type_field = type_field
        self.page_size = page_size
        self.conflict_retries = conflict_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._revs: CacheBackend = rev_cache if rev_cache is not None else LRUCache(max_size=rev_cache_size)

        self._owns_client = client is None
        self._client: httpx.Client | None = client if client is not None else httpx.Client(timeout=timeout)

        try:
            self.create_db()
        except Exception:
            self.close()
            raise

    # -- HTTP plumbing -----------------------------------------------------

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            raise BackendError("Store is closed").with_context(backend=self.backend, table=self.db)
        return self._client

    def _doc_url(self, key: str) -> str:
        return f"{self.db_url}/{quote(key, safe='')}"

    def _request(
        self,
        method: str,
        url: str,
        operation: str,
        key: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url} failed: {e}", cause=e).with_context(
                backend=self.backend, table=self.db, key=key, operation=operation, url=url
            ) from e

    def _status_error(
        self,
        response: httpx.Response,
        operation: str,
        key: str | None = None,
        *,
        retryable: bool = False,
    ) -> HTTPStatusError:
        request = response.request
        error = HTTPStatusError(
            response.status_code,
            request.method,
            request.url.path,
            retryable=retryable,
        )
        error.with_context(
            backend=self.backend, table=self.db, key=key, operation=operation, url=str(request.url)
        )
        return error

    def _conflict(self, message: str, key: str, operation: str) -> ConflictError:
        error = ConflictError(message)
        error.with_context(backend=self.backend, table=self.db, key=key, operation=operation)
        return error

    def _retry(self, operation: str) -> RetryContext:
        # conflicts, transport failures and write-path HTTP errors are all retryable
        strategy = ExponentialBackoff(
            max_retries=self.conflict_retries,
            base_delay=self.retry_delay,
            max_delay=self.max_retry_delay,
        )
        return RetryContext(strategy, operation=operation)

    # -- Revision cache ----------------------------------------------------

    @staticmethod
    def _etag(response: httpx.Response) -> str | None:
        etag = response.headers.get("etag")
        return etag.strip('"') if etag else None

    def _update_rev_cache(self, key: str, response: httpx.Response) -> str | None:
        rev = self._etag(response) if response.status_code in (200, *_WRITTEN) else None
        if rev is None:
            self._revs.delete(key)
        else:
            self._revs.set(key, rev)
        return rev

    def _rev(self, key: str) -> str | None:
        rev = self._revs.get(key)
        if rev is None:
            rev = self._update_rev_cache(key, self._request("HEAD", self._doc_url(key), "store", key))
        return rev

    # -- Codec -------------------------------------------------------------

    def _encode(self, value: Any) -> dict[str, Any]:
        if isinstance(value, Mapping):
            doc = {k: v for k, v in value.items() if k not in _RESERVED_FIELDS}
            doc[self.type_field] = "Hash"
            return doc
        if isinstance(value, str):
            return {self.value_field: value, self.type_field: "String"}
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return {self.value_field: value, self.type_field: "Number"}
        raise ValueTypeError(
            f"Invalid value type: {type(value).__name__}",
            value_type=type(value).__name__,
        ).with_context(backend=self.backend)

    def _decode(self, doc: dict[str, Any]) -> Any:
        if doc.get(self.type_field) == "Hash":
            return {
                k: v
                for k, v in doc.items()
                if k not in _RESERVED_FIELDS and k != self.type_field
            }
        return doc.get(self.value_field)

    # -- Database lifecycle ------------------------------------------------

    def create_db(self) -> bool:
        """Create the database; ``False`` if it already existed."""
        response = self._request("PUT", self.db_url, "create_db")
        if response.status_code in _WRITTEN:
            logger.info("kv.database_created", db=self.db)
            return True
        if response.status_code == 412:
            return False
        raise self._status_error(response, "create_db")

    # -- Contract ----------------------------------------------------------

    def exists(self, key: str) -> bool:
        response = self._request("HEAD", self._doc_url(key), "exists", key)
        self._update_rev_cache(key, response)
        if response.status_code not in (200, 404):
            raise self._status_error(response, "exists", key)
        return response.status_code == 200

    def load(self, key: str) -> Any | None:
        response = self._request("GET", self._doc_url(key), "load", key)
        self._update_rev_cache(key, response)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise self._status_error(response, "load", key)
        return self._decode(response.json())

    def store(self, key: str, value: Any) -> Any:
        doc = self._encode(value)
        self._retry("store").run(self._store_once, key, doc)
        return value

    def _store_once(self, key: str, doc: dict[str, Any]) -> None:
        rev = self._rev(key)
        body = dict(doc, _rev=rev) if rev else doc
        response = self._request("PUT", self._doc_url(key), "store", key, json=body)
        self._update_rev_cache(key, response)
        if response.status_code in _WRITTEN:
            return
        if response.status_code == 409:
            raise self._conflict("Stale revision", key, "store")
        raise self._status_error(response, "store", key, retryable=True)

    def create(self, key: str, value: Any) -> bool:
        doc = self._encode(value)
        return self._retry("create").run(self._create_once, key, doc)

    def _create_once(self, key: str, doc: dict[str, Any]) -> bool:
        response = self._request("PUT", self._doc_url(key), "create", key, json=doc)
        self._update_rev_cache(key, response)
        if response.status_code in _WRITTEN:
            return True
        if response.status_code == 409:
            return False
        raise self._status_error(response, "create", key, retryable=True)

    def delete(self, key: str) -> Any | None:
        return self._retry("delete").run(self._delete_once, key)

    def _delete_once(self, key: str) -> Any | None:
        self._revs.delete(key)
        url = self._doc_url(key)
        response = self._request("GET", url, "delete", key)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise self._status_error(response, "delete", key, retryable=True)

        doc = response.json()
        rev = self._etag(response) or doc.get("_rev")
        value = self._decode(doc)

        deleted = self._request("DELETE", url, "delete", key, params={"rev": rev})
        if deleted.status_code in (200, 202):
            return value
        if deleted.status_code in (404, 409):
            raise self._conflict("Document changed during delete", key, "delete")
        raise self._status_error(deleted, "delete", key, retryable=True)

    def clear(self) -> None:
        """Drop and recreate the database."""
        response = self._request("DELETE", self.db_url, "clear")
        if response.status_code not in (200, 202, 404):
            raise self._status_error(response, "clear")
        self._revs.clear()
        self.create_db()

    def each_key(self) -> Iterator[str]:
        """Keys from ``_all_docs``, one page per request.

        Pages are addressed by offset, so concurrent writes can make the
        listing skip or repeat keys.
        """
        url = f"{self.db_url}/_all_docs"
        skip = 0
        total = 1
        while total > skip:
            response = self._request(
                "GET", url, "each_key", params={"limit": self.page_size, "skip": skip}
            )
            if response.status_code != 200:
                raise self._status_error(response, "each_key")
            result = response.json()
            total = result["total_rows"]
            rows = result["rows"]
            if not rows:
                return
            skip += len(rows)
            for row in rows:
                self._revs.set(row["id"], row["value"]["rev"])
                yield row["id"]

    def close(self) -> None:
        if self._client is None:
            return
        if self._owns_client:
            self._client.close()
        self._client = None

    def __repr__(self) -> str:
        return f"CouchStore(db_url={self.db_url!r})"


__all__ = [
    "CouchStore",
]
