"""Generic SQL-toolkit key-value adapter.

Manifesto:
    Any database SQLAlchemy Core can talk to gets a correct key-value store
    from this class alone, using only plain INSERT/UPDATE/SELECT/DELETE and
    the table's primary key as the arbiter of races:

    - ``create`` is a blind INSERT; a unique violation means "someone else
      got there first" and is answered with ``False``, never an exception.
    - ``increment`` is a blind INSERT of the amount; on a unique violation it
      falls back to a locked read that validates the integer and an
      ``UPDATE ... SET v = v + amount`` computed by the database, inside one
      transaction. Only a row that vanished in between (the UPDATE matched
      nothing) re-runs the operation from the top.
    - ``delete`` reads the value under a row lock (``SELECT … FOR UPDATE``)
      and deletes it in the same transaction, so the returned value is the
      one actually removed.

    Dialect subclasses override only the operations for which their
    database has a strictly better single statement; everything else is
    inherited unchanged.

Tags:
    kvspine, sqlalchemy, sql, adapter, optimistic-concurrency

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, ClassVar

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from kvspine.adapters.base import Feature, KeyValueStore
from kvspine.core.codec import check_amount, encode_int, from_blob, parse_int, to_blob
from kvspine.core.engine import create_kv_engine
from kvspine.core.errors import (
    BackendError,
    ConflictError,
    DatabaseConnectionError,
    KVError,
)
from kvspine.core.logging import get_logger
from kvspine.core.retry import RetryContext, conflict_policy
from kvspine.core.schema import TableCreator, add_expression, ensure_table, kv_table

logger = get_logger(__name__)

DEFAULT_TABLE = "kvspine"
EACH_KEY_PAGE_SIZE = 1000


class SQLStore(KeyValueStore):
    """
    Key-value store over a single ``(k, v)`` table via SQLAlchemy Core.

    The engine is either supplied (shared, never disposed by this store) or
    created from a URL (owned, disposed on ``close``).
    """

    backend: ClassVar[str] = "sql"
    features = frozenset({Feature.CREATE, Feature.INCREMENT, Feature.EACH_KEY})
    #: SQLAlchemy dialect name this class specializes, ``None`` for generic
    dialect_name: ClassVar[str | None] = None

    def __init__(
        self,
        engine: Engine | str | URL,
        table: str = DEFAULT_TABLE,
        *,
        schema: str | None = None,
        increment_retries: int = 3,
        conflict_retries: int = 10,
        page_size: int = EACH_KEY_PAGE_SIZE,
        create_table: TableCreator | bool = True,
        owns_engine: bool = False,
        **engine_kwargs: Any,
    ):
        if isinstance(engine, Engine):
            self._engine: Engine | None = engine
            self._owns_engine = owns_engine
        else:
            self._engine = create_kv_engine(engine, **engine_kwargs)
            self._owns_engine = True

        self.table: Table = kv_table(table, schema=schema)
        self.key_col = self.table.c.k
        self.value_col = self.table.c.v
        self.increment_retries = increment_retries
        self.conflict_retries = conflict_retries
        self.page_size = page_size

        if create_table:
            try:
                ensure_table(
                    self._engine,
                    self.table,
                    create=create_table if callable(create_table) else None,
                )
            except Exception:
                if self._owns_engine:
                    self._engine.dispose()
                raise

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise BackendError("Store is closed").with_context(backend=self.backend, table=self.table.name)
        return self._engine

    @property
    def owns_engine(self) -> bool:
        return self._owns_engine

    # -- Connection helpers --------------------------------------------------

    @contextmanager
    def _connect(self, operation: str, key: str | None = None) -> Iterator[Connection]:
        """Plain connection (no explicit transaction) with error translation."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except DBAPIError as e:
            raise self._translate(e, operation, key) from e

    @contextmanager
    def _begin(self, operation: str, key: str | None = None) -> Iterator[Connection]:
        """Transaction (commit on success, rollback on error) with error translation."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except IntegrityError:
            raise
        except DBAPIError as e:
            raise self._translate(e, operation, key) from e

    def _translate(self, error: DBAPIError, operation: str, key: str | None) -> KVError:
        """Map a driver error onto the kvspine hierarchy."""
        if error.connection_invalidated:
            translated: KVError = DatabaseConnectionError(
                f"Connection lost during {operation}: {error.orig}", cause=error
            )
        else:
            translated = BackendError(f"{operation} failed: {error.orig}", cause=error)
        return translated.with_context(
            backend=self.backend, table=self.table.name, key=key, operation=operation
        )

    def _retry(self, operation: str, budget: int) -> RetryContext:
        return RetryContext(conflict_policy(budget), operation=operation)

    # -- Statement builders --------------------------------------------------

    def _select_value(self, key: str):
        return select(self.value_col).where(self.key_col == key)

    def _insert(self, key: str, blob: bytes):
        return insert(self.table).values({self.key_col.name: key, self.value_col.name: blob})

    def _update(self, key: str, blob: bytes):
        return update(self.table).where(self.key_col == key).values({self.value_col.name: blob})

    # -- Contract ------------------------------------------------------------

    def exists(self, key: str) -> bool:
        with self._connect("exists", key) as conn:
            stmt = select(self.key_col).where(self.key_col == key).limit(1)
            return conn.execute(stmt).first() is not None

    def load(self, key: str) -> bytes | None:
        with self._connect("load", key) as conn:
            return from_blob(conn.execute(self._select_value(key)).scalar_one_or_none())

    def store(self, key: str, value: Any) -> Any:
        blob = to_blob(value)
        self._retry("store", self.conflict_retries).run(self._store_once, key, blob)
        return value

    def _store_once(self, key: str, blob: bytes) -> None:
        with self._begin("store", key) as conn:
            if conn.execute(self._update(key, blob)).rowcount == 1:
                return
            try:
                conn.execute(self._insert(key, blob))
            except IntegrityError as e:
                raise ConflictError("Concurrent insert on store", cause=e).with_context(
                    backend=self.backend, table=self.table.name, key=key, operation="store"
                ) from e

    def create(self, key: str, value: Any) -> bool:
        blob = to_blob(value)
        try:
            with self._begin("create", key) as conn:
                conn.execute(self._insert(key, blob))
        except IntegrityError:
            return False
        return True

    def increment(self, key: str, amount: int = 1) -> int:
        amount = check_amount(amount)
        return self._retry("increment", self.increment_retries).run(self._increment_once, key, amount)

    def _add_expression(self, amount: int) -> Any:
        """Value-column expression adding ``amount`` in the database."""
        return add_expression(self.value_col, amount)

    def _increment_once(self, key: str, amount: int) -> int:
        try:
            with self._begin("increment", key) as conn:
                conn.execute(self._insert(key, encode_int(amount)))
            return amount
        except IntegrityError:
            pass

        with self._begin("increment", key) as conn:
            current = from_blob(
                conn.execute(self._select_value(key).with_for_update()).scalar_one_or_none()
            )
            if current is None:
                raise ConflictError("Record deleted during increment").with_context(
                    backend=self.backend, table=self.table.name, key=key, operation="increment"
                )
            parse_int(current, key)
            stmt = (
                update(self.table)
                .where(self.key_col == key)
                .values({self.value_col.name: self._add_expression(amount)})
            )
            if conn.execute(stmt).rowcount != 1:
                raise ConflictError("No row updated").with_context(
                    backend=self.backend, table=self.table.name, key=key, operation="increment"
                )
            return parse_int(from_blob(conn.execute(self._select_value(key)).scalar_one()), key)

    def delete(self, key: str) -> bytes | None:
        with self._begin("delete", key) as conn:
            value = from_blob(
                conn.execute(self._select_value(key).with_for_update()).scalar_one_or_none()
            )
            if value is None:
                return None
            conn.execute(delete(self.table).where(self.key_col == key))
            return value

    def clear(self) -> None:
        with self._begin("clear") as conn:
            conn.execute(delete(self.table))

    def each_key(self) -> Iterator[str]:
        """Keys in primary-key order, fetched one page at a time.

        Each page is a separate query resuming after the last key seen, so no
        connection is held while the caller consumes keys.
        """
        last: str | None = None
        while True:
            stmt = select(self.key_col).order_by(self.key_col).limit(self.page_size)
            if last is not None:
                stmt = stmt.where(self.key_col > last)
            with self._connect("each_key") as conn:
                page = list(conn.execute(stmt).scalars())
            yield from page
            if len(page) < self.page_size:
                return
            last = page[-1]

    def close(self) -> None:
        if self._engine is None:
            return
        if self._owns_engine:
            self._engine.dispose()
            logger.debug("kv.engine_disposed", table=self.table.name)
        self._engine = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(table={self.table.name!r})"


__all__ = [
    "DEFAULT_TABLE",
    "SQLStore",
]
