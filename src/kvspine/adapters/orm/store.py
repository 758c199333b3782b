"""ORM-style key-value adapter built on SQLAlchemy sessions and mapped models.

Manifesto:
    Applications that already run a SQLAlchemy ORM want their key-value data
    in the same database, the same pool, and ideally an already-declared
    model. This adapter works against a mapped class instead of a raw table
    and drives every operation through a ``Session`` transaction.

    The hard operations follow the same detect-then-recover protocol as the
    SQL-toolkit adapter:

    - ``increment``: blind insert of the amount; on a unique violation, a
      transaction validates the existing integer under a row lock, adds the
      amount in the database (``v = v + amount``) and fails with "No row
      updated" only if the row vanished. That failure drives the outer
      bounded retry.
    - ``delete``: the value is read under ``SELECT … FOR UPDATE`` and deleted
      in the same transaction.
    - table creation and pool registration happen under process-wide locks.

Tags:
    kvspine, orm, sqlalchemy, session, adapter

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, ClassVar

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from kvspine.adapters.base import Feature, KeyValueStore
from kvspine.core.codec import check_amount, encode_int, from_blob, parse_int, to_blob
from kvspine.core.errors import (
    BackendError,
    ConflictError,
    DatabaseConnectionError,
    KVError,
)
from kvspine.core.retry import RetryContext, conflict_policy
from kvspine.core.schema import TableCreator, add_expression, ensure_table
from kvspine.core.settings import KVSettings

from .base import KVBase, record_model
from .session import ConnectionSpec, kv_session_factory, retrieve_or_establish_engine

EACH_KEY_PAGE_SIZE = 1000

_NO_UPDATE = {"synchronize_session": False}


class ORMStore(KeyValueStore):
    """
    Key-value store over a mapped class.

    Args:
        connection: URL string, ``URL``, mapping of URL parts, or an
            ``Engine``. Strings/mappings resolve to a shared, process-wide
            engine. Omitted, the URL comes from ``KVSettings`` (``KVSPINE_URL``).
        table: Table name (default ``kvspine``).
        model: Pre-declared mapped class to use instead of ``table``.
        key_column, value_column: Column names (default ``k`` / ``v``).
        create_table: ``True`` to create the table if missing, a callable
            ``(connection, table_name)`` for custom DDL, ``False`` to skip.
        increment_retries: Retry budget for increment races.
        conflict_retries: Retry budget for store races.
    """

    backend: ClassVar[str] = "orm"
    features = frozenset({Feature.CREATE, Feature.INCREMENT, Feature.EACH_KEY})

    def __init__(
        self,
        connection: ConnectionSpec | Engine | None = None,
        *,
        table: str = "kvspine",
        model: type[Any] | None = None,
        key_column: str = "k",
        value_column: str = "v",
        create_table: TableCreator | bool = True,
        increment_retries: int = 3,
        conflict_retries: int = 10,
        page_size: int = EACH_KEY_PAGE_SIZE,
        **engine_kwargs: Any,
    ):
        if isinstance(connection, Engine):
            engine = connection
        else:
            engine = retrieve_or_establish_engine(
                connection if connection is not None else KVSettings().url, **engine_kwargs
            )

        self._model: type[Any] | None = model or record_model(
            table, key_column=key_column, value_column=value_column
        )
        self._session_factory: Any = kv_session_factory(engine)
        self._engine: Engine | None = engine
        self.key_column = key_column
        self.value_column = value_column
        self.increment_retries = increment_retries
        self.conflict_retries = conflict_retries
        self.page_size = page_size

        if create_table:
            ensure_table(
                engine,
                self._model.__table__,
                create=create_table if callable(create_table) else None,
            )

    # -- Plumbing ----------------------------------------------------------

    @property
    def model(self) -> type[Any]:
        if self._model is None:
            raise BackendError("Store is closed").with_context(backend=self.backend)
        return self._model

    @property
    def table_name(self) -> str:
        return self.model.__table__.name

    @property
    def _key(self) -> Any:
        return getattr(self.model, self.key_column)

    @property
    def _value(self) -> Any:
        return getattr(self.model, self.value_column)

    @contextmanager
    def _transaction(self, operation: str, key: str | None = None) -> Iterator[Session]:
        """Session inside a transaction: commit on success, rollback on error."""
        if self._session_factory is None:
            raise BackendError("Store is closed").with_context(backend=self.backend)
        try:
            with self._session_factory.begin() as session:
                yield session
        except IntegrityError:
            raise
        except DBAPIError as e:
            if e.connection_invalidated:
                error: KVError = DatabaseConnectionError(
                    f"Connection lost during {operation}: {e.orig}", cause=e
                )
            else:
                error = BackendError(f"{operation} failed: {e.orig}", cause=e)
            raise error.with_context(
                backend=self.backend, table=self.table_name, key=key, operation=operation
            ) from e

    def _conflict(self, message: str, key: str, operation: str) -> ConflictError:
        error = ConflictError(message)
        error.with_context(backend=self.backend, table=self.table_name, key=key, operation=operation)
        return error

    def _select_value(self, session: Session, key: str, *, lock: bool = False) -> bytes | None:
        stmt = select(self._value).where(self._key == key)
        if lock:
            stmt = stmt.with_for_update()
        return from_blob(session.scalar(stmt))

    def _insert(self, session: Session, key: str, blob: bytes) -> None:
        session.execute(insert(self.model).values({self.key_column: key, self.value_column: blob}))

    def _update(self, session: Session, key: str, value: Any) -> int:
        stmt = update(self.model).where(self._key == key).values({self.value_column: value})
        return session.execute(stmt, execution_options=_NO_UPDATE).rowcount

    # -- Contract ----------------------------------------------------------

    def exists(self, key: str) -> bool:
        with self._transaction("exists", key) as session:
            stmt = select(self._key).where(self._key == key).limit(1)
            return session.execute(stmt).first() is not None

    def load(self, key: str) -> bytes | None:
        with self._transaction("load", key) as session:
            return self._select_value(session, key)

    def store(self, key: str, value: Any) -> Any:
        blob = to_blob(value)
        RetryContext(conflict_policy(self.conflict_retries), operation="store").run(
            self._store_once, key, blob
        )
        return value

    def _store_once(self, key: str, blob: bytes) -> None:
        try:
            with self._transaction("store", key) as session:
                if self._update(session, key, blob) != 1:
                    self._insert(session, key, blob)
        except IntegrityError as e:
            raise self._conflict("Concurrent insert on store", key, "store") from e

    def create(self, key: str, value: Any) -> bool:
        blob = to_blob(value)
        try:
            with self._transaction("create", key) as session:
                self._insert(session, key, blob)
        except IntegrityError:
            return False
        return True

    def increment(self, key: str, amount: int = 1) -> int:
        amount = check_amount(amount)
        return RetryContext(conflict_policy(self.increment_retries), operation="increment").run(
            self._increment_once, key, amount
        )

    def _increment_once(self, key: str, amount: int) -> int:
        try:
            with self._transaction("increment", key) as session:
                self._insert(session, key, encode_int(amount))
            return amount
        except IntegrityError:
            pass

        with self._transaction("increment", key) as session:
            current = self._select_value(session, key, lock=True)
            if current is None:
                raise self._conflict("Record deleted during increment", key, "increment")
            parse_int(current, key)
            if self._update(session, key, add_expression(self._value, amount)) != 1:
                raise self._conflict("No row updated", key, "increment")
            return parse_int(self._select_value(session, key), key)

    def delete(self, key: str) -> bytes | None:
        with self._transaction("delete", key) as session:
            value = self._select_value(session, key, lock=True)
            if value is None:
                return None
            session.execute(
                delete(self.model).where(self._key == key), execution_options=_NO_UPDATE
            )
            return value

    def clear(self) -> None:
        with self._transaction("clear") as session:
            session.execute(delete(self.model), execution_options=_NO_UPDATE)

    def each_key(self) -> Iterator[str]:
        """Keys in primary-key order, one short transaction per page."""
        last: str | None = None
        while True:
            stmt = select(self._key).order_by(self._key).limit(self.page_size)
            if last is not None:
                stmt = stmt.where(self._key > last)
            with self._transaction("each_key") as session:
                page = list(session.scalars(stmt))
            yield from page
            if len(page) < self.page_size:
                return
            last = page[-1]

    def close(self) -> None:
        # engines belong to the process-wide registry or the caller
        self._model = None
        self._session_factory = None
        self._engine = None

    def __repr__(self) -> str:
        name = self._model.__table__.name if self._model is not None else None
        return f"ORMStore(table={name!r})"


__all__ = [
    "KVBase",
    "ORMStore",
]
