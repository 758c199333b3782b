"""PostgreSQL key-value adapter.

Every hard operation is one statement: ``INSERT … ON CONFLICT DO UPDATE``
for ``store`` and ``increment`` (with ``RETURNING`` the new value), and
``DELETE … RETURNING`` for ``delete``. No retry loop is needed except for
serialization failures and deadlocks, which PostgreSQL reports explicitly.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import BigInteger, Table, Text, cast, delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, DataError

from kvspine.core.codec import check_amount, encode_int, from_blob, parse_int, to_blob
from kvspine.core.errors import ConflictError, KVError, ValueTypeError

from .base import SQLStore

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def upsert_statement(table: Table, key: str, blob: bytes):
    stmt = pg_insert(table).values({table.c.k.name: key, table.c.v.name: blob})
    return stmt.on_conflict_do_update(
        index_elements=[table.c.k],
        set_={table.c.v.name: stmt.excluded[table.c.v.name]},
    )


def increment_statement(table: Table, key: str, amount: int):
    """Upsert-add returning the new value.

    The blob holds decimal ASCII, so the existing value is decoded, cast to
    ``bigint``, added to, and encoded back in SQL.
    """
    added = cast(cast(func.convert_from(table.c.v, "UTF8"), BigInteger) + amount, Text)
    stmt = pg_insert(table).values({table.c.k.name: key, table.c.v.name: encode_int(amount)})
    return stmt.on_conflict_do_update(
        index_elements=[table.c.k],
        set_={table.c.v.name: func.convert_to(added, "UTF8")},
    ).returning(table.c.v)


def delete_returning_statement(table: Table, key: str):
    return delete(table).where(table.c.k == key).returning(table.c.v)


class PostgreSQLStore(SQLStore):
    """PostgreSQL key-value adapter (psycopg2 or any SQLAlchemy PG driver)."""

    dialect_name = "postgresql"

    def _translate(self, error: DBAPIError, operation: str, key: str | None) -> KVError:
        sqlstate = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
        if isinstance(error, DataError) and operation == "increment":
            return ValueTypeError(
                "Stored value is not an integer", value_type="bytes", cause=error
            ).with_context(backend=self.backend, table=self.table.name, key=key, operation=operation)
        if sqlstate in RETRYABLE_SQLSTATES:
            return ConflictError(f"{operation} aborted by concurrent transaction", cause=error).with_context(
                backend=self.backend, table=self.table.name, key=key, operation=operation
            )
        return super()._translate(error, operation, key)

    def store(self, key: str, value: Any) -> Any:
        blob = to_blob(value)
        self._retry("store", self.conflict_retries).run(self._upsert, key, blob)
        return value

    def _upsert(self, key: str, blob: bytes) -> None:
        with self._begin("store", key) as conn:
            conn.execute(upsert_statement(self.table, key, blob))

    def increment(self, key: str, amount: int = 1) -> int:
        amount = check_amount(amount)
        return self._retry("increment", self.increment_retries).run(self._upsert_add, key, amount)

    def _upsert_add(self, key: str, amount: int) -> int:
        with self._begin("increment", key) as conn:
            raw = conn.execute(increment_statement(self.table, key, amount)).scalar_one()
        return parse_int(from_blob(raw), key)

    def delete(self, key: str) -> bytes | None:
        with self._begin("delete", key) as conn:
            return from_blob(
                conn.execute(delete_returning_statement(self.table, key)).scalar_one_or_none()
            )


__all__ = [
    "PostgreSQLStore",
    "increment_statement",
    "upsert_statement",
    "delete_returning_statement",
]
