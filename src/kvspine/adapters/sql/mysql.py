"""MySQL / MariaDB key-value adapter."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Integer, String, Table, cast
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.exc import DBAPIError

from kvspine.core.codec import check_amount, encode_int, from_blob, parse_int, to_blob
from kvspine.core.errors import ConflictError, KVError

from .base import SQLStore

# ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK
RETRYABLE_ERRNOS = frozenset({1205, 1213})


def upsert_statement(table: Table, key: str, blob: bytes):
    stmt = mysql_insert(table).values({table.c.k.name: key, table.c.v.name: blob})
    return stmt.on_duplicate_key_update({table.c.v.name: stmt.inserted[table.c.v.name]})


def increment_statement(table: Table, key: str, amount: int):
    """``ON DUPLICATE KEY UPDATE v = CAST(CAST(v AS SIGNED) + amount AS CHAR)``."""
    stmt = mysql_insert(table).values({table.c.k.name: key, table.c.v.name: encode_int(amount)})
    return stmt.on_duplicate_key_update(
        {table.c.v.name: cast(cast(table.c.v, Integer) + amount, String)}
    )


class MySQLStore(SQLStore):
    """
    MySQL / MariaDB key-value adapter.

    ``store`` is a single ``ON DUPLICATE KEY UPDATE`` statement. ``increment``
    locks the row, checks the existing value really is an integer (MySQL
    would silently cast garbage to 0), then upserts-adds and reads back, all
    in one transaction.
    """

    dialect_name = "mysql"

    def _translate(self, error: DBAPIError, operation: str, key: str | None) -> KVError:
        errno = error.orig.args[0] if error.orig is not None and error.orig.args else None
        if errno in RETRYABLE_ERRNOS:
            return ConflictError(f"{operation} aborted by lock contention", cause=error).with_context(
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
            existing = from_blob(
                conn.execute(self._select_value(key).with_for_update()).scalar_one_or_none()
            )
            if existing is not None:
                parse_int(existing, key)
            conn.execute(increment_statement(self.table, key, amount))
            return parse_int(conn.execute(self._select_value(key)).scalar_one(), key)


__all__ = [
    "MySQLStore",
    "increment_statement",
    "upsert_statement",
]
