"""SQLite key-value adapter."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Table, delete, insert

from kvspine.core.codec import from_blob, to_blob

from .base import SQLStore


def replace_statement(table: Table, key: str, blob: bytes):
    """``INSERT OR REPLACE`` single-statement upsert."""
    return insert(table).prefix_with("OR REPLACE").values({table.c.k.name: key, table.c.v.name: blob})


def delete_returning_statement(table: Table, key: str):
    return delete(table).where(table.c.k == key).returning(table.c.v)


class SQLiteStore(SQLStore):
    """
    SQLite key-value adapter.

    SQLite has no row locks, so ``delete`` relies on ``DELETE … RETURNING``
    (SQLite 3.35+) to read and remove in one statement. Older libraries fall
    back to the generic path.
    """

    dialect_name = "sqlite"

    def store(self, key: str, value: Any) -> Any:
        blob = to_blob(value)
        with self._begin("store", key) as conn:
            conn.execute(replace_statement(self.table, key, blob))
        return value

    def delete(self, key: str) -> bytes | None:
        if not self.engine.dialect.delete_returning:
            return super().delete(key)
        with self._begin("delete", key) as conn:
            return from_blob(
                conn.execute(delete_returning_statement(self.table, key)).scalar_one_or_none()
            )


__all__ = [
    "SQLiteStore",
]
