"""
Key-value table definition and first-use provisioning.

Every relational store lives in one two-column table: a string primary key
and a blob value. Tables are created lazily the first time a store is opened
against them.

Manifesto:
    Several store handles (threads, or whole processes) can open the same
    table for the first time at once. Exactly one of them may issue the DDL;
    the rest must see the table already there and carry on, never surfacing
    "table already exists" to the caller.

    - **Process-wide lock:** Serializes check-then-create inside a process
    - **Tolerant DDL:** A cross-process loser re-checks and proceeds
    - **Short critical section:** Held only for the existence check + create

Architecture:
    ::

        ensure_table(engine, table)
          ├── has_table?  ── yes ──► return False      (no lock taken)
          └── no
               └── with _table_lock:
                     ├── has_table? ── yes ──► return False
                     ├── CREATE TABLE
                     │     └── error? ── has_table? ── yes ──► return False
                     └── return True

Examples:
    >>> from sqlalchemy import MetaData
    >>> table = kv_table("sessions", MetaData())
    >>> [c.name for c in table.columns]
    ['k', 'v']

Tags:
    schema, ddl, provisioning, locking, kvspine
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from sqlalchemy import Column, Integer, LargeBinary, MetaData, String, Table, cast, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError, ProgrammingError

from kvspine.core.errors import BackendError
from kvspine.core.logging import get_logger

logger = get_logger(__name__)

KEY_LENGTH = 255

# Serializes table existence-check-plus-create across every store in the process.
_table_lock = threading.RLock()

TableCreator = Callable[[Connection, str], None]


def kv_table(
    name: str,
    metadata: MetaData | None = None,
    *,
    schema: str | None = None,
    key_column: str = "k",
    value_column: str = "v",
) -> Table:
    """Build the two-column ``(key, value)`` table definition."""
    return Table(
        name,
        metadata if metadata is not None else MetaData(),
        Column(key_column, String(KEY_LENGTH), primary_key=True, nullable=False),
        Column(value_column, LargeBinary),
        schema=schema,
    )


def add_expression(column: Any, amount: int) -> Any:
    """Server-side ``v + amount`` over a decimal-text blob column.

    Renders as ``CAST(CAST(CAST(v AS INTEGER) + :amount AS VARCHAR) AS BLOB)``
    on SQLite, so the row is rewritten in place under the write lock.
    """
    return cast(cast(cast(column, Integer) + amount, String), LargeBinary)


def table_exists(bind: Engine | Connection, name: str, schema: str | None = None) -> bool:
    return inspect(bind).has_table(name, schema=schema)


def ensure_table(
    engine: Engine,
    table: Table,
    *,
    create: TableCreator | None = None,
) -> bool:
    """Create ``table`` unless it exists.

    Args:
        engine: Engine to issue DDL on.
        table: Table definition to create.
        create: Optional custom creator called with a connection and the
            table name instead of ``table.create``.

    Returns:
        ``True`` if this call issued the DDL, ``False`` if the table was
        already present.
    """
    if table_exists(engine, table.name, table.schema):
        return False

    with _table_lock:
        try:
            with engine.begin() as conn:
                if table_exists(conn, table.name, table.schema):
                    return False
                if create is not None:
                    create(conn, table.name)
                else:
                    table.create(conn)
        except (OperationalError, ProgrammingError) as e:
            # another process won the race
            if table_exists(engine, table.name, table.schema):
                return False
            raise BackendError(
                f"Failed to create table {table.name}: {e}", cause=e
            ).with_context(table=table.name) from e

    logger.info("kv.table_created", table=table.name)
    return True


__all__ = [
    "KEY_LENGTH",
    "TableCreator",
    "add_expression",
    "kv_table",
    "table_exists",
    "ensure_table",
]
