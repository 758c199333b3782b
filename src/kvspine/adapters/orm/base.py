"""Declarative base and per-table model factory for the ORM adapter.

Uses SQLAlchemy 2.0 ``DeclarativeBase``. Key-value tables are not known in
advance, so ``record_model()`` declares one mapped class per
``(table, key column, value column)`` on first use and reuses it afterwards.
"""

from __future__ import annotations

import re
import threading

from sqlalchemy import LargeBinary, String
from sqlalchemy.orm import DeclarativeBase, mapped_column

from kvspine.core.errors import InvalidConfigError
from kvspine.core.schema import KEY_LENGTH


class KVBase(DeclarativeBase):
    """Shared declarative base for every key-value record model."""


_models: dict[str, type[KVBase]] = {}
_model_lock = threading.Lock()


def _class_name(table_name: str) -> str:
    return "KVRecord_" + re.sub(r"\W", "_", table_name)


def record_model(
    table_name: str,
    *,
    key_column: str = "k",
    value_column: str = "v",
) -> type[KVBase]:
    """Mapped class for ``table_name``, declared once per process.

    Raises:
        InvalidConfigError: ``table_name`` was already declared with
            different column names.
    """
    with _model_lock:
        model = _models.get(table_name)
        if model is None:
            attrs = {
                "__tablename__": table_name,
                key_column: mapped_column(String(KEY_LENGTH), primary_key=True),
                value_column: mapped_column(LargeBinary, nullable=True),
            }
            model = type(_class_name(table_name), (KVBase,), attrs)
            _models[table_name] = model
            return model

    columns = [c.name for c in model.__table__.columns]
    if columns != [key_column, value_column]:
        raise InvalidConfigError(
            "table",
            table_name,
            f"Table {table_name} already mapped with columns {columns}",
        )
    return model


__all__ = [
    "KVBase",
    "record_model",
]
