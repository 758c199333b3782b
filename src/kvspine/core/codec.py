"""Value conversion between callers and relational blob columns."""

from __future__ import annotations

from typing import Any

from kvspine.core.errors import ValueTypeError


def to_blob(value: Any) -> bytes:
    """Coerce a caller value into the bytes stored in a blob column.

    ``bytes``-like objects pass through; anything else is rejected so the
    store never silently interprets a value.
    """
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    raise ValueTypeError(
        f"Expected bytes, got {type(value).__name__}",
        value_type=type(value).__name__,
    )


def from_blob(raw: Any) -> bytes | None:
    """Normalize what a driver hands back (``memoryview`` from psycopg2, ...)."""
    if raw is None:
        return None
    if isinstance(raw, bytes):
        return raw
    if isinstance(raw, (bytearray, memoryview)):
        return bytes(raw)
    if isinstance(raw, str):
        return raw.encode("utf-8")
    # numeric affinity columns (SQLite) can return ints
    return str(raw).encode("ascii")


def encode_int(number: int) -> bytes:
    """Integers are stored as their decimal ASCII form."""
    return str(number).encode("ascii")


def parse_int(raw: Any, key: str | None = None) -> int:
    """Parse a stored value as an integer for ``increment``.

    Raises:
        ValueTypeError: The stored value is not an integer. Never retried.
    """
    if isinstance(raw, bool):
        raise ValueTypeError("Boolean value cannot be incremented", value_type="bool").with_context(key=key)
    if isinstance(raw, int):
        return raw
    text = raw
    if isinstance(raw, (bytes, bytearray, memoryview)):
        try:
            text = bytes(raw).decode("ascii")
        except UnicodeDecodeError as e:
            raise ValueTypeError(
                "Stored value is not an integer", value_type="bytes", cause=e
            ).with_context(key=key) from e
    if not isinstance(text, str):
        raise ValueTypeError(
            f"Cannot increment value of type {type(raw).__name__}",
            value_type=type(raw).__name__,
        ).with_context(key=key)
    try:
        return int(text.strip())
    except ValueError as e:
        raise ValueTypeError(
            "Stored value is not an integer", value_type=type(raw).__name__, cause=e
        ).with_context(key=key) from e


def check_amount(amount: Any) -> int:
    """Validate the increment amount before touching the backend."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueTypeError(
            f"Increment amount must be an integer, got {type(amount).__name__}",
            value_type=type(amount).__name__,
        )
    return amount


__all__ = [
    "to_blob",
    "from_blob",
    "encode_int",
    "parse_int",
    "check_amount",
]
