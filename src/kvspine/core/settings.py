"""Environment-driven configuration for kvspine stores.

``KVSettings`` holds every option the three adapter families read, so an
application can pick its backend from the environment alone.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads ``KVSPINE_*`` env vars and ``.env`` files
    - **Sensible defaults:** A local SQLite file works out of the box

Examples:
    >>> from kvspine.core.settings import KVSettings
    >>> s = KVSettings(backend="couch", couch_db="sessions")
    >>> s.couch_db
    'sessions'

Tags:
    settings, configuration, pydantic, environment, kvspine
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class KVSettings(BaseSettings):
    """Settings shared by every kvspine adapter.

    Fields
    ──────
    backend          : Adapter family (``sql``, ``orm``, ``couch``)
    url              : SQLAlchemy database URL for the relational families
    table            : Table (relational) name
    key_column       : Key column name (ORM family)
    value_column     : Value column name (ORM family)
    couch_url        : Base URL of the document store server
    couch_db         : Document store database name
    value_field      : Document field holding scalar values
    type_field       : Document field holding the value type tag
    page_size        : Page size for ``each_key`` on the document store
    rev_cache_size   : Capacity of the revision cache
    increment_retries: Retry budget for increment races
    conflict_retries : Retry budget for store/create/delete races
    timeout          : HTTP timeout in seconds
    log_level        : Level ``store_from_settings`` configures structlog
                       with (``None`` leaves logging alone)
    json_logs        : Render logs as JSON (``None`` → auto-detect TTY)
    """

    model_config = SettingsConfigDict(
        env_prefix="KVSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Backend selection ────────────────────────────────────────
    backend: Literal["sql", "orm", "couch"] = "sql"

    # ── Relational ───────────────────────────────────────────────
    url: str = "sqlite:///kvspine.db"
    table: str = "kvspine"
    key_column: str = "k"
    value_column: str = "v"

    # ── Document store ───────────────────────────────────────────
    couch_url: str = "http://127.0.0.1:5984"
    couch_db: str = "kvspine"
    value_field: str = "value"
    type_field: str = "type"
    page_size: int = Field(default=1000, ge=1)
    rev_cache_size: int = Field(default=10_000, ge=1)
    timeout: float = Field(default=30.0, gt=0)

    # ── Retry budgets ────────────────────────────────────────────
    increment_retries: int = Field(default=3, ge=0)
    conflict_retries: int = Field(default=10, ge=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str | None = None
    json_logs: bool | None = None

    @field_validator("table", "key_column", "value_column", "couch_db")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


__all__ = ["KVSettings"]
