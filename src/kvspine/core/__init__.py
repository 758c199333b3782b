"""Core primitives shared by every kvspine adapter.

Modules
-------
errors          Typed error hierarchy (``KVError`` and friends)
retry           Bounded retry strategies + ``RetryContext``
cache           ``LRUCache`` revision cache
codec           Blob/integer value conversion
schema          Key-value table definition + first-use provisioning
engine          SQLAlchemy engine factory
logging         structlog configuration
settings        ``KVSettings`` (pydantic-settings)
"""

from kvspine.core.cache import CacheBackend, LRUCache
from kvspine.core.errors import (
    BackendError,
    ConfigError,
    ConflictError,
    DatabaseConnectionError,
    ErrorCategory,
    ErrorContext,
    HTTPStatusError,
    InvalidConfigError,
    KVError,
    MissingConfigError,
    NetworkError,
    RetriesExhaustedError,
    TransientError,
    ValidationError,
    ValueTypeError,
    categorize_error,
    is_retryable,
)
from kvspine.core.logging import configure_logging, get_logger
from kvspine.core.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    RetryContext,
    RetryStrategy,
    conflict_policy,
)
from kvspine.core.settings import KVSettings

__all__ = [
    # errors
    "ErrorCategory",
    "ErrorContext",
    "KVError",
    "ConflictError",
    "RetriesExhaustedError",
    "TransientError",
    "NetworkError",
    "DatabaseConnectionError",
    "BackendError",
    "HTTPStatusError",
    "ValidationError",
    "ValueTypeError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "is_retryable",
    "categorize_error",
    # retry
    "RetryStrategy",
    "ConstantBackoff",
    "ExponentialBackoff",
    "RetryContext",
    "conflict_policy",
    # cache
    "CacheBackend",
    "LRUCache",
    # logging
    "configure_logging",
    "get_logger",
    # settings
    "KVSettings",
]
