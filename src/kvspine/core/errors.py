"""
Structured error types for kvspine.

Every adapter reports failures through one typed hierarchy so that callers
(and the retry policy) can tell a lost optimistic-concurrency race apart from
a type mismatch or a dead backend without string-matching driver messages.

Manifesto:
    - **Typed hierarchy:** One base class, one subclass per failure family
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Rich context:** Errors carry backend, table, key and HTTP details
    - **Error chaining:** Driver exceptions are preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                           KVError                                │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConflictError        TransientError       BackendError          │
        │  (retryable=True)     (retryable=True)     (fatal)               │
        │       │                    │                    │                │
        │  RetriesExhausted     NetworkError         HTTPStatusError       │
        │  (fatal)              DatabaseConnection                         │
        │                                                                  │
        │  ValidationError      ConfigError                                │
        │       │                    │                                     │
        │  ValueTypeError       MissingConfigError                         │
        │                       InvalidConfigError                         │
        └─────────────────────────────────────────────────────────────────┘

Not-found is deliberately absent: ``load`` and ``delete`` return ``None`` for
a missing key and never raise.

Examples:
    >>> error = ConflictError("no row updated").with_context(key="ctr")
    >>> error.retryable
    True
    >>> error.context.key
    'ctr'

Tags:
    error-handling, exception-hierarchy, retry-logic, kvspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        CONFLICT: Lost optimistic-concurrency race (unique violation,
            stale revision, zero-row conditional update)
        NETWORK: Connection, timeout, DNS
        DATABASE: Query failure, pool exhaustion
        STORAGE: Document store HTTP failures
        VALIDATION: Unsupported value types, non-integer increments
        CONFIG: Unknown backend, bad options
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    CONFLICT = "CONFLICT"
    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    STORAGE = "STORAGE"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to a ``KVError``.

    Only non-``None`` fields end up in ``to_dict()``. Values are never
    recorded here, only keys and locations.

    Attributes:
        backend: Adapter family (``sql``, ``orm``, ``couch``)
        table: Table, collection or database name
        key: Record key the operation targeted
        operation: Contract operation name (``increment``, ``delete``, ...)
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    backend: str | None = None
    table: str | None = None
    key: str | None = None
    operation: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for name in ["backend", "table", "key", "operation", "url", "http_status"]:
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class KVError(Exception):
    """
    Base exception for all kvspine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.

    Examples:
        >>> error = KVError("boom")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> KVError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ConflictError("stale revision").with_context(
                backend="couch", key="user:1"
            )
        """
        for name, value in kwargs.items():
            if hasattr(self.context, name) and name != "metadata":
                setattr(self.context, name, value)
            else:
                self.context.metadata[name] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFLICT ERRORS (optimistic concurrency)
# =============================================================================


class ConflictError(KVError):
    """
    A detect-then-recover attempt lost a race.

    Raised for unique-constraint violations on a blind insert, a stale
    revision token on a conditional write, or a conditional update that
    affected zero rows. The retry policy re-enters the operation from the
    top on this error.
    """

    default_category = ErrorCategory.CONFLICT
    default_retryable = True


class RetriesExhaustedError(ConflictError):
    """
    The retry budget ran out while the operation kept losing races.

    ``attempts`` is the number of times the body ran; ``cause`` is the last
    failure observed.
    """

    default_retryable = False

    def __init__(self, message: str, *, attempts: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        return result


# =============================================================================
# TRANSIENT ERRORS (usually retryable)
# =============================================================================


class TransientError(KVError):
    """Temporary failure that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Transport-level failure talking to a backend."""

    default_category = ErrorCategory.NETWORK


class DatabaseConnectionError(TransientError):
    """Database connection or pool error."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# BACKEND ERRORS (fatal unless a caller opts in)
# =============================================================================


class BackendError(KVError):
    """Unclassified backend failure."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class HTTPStatusError(BackendError):
    """Document store answered with an unexpected HTTP status."""

    default_category = ErrorCategory.STORAGE

    def __init__(
        self,
        status: int,
        method: str,
        path: str,
        message: str | None = None,
        **kwargs: Any,
    ):
        self.status = status
        self.method = method
        self.path = path
        super().__init__(message or f"HTTP error {status} ({method} {path})", **kwargs)
        self.context.http_status = status


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(KVError):
    """
    Caller-supplied data cannot be handled.

    Never retryable: retrying cannot fix the data.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class ValueTypeError(ValidationError, TypeError):
    """Value has the wrong type for the operation (e.g. non-integer increment)."""

    def __init__(self, message: str, *, value_type: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.value_type = value_type


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(KVError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, KVError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, KVError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (TypeError, ValueError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
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
]
