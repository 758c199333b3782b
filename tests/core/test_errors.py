"""
Tests for kvspine.core.errors module.

Covers:
- Hierarchy and default retry semantics per family
- Context attachment (fluent ``with_context``) and serialization
- HTTP status errors carrying the status in their context
- ``is_retryable`` / ``categorize_error`` helpers
"""

import pytest

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


class TestHierarchy:
    """Each family has the right base, category and retry default."""

    @pytest.mark.parametrize(
        "error_class,category,retryable",
        [
            (ConflictError, ErrorCategory.CONFLICT, True),
            (NetworkError, ErrorCategory.NETWORK, True),
            (DatabaseConnectionError, ErrorCategory.DATABASE, True),
            (BackendError, ErrorCategory.DATABASE, False),
            (ValidationError, ErrorCategory.VALIDATION, False),
            (ValueTypeError, ErrorCategory.VALIDATION, False),
            (ConfigError, ErrorCategory.CONFIG, False),
        ],
    )
    def test_defaults(self, error_class, category, retryable):
        error = error_class("boom")
        assert isinstance(error, KVError)
        assert error.category == category
        assert error.retryable is retryable

    def test_transient_subclasses(self):
        assert issubclass(NetworkError, TransientError)
        assert issubclass(DatabaseConnectionError, TransientError)

    def test_value_type_error_is_type_error(self):
        """Callers catching the builtin TypeError also catch ValueTypeError."""
        with pytest.raises(TypeError):
            raise ValueTypeError("not an integer", value_type="bytes")

    def test_retries_exhausted_is_conflict_but_not_retryable(self):
        error = RetriesExhaustedError("gave up", attempts=4)
        assert isinstance(error, ConflictError)
        assert error.retryable is False
        assert error.attempts == 4
        assert error.to_dict()["attempts"] == 4

    def test_retryable_override(self):
        error = BackendError("flaky", retryable=True)
        assert error.retryable is True

    def test_config_errors(self):
        missing = MissingConfigError("url")
        invalid = InvalidConfigError("backend", "redis")
        assert missing.key == "url"
        assert "url" in str(missing)
        assert invalid.value == "redis"
        assert "'redis'" in str(invalid)


class TestContext:
    """Context attachment and serialization."""

    def test_with_context_sets_known_fields(self):
        error = ConflictError("stale").with_context(backend="couch", key="user:1", operation="store")
        assert error.context.backend == "couch"
        assert error.context.key == "user:1"
        assert error.context.operation == "store"

    def test_with_context_unknown_fields_go_to_metadata(self):
        error = KVError("x").with_context(attempt=3)
        assert error.context.metadata == {"attempt": 3}

    def test_context_to_dict_skips_none(self):
        ctx = ErrorContext(table="kvspine", key="a")
        assert ctx.to_dict() == {"table": "kvspine", "key": "a"}

    def test_error_to_dict(self):
        cause = RuntimeError("driver said no")
        error = BackendError("store failed", cause=cause).with_context(table="t")
        data = error.to_dict()
        assert data["error_type"] == "BackendError"
        assert data["category"] == "DATABASE"
        assert data["retryable"] is False
        assert data["context"] == {"table": "t"}
        assert data["cause"] == "driver said no"

    def test_cause_is_chained(self):
        cause = ValueError("inner")
        error = ConflictError("outer", cause=cause)
        assert error.__cause__ is cause

    def test_repr(self):
        assert repr(ConflictError("lost")) == "ConflictError('lost', category=CONFLICT)"


class TestHTTPStatusError:
    def test_message_and_context(self):
        error = HTTPStatusError(500, "PUT", "/kvspine/a")
        assert str(error) == "HTTP error 500 (PUT /kvspine/a)"
        assert error.status == 500
        assert error.context.http_status == 500
        assert error.category == ErrorCategory.STORAGE
        assert error.retryable is False

    def test_retryable_on_write_paths(self):
        error = HTTPStatusError(503, "PUT", "/db/k", retryable=True)
        assert error.retryable is True


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(ConflictError("x"))
        assert not is_retryable(ValueTypeError("x"))
        assert is_retryable(ConnectionError())
        assert is_retryable(TimeoutError())
        assert not is_retryable(RuntimeError())

    def test_categorize_error(self):
        assert categorize_error(ConflictError("x")) == ErrorCategory.CONFLICT
        assert categorize_error(ConnectionError()) == ErrorCategory.NETWORK
        assert categorize_error(TypeError()) == ErrorCategory.VALIDATION
        assert categorize_error(RuntimeError()) == ErrorCategory.UNKNOWN
