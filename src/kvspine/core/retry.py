"""Bounded retry policies for detect-then-recover operations.

Backends without a native compare-and-swap can only notice a lost race after
the fact (a unique violation, a stale revision, a conditional update that
touched zero rows). Correctness is restored by re-running the operation body,
never by locking more than a single key. This module supplies the loop.

Only failures the strategy classifies as retryable re-enter the body; every
other exception propagates on the spot. When the budget runs out the caller
gets a ``RetriesExhaustedError`` chained to the last failure.

Example:
    >>> from kvspine.core.retry import ConstantBackoff, RetryContext
    >>> from kvspine.core.errors import ConflictError
    >>>
    >>> policy = ConstantBackoff(max_retries=3, delay=0.0, retryable_errors=(ConflictError,))
    >>> RetryContext(policy).run(lambda: 42)
    42
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from kvspine.core.errors import ConflictError, KVError, RetriesExhaustedError, is_retryable
from kvspine.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    max_retries: int
    retryable_errors: tuple[type[BaseException], ...] | None

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based attempt number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    def is_retryable(self, error: BaseException) -> bool:
        """Classify ``error`` as worth another attempt.

        With ``retryable_errors`` set, only those types (and subclasses)
        qualify. A ``KVError`` whose own ``retryable`` flag is off never
        qualifies, so an inner exhausted budget is not retried again.
        """
        if isinstance(error, KVError) and not error.retryable:
            return False
        if self.retryable_errors is not None:
            return isinstance(error, self.retryable_errors)
        return is_retryable(error)

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Determine if another retry should be attempted.

        Args:
            attempt: Number of retries already performed
            error: The exception that caused the failure
        """
        if attempt >= self.max_retries:
            return False
        if error is not None:
            return self.is_retryable(error)
        return True


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries.

    The default delay of zero gives immediate re-entry, which is what the
    conflict paths use: the competing writer has already committed by the
    time the conflict is observed.
    """

    max_retries: int = 3
    delay: float = 0.0
    retryable_errors: tuple[type[BaseException], ...] | None = None

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) + jitter
    """

    max_retries: int = 3
    base_delay: float = 0.01
    max_delay: float = 1.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retryable_errors: tuple[type[BaseException], ...] | None = None

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay


def conflict_policy(max_retries: int = 3) -> ConstantBackoff:
    """Immediate retry on ``ConflictError`` only."""
    return ConstantBackoff(max_retries=max_retries, retryable_errors=(ConflictError,))


@dataclass
class RetryContext:
    """Runs one operation body under a ``RetryStrategy``.

    A context is single-use: create one per operation call.

    Example:
        >>> ctx = RetryContext(conflict_policy(3), operation="increment")
        >>> ctx.run(store._increment_once, "ctr", 1)
    """

    strategy: RetryStrategy
    operation: str | None = None
    attempt: int = field(default=0, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` with retry logic.

        Raises:
            The original exception if it is not retryable.
            RetriesExhaustedError if every allowed attempt failed retryably.
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self.strategy.is_retryable(e):
                    raise

                if not self.strategy.should_retry(self.attempt - 1, e):
                    logger.warning(
                        "kv.retry_exhausted",
                        operation=self.operation,
                        attempts=self.attempt,
                        error_type=type(e).__name__,
                    )
                    raise RetriesExhaustedError(
                        f"{self.operation or 'operation'} failed after {self.attempt} attempts: {e}",
                        attempts=self.attempt,
                        cause=e,
                    ).with_context(operation=self.operation) from e

                delay = self.strategy.next_delay(self.attempt - 1)
                logger.debug(
                    "kv.retry",
                    operation=self.operation,
                    attempt=self.attempt,
                    error_type=type(e).__name__,
                    delay=delay,
                )
                if delay > 0:
                    time.sleep(delay)


__all__ = [
    "RetryStrategy",
    "ConstantBackoff",
    "ExponentialBackoff",
    "RetryContext",
    "conflict_policy",
]
