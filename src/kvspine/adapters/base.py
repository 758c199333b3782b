"""Key-value store contract shared by every adapter.

Manifesto:
    Callers must not care which backend holds their data. Every adapter
    answers the same nine operations with the same semantics; what differs
    is only *how* each one makes ``create``, ``increment`` and ``delete``
    safe under concurrent access.

    Operations an adapter cannot do natively fall back to the generic
    strategies defined here, built from ``load``/``store``/``delete``.
    Those fallbacks are correct for a single caller but not atomic, which
    is why adapters declare what they implement natively in ``features``.

Features:
    - Abstract ``exists``, ``load``, ``store``, ``delete``, ``clear``, ``close``
    - Default ``create``, ``increment``, ``each_key`` for adapters that do not
      declare them in ``features``
    - ``supports()`` capability introspection on the adapter type
    - Convenience reads/writes (``fetch``, ``values_at``, ``slice``, ``merge``)
      and mapping dunders built on the contract
    - Context-manager protocol closing the store handle

Tags:
    kvspine, adapter-pattern, abstract-base, capabilities

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from enum import Enum
from typing import Any, ClassVar

from kvspine.core.codec import check_amount, parse_int

_MISSING: Any = object()


class Feature(str, Enum):
    """Optional operations an adapter may implement natively."""

    CREATE = "create"
    INCREMENT = "increment"
    EACH_KEY = "each_key"


class KeyValueStore(ABC):
    """
    Abstract base class for key-value adapters.

    Subclasses implement the required operations and list the optional
    ones they handle natively in ``features``. Everything else is shared.
    """

    #: backend family name used in logs and error context
    backend: ClassVar[str] = "abstract"
    features: ClassVar[frozenset[Feature]] = frozenset()

    @classmethod
    def supports(cls, feature: Feature | str) -> bool:
        """Whether the adapter type implements ``feature`` natively."""
        return Feature(feature) in cls.features

    # -- Required operations -----------------------------------------------

    @abstractmethod
    def exists(self, key: str) -> bool:
        """True iff a record with ``key`` currently exists."""
        ...

    @abstractmethod
    def load(self, key: str) -> Any | None:
        """Value stored under ``key``, or ``None``. Never raises for absence."""
        ...

    @abstractmethod
    def store(self, key: str, value: Any) -> Any:
        """Unconditional upsert. Returns ``value``."""
        ...

    @abstractmethod
    def delete(self, key: str) -> Any | None:
        """Remove ``key`` and return what was deleted (``None`` if absent)."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Remove every record in the store."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release this handle's reference to its connection. Idempotent."""
        ...

    # -- Optional operations (generic fallbacks) ---------------------------

    def create(self, key: str, value: Any) -> bool:
        """Store ``value`` only if ``key`` is absent.

        Fallback: check-then-store. Not atomic; adapters that can do better
        declare ``Feature.CREATE``.
        """
        if self.exists(key):
            return False
        self.store(key, value)
        return True

    def increment(self, key: str, amount: int = 1) -> int:
        """Add ``amount`` to the integer under ``key`` and return the result.

        Fallback: load-parse-store. Not atomic; adapters that can do better
        declare ``Feature.INCREMENT``.
        """
        amount = check_amount(amount)
        existing = self.load(key)
        value = (parse_int(existing, key) if existing is not None else 0) + amount
        self.store(key, self._increment_value(value))
        return value

    def each_key(self) -> Iterator[str]:
        """Lazily iterate over every key in the store."""
        raise NotImplementedError(f"{type(self).__name__} does not support each_key")

    def _increment_value(self, number: int) -> Any:
        """Representation ``store`` receives for an incremented number."""
        return number

    # -- Convenience -------------------------------------------------------

    def fetch(self, key: str, default: Any = _MISSING) -> Any:
        """Like ``load`` but raises ``KeyError`` for absence unless ``default`` is given."""
        value = self.load(key)
        if value is not None:
            return value
        if default is _MISSING:
            raise KeyError(key)
        return default

    def values_at(self, *keys: str) -> list[Any | None]:
        """Load several keys, ``None`` for each one that is absent."""
        return [self.load(key) for key in keys]

    def slice(self, *keys: str) -> dict[str, Any]:
        """Load several keys, returning only the ones that exist."""
        result = {}
        for key in keys:
            value = self.load(key)
            if value is not None:
                result[key] = value
        return result

    def merge(self, pairs: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> KeyValueStore:
        """Store every pair. Each pair is an independent single-key write."""
        items = pairs.items() if isinstance(pairs, Mapping) else pairs
        for key, value in items:
            self.store(key, value)
        return self

    def __getitem__(self, key: str) -> Any:
        return self.fetch(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.store(key, value)

    def __delitem__(self, key: str) -> None:
        if self.delete(key) is None:
            raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.exists(key)

    def __enter__(self) -> KeyValueStore:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


__all__ = [
    "Feature",
    "KeyValueStore",
]
