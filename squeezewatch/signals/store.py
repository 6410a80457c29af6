"""Time-bounded key/value store used for dedup and cooldown bookkeeping."""

import time
from typing import Callable, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)


class ExpiringStore(Generic[K]):
    """Map of ``key → inserted-at`` where entries expire after *ttl* seconds.

    Expired entries are evicted lazily on lookup, or all at once through
    :meth:`evict_expired` from a periodic sweep.

    Args:
        ttl: Lifetime of an entry in seconds.
        clock: Returns the current time in seconds.  Defaults to
            ``time.time``.
    """

    def __init__(self, ttl: float, clock: Optional[Callable[[], float]] = None) -> None:
        self.ttl = ttl
        self._clock = clock or time.time
        self._entries: dict[K, float] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.lookup(key) is not None  # type: ignore[arg-type]

    def insert(self, key: K, at: Optional[float] = None) -> None:
        self._entries[key] = self._clock() if at is None else at

    def discard(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def lookup(self, key: K, now: Optional[float] = None) -> Optional[float]:
        """Return when *key* was inserted, or None if absent or expired."""
        inserted = self._entries.get(key)
        if inserted is None:
            return None
        now = self._clock() if now is None else now
        if now - inserted >= self.ttl:
            del self._entries[key]
            return None
        return inserted

    def remaining(self, key: K, now: Optional[float] = None) -> float:
        """Seconds until *key* expires (0 when absent)."""
        now = self._clock() if now is None else now
        inserted = self.lookup(key, now)
        if inserted is None:
            return 0.0
        return inserted + self.ttl - now

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock() if now is None else now
        expired = [k for k, at in self._entries.items() if now - at >= self.ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)
