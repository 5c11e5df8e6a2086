"""Bounded per-project caches with single-writer locking.

Every piece of cross-request state in contextsmith (project memory, code
indices, retry sessions, circuit states) lives in a BoundedCache handed to the
owning service at construction time.  The eviction policy is chosen by the
caller:

  lru   — reads refresh recency; the least recently used key is evicted
  fifo  — insertion order only; reads do not refresh

Read-modify-write sequences for one key serialize on ``cache.lock(key)``;
different keys never contend with each other.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

_POLICIES = ("lru", "fifo")


class BoundedCache(Generic[K, V]):
    """Thread-safe, capacity-bounded mapping.

    Args:
        capacity: Maximum number of entries (must be >= 1).
        policy: ``"lru"`` or ``"fifo"``.
        name: Label used in eviction log messages.
        on_evict: Optional callback invoked with ``(key, value)`` after an
            entry is evicted to make room.

    Raises:
        ValueError: If *capacity* < 1 or *policy* is unknown.
    """

    def __init__(
        self,
        capacity: int,
        policy: str = "lru",
        *,
        name: str = "cache",
        on_evict: Callable[[K, V], None] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if policy not in _POLICIES:
            raise ValueError(f"policy must be one of {_POLICIES}, got {policy!r}")
        self.capacity = capacity
        self.policy = policy
        self.name = name
        self._on_evict = on_evict
        self._data: OrderedDict[K, V] = OrderedDict()
        self._mutex = threading.Lock()
        self._key_locks: dict[K, threading.Lock] = {}
        self._lock_users: dict[K, int] = {}

    # ------------------------------------------------------------------
    # Mapping operations
    # ------------------------------------------------------------------

    def get(self, key: K, default: V | None = None) -> V | None:
        with self._mutex:
            if key not in self._data:
                return default
            if self.policy == "lru":
                self._data.move_to_end(key)
            return self._data[key]

    def set(self, key: K, value: V) -> None:
        evicted: list[tuple[K, V]] = []
        with self._mutex:
            if key in self._data:
                self._data[key] = value
                if self.policy == "lru":
                    self._data.move_to_end(key)
                return
            self._data[key] = value
            while len(self._data) > self.capacity:
                old_key, old_value = self._data.popitem(last=False)
                self._drop_idle_lock(old_key)
                evicted.append((old_key, old_value))

        for old_key, old_value in evicted:
            logger.debug("%s: evicted %r (capacity %d)", self.name, old_key, self.capacity)
            if self._on_evict is not None:
                self._on_evict(old_key, old_value)

    def pop(self, key: K, default: V | None = None) -> V | None:
        with self._mutex:
            value = self._data.pop(key, default)
            self._drop_idle_lock(key)
            return value

    def clear(self) -> None:
        with self._mutex:
            self._data.clear()
            for key in list(self._key_locks):
                self._drop_idle_lock(key)

    def keys(self) -> list[K]:
        """Snapshot of keys, least recently used first."""
        with self._mutex:
            return list(self._data)

    def __contains__(self, key: object) -> bool:
        with self._mutex:
            return key in self._data

    def __len__(self) -> int:
        with self._mutex:
            return len(self._data)

    # ------------------------------------------------------------------
    # Per-key locking
    # ------------------------------------------------------------------

    @contextmanager
    def lock(self, key: K) -> Iterator[None]:
        """Hold the single-writer lock for *key* for the duration of the block."""
        with self._mutex:
            key_lock = self._key_locks.get(key)
            if key_lock is None:
                key_lock = threading.Lock()
                self._key_locks[key] = key_lock
            self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            with key_lock:
                yield
        finally:
            with self._mutex:
                self._lock_users[key] -= 1
                if key not in self._data:
                    self._drop_idle_lock(key)

    def _drop_idle_lock(self, key: K) -> None:
        # Caller holds self._mutex.  A lock with holders or waiters is kept.
        if self._lock_users.get(key, 0) == 0:
            self._key_locks.pop(key, None)
            self._lock_users.pop(key, None)
