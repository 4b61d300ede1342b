"""In-process cache for rendered user context blocks."""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 15 * 60


@dataclass
class CacheEntry:
    """A cached context block."""

    value: str
    expires_at: float
    last_accessed: float


class ContextCache:
    """Size-bounded TTL cache with least-recently-used eviction.

    Maps a user id to the context block last rendered for that user. One
    instance is created per process by whoever wires the MemoryManager
    (per fixture in tests). Entries are lost on restart.

    All access goes through a lock since eviction mutates shared state.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of users held at once.
            ttl_seconds: Lifetime of an entry after it is set.
            clock: Time source in seconds, injectable for tests.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> str | None:
        """Get the cached block for a user, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None

            now = self._clock()
            if now > entry.expires_at:
                del self._entries[user_id]
                return None

            entry.last_accessed = now
            return entry.value

    def set(self, user_id: str, value: str) -> None:
        """Store a block for a user, evicting the LRU entry when full."""
        with self._lock:
            if user_id not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()

            now = self._clock()
            self._entries[user_id] = CacheEntry(
                value=value,
                expires_at=now + self.ttl_seconds,
                last_accessed=now,
            )

    def delete(self, user_id: str) -> None:
        """Invalidate the entry for a user."""
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._entries.clear()

    @property
    def size(self) -> int:
        """Current number of entries, expired ones included."""
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        """Return size and configuration of the cache."""
        return {
            "size": self.size,
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
        }

    def _evict_oldest(self) -> None:
        # Caller holds the lock
        oldest_key = min(
            self._entries,
            key=lambda k: self._entries[k].last_accessed,
            default=None,
        )
        if oldest_key is not None:
            del self._entries[oldest_key]
