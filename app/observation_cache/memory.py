"""In-memory observation cache with lazy TTL expiry."""

import threading
import time
from typing import Callable, Optional

from app.domain import CacheEntry, WeatherObservation
from app.observation_cache.base import ObservationCache

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="observation_cache/in_memory")


class InMemoryObservationCache(ObservationCache):
    """Thread-safe, TTL-aware in-memory store.

    Expired entries are not swept; they are ignored on read and replaced on the
    next successful fetch for the same key.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.time) -> None:
        """Initialize the cache with a TTL (seconds) and a clock returning epoch seconds."""
        logger.debug("Initializing InMemoryObservationCache", extra={"ttl_seconds": ttl_seconds})
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[WeatherObservation]:
        """Return the cached observation if `now < expires_at`, else None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_live(self._clock()):
                return None
            return entry.observation

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the raw entry for `key`, live or not. Test and debug helper; lookups use `get`."""
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, observation: WeatherObservation) -> None:
        """Store an observation expiring `ttl` seconds from now."""
        with self._lock:
            self._entries[key] = CacheEntry(observation=observation, expires_at=self._clock() + self.ttl)

    def delete(self, key: str) -> None:
        """Remove an entry if it exists."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Clear all entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
