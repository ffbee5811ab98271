"""In-process key-value cache with per-entry time-to-live."""
import logging
import time
from typing import Callable, Dict, Generic, Optional, TypeVar

from processor.models import CacheEntry

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TTLCache(Generic[T]):
    """
    Cache mapping string keys to values of one type, each with its own TTL.

    Expired entries are evicted lazily when read; there is no size limit
    and no background sweep.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize an empty cache.

        Args:
            clock: Function returning the current time in seconds
        """
        self._clock = clock
        self._store: Dict[str, CacheEntry[T]] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def get(self, key: str) -> Optional[T]:
        """
        Return the value stored under key, or None if missing or expired.

        Args:
            key: Cache key

        Returns:
            Cached value or None
        """
        entry = self._store.get(key)
        if entry is None:
            return None

        if self._now_ms() - entry.fetched_at > entry.ttl_ms:
            logger.debug(f"Cache entry expired: {key}")
            self._store.pop(key, None)
            return None

        return entry.data

    def set(self, key: str, data: T, ttl_ms: int) -> None:
        """
        Store a value, replacing any existing entry for the key.

        Args:
            key: Cache key
            data: Value to store
            ttl_ms: Lifetime of the entry in milliseconds
        """
        self._store[key] = CacheEntry(
            data=data,
            fetched_at=self._now_ms(),
            ttl_ms=ttl_ms
        )

    def invalidate(self, key: Optional[str] = None) -> None:
        """
        Remove one entry, or every entry when no key is given.

        Args:
            key: Cache key to remove (optional)
        """
        if key is not None:
            self._store.pop(key, None)
        else:
            self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store
