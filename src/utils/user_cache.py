"""Lookaside cache for user snapshots.

Maps ``user:<id>`` to a JSON snapshot of the public user projection, each entry
expiring a fixed time after it was written. The cache is never authoritative:
the user manager writes the store first and treats every cache failure as a
miss.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from cachetools import TLRUCache

from config import USER_CACHE_MAX_SIZE, USER_CACHE_PREFIX, USER_CACHE_TTL_SECONDS
from core.exceptions import DependencyUnavailableError
from schemas.user import UserInfo

logger = logging.getLogger(__name__)


def _time_to_use(key: str, entry: tuple, now: float) -> float:
    _, ttl = entry
    return now + ttl


class UserCache:
    """Thread-safe TTL cache keyed by string.

    Values are stored together with their own TTL, so ``set`` can take a TTL
    per call while user snapshots always use the configured fixed TTL.
    """

    def __init__(
        self,
        ttl_seconds: int = USER_CACHE_TTL_SECONDS,
        max_size: int = USER_CACHE_MAX_SIZE,
        prefix: str = USER_CACHE_PREFIX,
        timer: Callable[[], float] = time.monotonic,
    ):
        """Initialize UserCache.

        Args:
            ttl_seconds: Fixed TTL applied to user snapshots.
            max_size: Maximum number of cached entries; least recently used
                entries are evicted first when full.
            prefix: Key prefix for user entries.
            timer: Clock used for expiry. Tests pass a fake clock.
        """
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._max_size = max_size
        self._timer = timer
        self._cache: Optional[TLRUCache] = None
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self) -> "UserCache":
        with self._lock:
            if self._cache is None:
                self._cache = TLRUCache(
                    maxsize=self._max_size, ttu=_time_to_use, timer=self._timer
                )
                logger.info(
                    "UserCache opened (ttl=%ds, max_size=%d)",
                    self.ttl_seconds,
                    self._max_size,
                )
        return self

    def close(self) -> None:
        with self._lock:
            self._cache = None
        logger.info("UserCache closed")

    @property
    def is_open(self) -> bool:
        return self._cache is not None

    def _require_open(self) -> TLRUCache:
        if self._cache is None:
            raise DependencyUnavailableError("cache", "cache is not open")
        return self._cache

    # ------------------------------------------------------------------
    # Key/value operations
    # ------------------------------------------------------------------
    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            cache = self._require_open()
            cache[key] = (value, ttl)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            cache = self._require_open()
            entry = cache.get(key)
        if entry is None:
            return None
        return entry[0]

    def delete(self, key: str) -> None:
        with self._lock:
            self._require_open().pop(key, None)

    def delete_by_prefix(self, prefix: str) -> int:
        with self._lock:
            cache = self._require_open()
            cache.expire()
            keys = [key for key in list(cache.keys()) if key.startswith(prefix)]
            for key in keys:
                cache.pop(key, None)
        return len(keys)

    # ------------------------------------------------------------------
    # User snapshots
    # ------------------------------------------------------------------
    def _user_key(self, user_id: int) -> str:
        return f"{self.prefix}{user_id}"

    def cache_user(self, user: UserInfo) -> None:
        self.set(self._user_key(user.id), user.model_dump_json(), self.ttl_seconds)
        logger.debug("Cached user %s", user.id)

    def get_cached_user(self, user_id: int) -> Optional[UserInfo]:
        payload = self.get(self._user_key(user_id))
        if payload is None:
            with self._lock:
                self._misses += 1
            logger.info("Cache MISS - User %s not found in cache", user_id)
            return None
        with self._lock:
            self._hits += 1
        logger.info("Cache HIT - Fetching user %s from cache", user_id)
        return UserInfo.model_validate_json(payload)

    def evict_user(self, user_id: int) -> None:
        self.delete(self._user_key(user_id))

    def evict_all_users(self) -> int:
        removed = self.delete_by_prefix(self.prefix)
        logger.info("Evicted %d cached users", removed)
        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with hit/miss counters and current size.
        """
        with self._lock:
            if self._cache is not None:
                self._cache.expire()
            return {
                "open": self._cache is not None,
                "size": len(self._cache) if self._cache is not None else 0,
                "max_size": self._max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }
