"""Two-tier response cache with TTL and bounded size.

The in-process tier is always consulted first. An optional durable
backend is consulted on an in-process miss and repopulates the
in-process tier on a hit. Backend failures degrade to cache misses.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from leadkit.cache.backends import CacheBackend
from leadkit.exceptions import ConfigurationError

logger = logging.getLogger("leadkit.cache")


@dataclass
class CacheConfig:
    """Configuration for a ResponseCache.

    Attributes:
        ttlSeconds: Entry lifetime, enforced at read time.
        maxEntries: In-process capacity; oldest entries are evicted first.
        keyPrefix: Namespace prepended to every key.
        enabled: When False, get always misses and put does nothing.
    """

    ttlSeconds: float = 3600.0
    maxEntries: int = 100
    keyPrefix: str = ""
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.ttlSeconds <= 0:
            raise ConfigurationError("ttlSeconds must be positive")
        if self.maxEntries < 1:
            raise ConfigurationError("maxEntries must be at least 1")


@dataclass(frozen=True)
class CacheEntry:
    """A cached value.

    Attributes:
        key: Full cache key (including prefix).
        value: JSON-compatible payload.
        timestamp: Wall-clock time the entry was stored.
    """

    key: str
    value: Any
    timestamp: float

    def ageSeconds(self, now: float) -> float:
        """Seconds since the entry was stored."""
        return now - self.timestamp

    def isExpired(self, now: float, ttlSeconds: float) -> bool:
        """Check whether the entry outlived its TTL."""
        return now - self.timestamp > ttlSeconds

    def toDict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"key": self.key, "value": self.value, "timestamp": self.timestamp}

    @classmethod
    def fromDict(cls, data: dict[str, Any]) -> "CacheEntry":
        """Create from dictionary."""
        return cls(key=data["key"], value=data["value"], timestamp=float(data["timestamp"]))


class ResponseCache:
    """Key/value cache with TTL, size bound and an optional durable tier.

    Args:
        config: Cache configuration.
        backend: Optional durable tier.
        clock: Wall-clock function returning seconds.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config or CacheConfig()
        self._backend = backend
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def config(self) -> CacheConfig:
        """Get the cache configuration."""
        return self._config

    @property
    def enabled(self) -> bool:
        """Whether the cache is active."""
        return self._config.enabled

    def _fullKey(self, key: str) -> str:
        return f"{self._config.keyPrefix}{key}"

    async def get(self, key: str) -> CacheEntry | None:
        """Get a live entry.

        Args:
            key: Cache key (without prefix).

        Returns:
            The entry, or None when absent or expired.
        """
        if not self._config.enabled:
            return None

        fullKey = self._fullKey(key)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(fullKey)
            if entry is not None:
                if not entry.isExpired(now, self._config.ttlSeconds):
                    self.hits += 1
                    return entry
                del self._entries[fullKey]

        entry = await self._backendGet(fullKey)
        if entry is not None and not entry.isExpired(now, self._config.ttlSeconds):
            with self._lock:
                self._entries[fullKey] = entry
                self._evictLocked(now)
                self.hits += 1
            logger.debug(f"Cache hit from backend: {fullKey}")
            return entry

        with self._lock:
            self.misses += 1
        return None

    async def put(self, key: str, value: Any) -> CacheEntry | None:
        """Store a value.

        Args:
            key: Cache key (without prefix).
            value: JSON-compatible payload.

        Returns:
            The stored entry, or None when the cache is disabled.
        """
        if not self._config.enabled:
            return None

        fullKey = self._fullKey(key)
        now = self._clock()
        entry = CacheEntry(key=fullKey, value=value, timestamp=now)

        with self._lock:
            self._entries[fullKey] = entry
            self._evictLocked(now)

        if self._backend is not None:
            try:
                await self._backend.set(fullKey, entry.toDict(), self._config.ttlSeconds)
            except Exception as e:
                logger.warning(f"Cache backend set failed for {fullKey}: {e}")

        logger.debug(f"Cached {fullKey}")
        return entry

    async def invalidate(self, key: str) -> bool:
        """Drop a single entry from both tiers.

        Args:
            key: Cache key (without prefix).

        Returns:
            True if an in-process entry was removed.
        """
        fullKey = self._fullKey(key)
        with self._lock:
            removed = self._entries.pop(fullKey, None) is not None

        if self._backend is not None:
            try:
                await self._backend.delete(fullKey)
            except Exception as e:
                logger.warning(f"Cache backend delete failed for {fullKey}: {e}")
        return removed

    async def invalidatePrefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with a prefix.

        Args:
            prefix: Key prefix (without the cache's own prefix).

        Returns:
            Number of in-process entries removed.
        """
        fullPrefix = self._fullKey(prefix)
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(fullPrefix)]
            for k in doomed:
                del self._entries[k]

        if self._backend is not None:
            try:
                await self._backend.deletePrefix(fullPrefix)
            except Exception as e:
                logger.warning(f"Cache backend invalidation failed for {fullPrefix}: {e}")

        if doomed:
            logger.debug(f"Invalidated {len(doomed)} entries under {fullPrefix}")
        return len(doomed)

    def evictExpired(self) -> int:
        """Remove expired in-process entries.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            before = len(self._entries)
            self._evictLocked(self._clock())
            return before - len(self._entries)

    def _evictLocked(self, now: float) -> None:
        ttl = self._config.ttlSeconds
        for k in [k for k, e in self._entries.items() if e.isExpired(now, ttl)]:
            del self._entries[k]

        overflow = len(self._entries) - self._config.maxEntries
        if overflow > 0:
            oldest = sorted(self._entries.values(), key=lambda e: e.timestamp)[:overflow]
            for entry in oldest:
                del self._entries[entry.key]

    async def _backendGet(self, fullKey: str) -> CacheEntry | None:
        if self._backend is None:
            return None
        try:
            data = await self._backend.get(fullKey)
        except Exception as e:
            logger.warning(f"Cache backend get failed for {fullKey}: {e}")
            return None
        if data is None:
            return None
        try:
            return CacheEntry.fromDict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed backend entry {fullKey}: {e}")
            return None

    def clear(self) -> None:
        """Clear the in-process tier and statistics."""
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def getStats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with cache stats.
        """
        with self._lock:
            timestamps = [e.timestamp for e in self._entries.values()]
            totalRequests = self.hits + self.misses
            return {
                "size": len(self._entries),
                "maxEntries": self._config.maxEntries,
                "ttlSeconds": self._config.ttlSeconds,
                "hits": self.hits,
                "misses": self.misses,
                "hitRate": round(self.hits / totalRequests, 3) if totalRequests else 0.0,
                "oldestEntry": min(timestamps) if timestamps else None,
                "newestEntry": max(timestamps) if timestamps else None,
                "durableTier": self._backend is not None,
            }
