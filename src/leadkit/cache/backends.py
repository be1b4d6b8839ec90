"""Durable cache tiers.

A backend stores JSON-compatible payloads by key. Backends raise
CacheBackendError on failure; ResponseCache turns that into a miss.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import xxhash

from leadkit.exceptions import CacheBackendError

logger = logging.getLogger("leadkit.cache")


class CacheBackend(ABC):
    """Interface for a durable cache tier (Redis, KV store, disk)."""

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Fetch a payload, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, data: dict[str, Any], ttlSeconds: float) -> None:
        """Store a payload that expires after ttlSeconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a payload if present."""

    @abstractmethod
    async def deletePrefix(self, prefix: str) -> int:
        """Remove every payload whose key starts with prefix."""


class FileCacheBackend(CacheBackend):
    """Folder-based durable tier, one JSON file per key.

    Args:
        basePath: Base directory for cache storage.
    """

    def __init__(self, basePath: Path):
        self.basePath = Path(basePath)
        self._ensurePath()

    def _ensurePath(self) -> None:
        """Ensure the cache directory exists."""
        self.basePath.mkdir(parents=True, exist_ok=True)

    def _getKeyPath(self, key: str) -> Path:
        """Get the file path for a key."""
        return self.basePath / f"{xxhash.xxh64(key.encode('utf-8')).hexdigest()}.json"

    async def get(self, key: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, data: dict[str, Any], ttlSeconds: float) -> None:
        await asyncio.to_thread(self._write, key, data, ttlSeconds)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._unlink, self._getKeyPath(key))

    async def deletePrefix(self, prefix: str) -> int:
        return await asyncio.to_thread(self._deletePrefix, prefix)

    def _read(self, key: str) -> dict[str, Any] | None:
        path = self._getKeyPath(key)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CacheBackendError(f"Cache read error for {key}: {e}") from e

        if record.get("key") != key:
            return None
        if record.get("expiresAt", 0) < time.time():
            self._unlink(path)
            return None
        return record.get("data")

    def _write(self, key: str, data: dict[str, Any], ttlSeconds: float) -> None:
        record = {"key": key, "expiresAt": time.time() + ttlSeconds, "data": data}
        try:
            with open(self._getKeyPath(key), "w", encoding="utf-8") as f:
                json.dump(record, f, ensure_ascii=False)
        except (OSError, TypeError) as e:
            raise CacheBackendError(f"Cache write error for {key}: {e}") from e

    def _unlink(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise CacheBackendError(f"Cache delete error for {path.name}: {e}") from e

    def _deletePrefix(self, prefix: str) -> int:
        removed = 0
        for path in self.basePath.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    key = json.load(f).get("key", "")
            except (OSError, json.JSONDecodeError):
                logger.debug(f"Skipping unreadable cache file {path.name}")
                continue
            if key.startswith(prefix):
                self._unlink(path)
                removed += 1
        return removed

    def clear(self) -> None:
        """Remove all cache files."""
        for path in self.basePath.glob("*.json"):
            path.unlink()
        logger.info("Durable cache cleared")
