"""Response caching: fingerprints, the two-tier cache and durable backends."""

from leadkit.cache.backends import CacheBackend, FileCacheBackend
from leadkit.cache.fingerprint import computeFingerprint
from leadkit.cache.responseCache import CacheConfig, CacheEntry, ResponseCache

__all__ = [
    "computeFingerprint",
    "CacheConfig",
    "CacheEntry",
    "ResponseCache",
    "CacheBackend",
    "FileCacheBackend",
]
