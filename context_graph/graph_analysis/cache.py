"""Result cache for analytics computations.

LRU cache keyed by (snapshot version, algorithm, parameters):
- Entries for one snapshot version only; seeing a newer version clears
  the whole cache
- Requests for older versions bypass the cache
- LRU eviction when max size reached
- Thread-safe operations
"""

import hashlib
import json
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger


@dataclass
class CacheEntry:
    """A cached analytics result."""

    value: Any
    version: int
    algorithm: str


class ResultCache:
    """Version-scoped LRU cache with hit/miss metrics.

    Cached values are shared between callers and must be treated as
    read-only.
    """

    DEFAULT_MAX_SIZE = 256

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries
        """
        self.max_size = max_size
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._version: Optional[int] = None

        # Metrics
        self._hits = 0
        self._misses = 0

    @staticmethod
    def generate_key(version: int, algorithm: str, **params: Any) -> str:
        """Hash-based key from the version, algorithm and parameters."""
        payload = json.dumps(params, sort_keys=True, default=str)
        key_string = f"{version}|{algorithm}|{payload}"
        return hashlib.sha256(key_string.encode()).hexdigest()[:32]

    def _observe(self, version: int) -> bool:
        """Track the newest version seen; False when ``version`` is stale."""
        if self._version is None or version > self._version:
            if self._cache:
                logger.debug(
                    f"Snapshot v{version} supersedes v{self._version}; "
                    f"dropping {len(self._cache)} cached results"
                )
            self._cache.clear()
            self._version = version
            return True
        return version == self._version

    def get(self, version: int, algorithm: str, **params: Any) -> Optional[Any]:
        """Cached value or None on a miss."""
        key = self.generate_key(version, algorithm, **params)
        with self._lock:
            if not self._observe(version):
                self._misses += 1
                return None

            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            self._hits += 1
            logger.debug(f"Cache hit: {algorithm} on v{version}")
            return entry.value

    def set(self, version: int, algorithm: str, value: Any, **params: Any) -> None:
        """Store a result; ignored for versions older than the newest seen."""
        key = self.generate_key(version, algorithm, **params)
        with self._lock:
            if not self._observe(version):
                return

            if len(self._cache) >= self.max_size and key not in self._cache:
                self._cache.popitem(last=False)

            self._cache[key] = CacheEntry(value=value, version=version, algorithm=algorithm)
            self._cache.move_to_end(key)

    def clear(self) -> int:
        """Drop every entry; returns how many were dropped."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "version": self._version,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
            }
