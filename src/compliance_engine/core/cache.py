"""
Cache abstraction shared by the rule loader and the rule engine.

Callers depend on the ``ResultCache`` protocol; ``TTLCache`` is the in-process
implementation with per-entry expiry and LRU eviction.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable


@runtime_checkable
class ResultCache(Protocol):
    """Key/value cache with time-based expiry."""

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""
        ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value, optionally overriding the default TTL."""
        ...

    def invalidate(self, key: str) -> None:
        """Drop one entry."""
        ...

    def clear(self) -> None:
        """Drop every entry."""
        ...


class TTLCache:
    """LRU cache whose entries expire after a TTL."""

    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self.cache: Dict[str, Tuple[Any, float]] = {}  # key -> (value, expires_at)
        self.access_order: List[str] = []
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        if key not in self.cache:
            self.misses += 1
            return None

        value, expires_at = self.cache[key]
        if self._clock() >= expires_at:
            self._remove(key)
            self.misses += 1
            return None

        # Update access order (LRU)
        if key in self.access_order:
            self.access_order.remove(key)
        self.access_order.append(key)

        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if key in self.cache:
            self.access_order.remove(key)

        # Evict least recently used if at capacity
        if len(self.cache) >= self.max_size and key not in self.cache:
            lru_key = self.access_order.pop(0)
            del self.cache[lru_key]

        expires_at = self._clock() + (self.ttl if ttl is None else ttl)
        self.cache[key] = (value, expires_at)
        self.access_order.append(key)

    def invalidate(self, key: str) -> None:
        self._remove(key)

    def clear(self) -> None:
        self.cache.clear()
        self.access_order.clear()

    def _remove(self, key: str) -> None:
        if key in self.cache:
            del self.cache[key]
            if key in self.access_order:
                self.access_order.remove(key)

    def items(self) -> List[Tuple[str, Any]]:
        """Return live (key, value) pairs, pruning expired ones."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self.cache.items() if now >= expires_at]
        for key in expired:
            self._remove(key)
        return [(key, value) for key, (value, _) in self.cache.items()]

    def __len__(self) -> int:
        return len(self.items())

    def to_dict(self) -> Dict[str, Any]:
        """Cache statistics."""
        return {
            "entries": len(self),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
        }
