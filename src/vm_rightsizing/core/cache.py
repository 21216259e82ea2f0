"""Explicit TTL cache for credentials and tokens, keyed by tenant."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar
import structlog

logger = structlog.get_logger(__name__)

V = TypeVar('V')


@dataclass
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[V]):
    """Small TTL cache passed by reference to the clients that share it.

    Entries expire ``ttl_seconds`` after they are stored. Expired entries are
    dropped lazily on ``get`` or eagerly through ``evict_expired``.
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic,
                 name: str = "cache"):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry[V]] = {}
        self.logger = logger.bind(cache=name)

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            self.logger.debug("Cache entry expired", key=key)
            return None
        return entry.value

    def set(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get_or_create(self, key: str, factory: Callable[[], V]) -> V:
        """Return the cached value for ``key``, creating and storing it if absent."""
        value = self.get(key)
        if value is None:
            value = factory()
            self.set(key, value)
            self.logger.debug("Cache entry created", key=key)
        return value

    def evict(self, key: str) -> Optional[V]:
        entry = self._entries.pop(key, None)
        return entry.value if entry else None

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
