"""Transient key/value storage for retry records and telemetry.

Stores structured values by string key with an optional time-to-live.
Each operation is atomic per key; no cross-key transactions are offered.
"""

import json
import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Dict, Optional, Tuple

try:
    import redis.asyncio as aioredis
    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False


class TransientStore(ABC):
    """Abstract base class for transient storage backends."""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """Get the value stored under key, or default if missing or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value under key; expire after ttl seconds when given."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete key if present."""
        pass


class MemoryTransientStore(TransientStore):
    """In-memory transient store using local storage."""

    def __init__(self):
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = Lock()

    def _is_expired(self, expires_at: Optional[float], now: float) -> bool:
        return expires_at is not None and expires_at <= now

    async def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            value, expires_at = self._data[key]
            if self._is_expired(expires_at, time.time()):
                del self._data[key]
                return default
            return value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            expires_at = time.time() + ttl if ttl is not None else None
            self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        """Snapshot of live keys, mostly useful for inspection in tests."""
        now = time.time()
        with self._lock:
            return [
                key for key, (_, expires_at) in self._data.items()
                if not self._is_expired(expires_at, now)
            ]


class RedisTransientStore(TransientStore):
    """Redis-backed transient store; values are stored as JSON."""

    def __init__(self, client: Any = None, url: str = "redis://localhost:6379/0",
                 key_prefix: str = ""):
        """Initialize Redis store.

        Args:
            client: Existing ``redis.asyncio`` client, created from url if omitted
            url: Redis connection URL
            key_prefix: Prefix applied to every key
        """
        if client is None:
            if not REDIS_AVAILABLE:
                raise ImportError("redis package required for Redis support")
            client = aioredis.from_url(url)
        self.client = client
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self.client.get(self._key(key))
        if raw is None:
            return default
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        payload = json.dumps(value)
        if ttl is not None:
            # Redis expiries are whole seconds, never round a live entry to 0
            await self.client.set(self._key(key), payload, ex=max(1, int(ttl)))
        else:
            await self.client.set(self._key(key), payload)

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def close(self) -> None:
        await self.client.aclose()
