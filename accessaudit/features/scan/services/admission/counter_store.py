"""
Shared counter store used by the admission controller.

Every mutation is atomic at the store level: Redis runs them as a MULTI
pipeline or a server-side script, the in-memory store under one lock.
"""
import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Dict, List, Optional, Tuple

from redis import Redis


class CounterStore(ABC):

    @abstractmethod
    def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment ``key`` and refresh its expiry. Returns the new value."""

    @abstractmethod
    def decr(self, key: str) -> int:
        """Decrement ``key``. Returns the new value."""

    @abstractmethod
    def decr_floor(self, key: str) -> int:
        """Decrement ``key`` but never below zero. Returns the new value."""

    @abstractmethod
    def get(self, key: str) -> int:
        """Current value of ``key`` (0 when absent)."""

    @abstractmethod
    def window_add(self, key: str, member: str, now: float, window_seconds: int) -> Tuple[int, float]:
        """
        Drop entries older than the window, record ``member`` at ``now``.

        Returns:
            (entries in window including this one, timestamp of the oldest entry)
        """

    @abstractmethod
    def window_remove(self, key: str, member: str) -> None:
        """Forget a previously recorded window entry."""


# Atomic "decrement, clamp at zero"
_DECR_FLOOR_SCRIPT = """
local value = redis.call('DECR', KEYS[1])
if value < 0 then
    redis.call('SET', KEYS[1], 0, 'KEEPTTL')
    return 0
end
return value
"""


class RedisCounterStore(CounterStore):
    def __init__(self, client: Redis):
        self.client = client
        self._decr_floor = client.register_script(_DECR_FLOOR_SCRIPT)

    def incr(self, key: str, ttl_seconds: int) -> int:
        pipe = self.client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, ttl_seconds)
        count, _ = pipe.execute()
        return int(count)

    def decr(self, key: str) -> int:
        return int(self.client.decr(key))

    def decr_floor(self, key: str) -> int:
        return int(self._decr_floor(keys=[key]))

    def get(self, key: str) -> int:
        value = self.client.get(key)
        return int(value) if value is not None else 0

    def window_add(self, key: str, member: str, now: float, window_seconds: int) -> Tuple[int, float]:
        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, window_seconds)
        _, _, count, oldest, _ = pipe.execute()
        oldest_ts = float(oldest[0][1]) if oldest else now
        return int(count), oldest_ts

    def window_remove(self, key: str, member: str) -> None:
        self.client.zrem(key, member)


class InMemoryCounterStore(CounterStore):
    """Single-process store for local runs and tests."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = Lock()
        self._counters: Dict[str, int] = {}
        self._expiry: Dict[str, float] = {}
        self._windows: Dict[str, List[Tuple[float, str]]] = {}

    def _expire(self, key: str) -> None:
        expires_at = self._expiry.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._counters.pop(key, None)
            self._expiry.pop(key, None)

    def incr(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            self._expire(key)
            value = self._counters.get(key, 0) + 1
            self._counters[key] = value
            self._expiry[key] = self._clock() + ttl_seconds
            return value

    def decr(self, key: str) -> int:
        with self._lock:
            self._expire(key)
            value = self._counters.get(key, 0) - 1
            self._counters[key] = value
            return value

    def decr_floor(self, key: str) -> int:
        with self._lock:
            self._expire(key)
            value = max(0, self._counters.get(key, 0) - 1)
            self._counters[key] = value
            return value

    def get(self, key: str) -> int:
        with self._lock:
            self._expire(key)
            return self._counters.get(key, 0)

    def window_add(self, key: str, member: str, now: float, window_seconds: int) -> Tuple[int, float]:
        with self._lock:
            cutoff = now - window_seconds
            entries = [entry for entry in self._windows.get(key, []) if entry[0] > cutoff]
            entries.append((now, member))
            entries.sort()
            self._windows[key] = entries
            return len(entries), entries[0][0]

    def window_remove(self, key: str, member: str) -> None:
        with self._lock:
            entries = self._windows.get(key, [])
            self._windows[key] = [entry for entry in entries if entry[1] != member]


def build_counter_store(redis_url: Optional[str], force_in_memory: bool = False) -> Optional[CounterStore]:
    """Store for the configured backend, or None when no shared store is configured."""
    if force_in_memory:
        return InMemoryCounterStore()
    if not redis_url:
        return None

    from accessaudit.platform.cache.redis import get_redis_client

    return RedisCounterStore(get_redis_client(redis_url))
