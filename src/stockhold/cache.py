"""Best-effort caches for carts and orders.

Nothing here is authoritative: every caller must behave correctly when a
cache misses, fails, or is a no-op.
"""

from __future__ import annotations

import json
import logging
import threading
from time import monotonic
from typing import Any, Callable, Protocol

import redis

logger = logging.getLogger(__name__)


def cart_key(user_id: str) -> str:
    return f"cart:{user_id}"


def cart_summary_key(user_id: str) -> str:
    return f"cart:summary:{user_id}"


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


def payment_key(intent_id: str) -> str:
    return f"payment:{intent_id}"


def wishlist_key(user_id: str) -> str:
    return f"wishlist:{user_id}"


class Cache(Protocol):
    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    def delete(self, *keys: str) -> None:
        ...


class NullCache:
    """Cache that stores nothing."""

    def get(self, key: str) -> Any | None:
        return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        pass

    def delete(self, *keys: str) -> None:
        pass


class MemoryCache:
    """In-process cache with per-entry expiry. Values are stored as JSON copies."""

    def __init__(self, clock: Callable[[], float] = monotonic):
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            payload, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value, default=str)
        with self._lock:
            self._entries[key] = (payload, self._clock() + ttl_seconds)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """
    Redis-backed cache.

    Errors are logged and treated as misses. After `max_failures`
    consecutive errors the cache disables itself for the rest of the process.
    """

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        max_failures: int = 3,
    ):
        if client is None:
            if url is None:
                raise ValueError("RedisCache needs a url or a client")
            client = redis.Redis.from_url(url, socket_connect_timeout=5, socket_timeout=3)
        self.client = client
        self.max_failures = max_failures
        self.failures = 0
        self.disabled = False

    def _failed(self, operation: str, error: Exception) -> None:
        self.failures += 1
        logger.warning(
            "Redis %s failed (%d/%d): %s", operation, self.failures, self.max_failures, error
        )
        if self.failures >= self.max_failures and not self.disabled:
            self.disabled = True
            logger.warning("Redis cache disabled after repeated failures")

    def get(self, key: str) -> Any | None:
        if self.disabled:
            return None
        try:
            payload = self.client.get(key)
        except redis.RedisError as e:
            self._failed("get", e)
            return None
        self.failures = 0
        return json.loads(payload) if payload else None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if self.disabled:
            return
        try:
            self.client.set(key, json.dumps(value, default=str), ex=ttl_seconds)
        except redis.RedisError as e:
            self._failed("set", e)
            return
        self.failures = 0

    def delete(self, *keys: str) -> None:
        if self.disabled or not keys:
            return
        try:
            self.client.delete(*keys)
        except redis.RedisError as e:
            self._failed("delete", e)
            return
        self.failures = 0
