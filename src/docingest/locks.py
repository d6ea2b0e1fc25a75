"""Lease-based per-document locks.

A lock is held for ``ttl_seconds`` and then expires on its own, which is how
a crashed worker gives its documents back. Leases are never renewed, so a
document that takes longer than the TTL to ingest may be picked up twice.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import TYPE_CHECKING, Callable, Dict, Protocol, Tuple

import redis
from redis.exceptions import RedisError

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from .config import Settings

LOGGER = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "docingest:lock:"

# Delete the key only if it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockError(RuntimeError):
    """The lock backend could not be reached or answered unexpectedly."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class LockService(Protocol):
    def try_lock(self, key: str, ttl_seconds: float) -> bool:
        ...

    def unlock(self, key: str) -> None:
        ...


class InMemoryLockService:
    """Process-local lease lock used by tests and single-process deployments."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._leases: Dict[str, Tuple[str, float]] = {}
        self._mutex = threading.Lock()

    def try_lock(self, key: str, ttl_seconds: float) -> bool:
        if ttl_seconds <= 0:
            raise LockError("ttl_seconds must be positive")
        now = self._clock()
        with self._mutex:
            lease = self._leases.get(key)
            if lease is not None and lease[1] > now:
                return False
            self._leases[key] = (uuid.uuid4().hex, now + ttl_seconds)
        return True

    def unlock(self, key: str) -> None:
        with self._mutex:
            self._leases.pop(key, None)

    def is_locked(self, key: str) -> bool:
        with self._mutex:
            lease = self._leases.get(key)
            return lease is not None and lease[1] > self._clock()


class RedisLockService:
    """Lease lock stored in Redis with ``SET NX PX`` and a token check on release."""

    def __init__(self, client: "redis.Redis", *, key_prefix: str = LOCK_KEY_PREFIX) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._tokens: Dict[str, str] = {}
        self._mutex = threading.Lock()
        self._release = client.register_script(_RELEASE_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> "RedisLockService":
        return cls(redis.Redis.from_url(url))

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def try_lock(self, key: str, ttl_seconds: float) -> bool:
        if ttl_seconds <= 0:
            raise LockError("ttl_seconds must be positive")
        token = uuid.uuid4().hex
        try:
            acquired = self._client.set(self._key(key), token, nx=True, px=int(ttl_seconds * 1000))
        except RedisError as exc:
            raise LockError(f"Failed to acquire lock for {key}", cause=exc) from exc
        if not acquired:
            return False
        with self._mutex:
            self._tokens[key] = token
        return True

    def unlock(self, key: str) -> None:
        with self._mutex:
            token = self._tokens.pop(key, None)
        if token is None:
            LOGGER.warning("Unlock requested for %s which this process does not hold", key)
            return
        try:
            released = self._release(keys=[self._key(key)], args=[token])
        except RedisError as exc:
            raise LockError(f"Failed to release lock for {key}", cause=exc) from exc
        if not released:
            LOGGER.warning("Lock for %s expired before it was released", key)


def build_lock_service(settings: "Settings") -> LockService:
    if settings.lock_backend == "redis":
        LOGGER.info("Using Redis lock service at %s", settings.redis_url)
        return RedisLockService.from_url(settings.redis_url)
    return InMemoryLockService()


__all__ = ["InMemoryLockService", "LockError", "LockService", "RedisLockService", "build_lock_service"]
