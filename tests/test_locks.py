import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from docingest.locks import (
    LOCK_KEY_PREFIX,
    InMemoryLockService,
    LockError,
    RedisLockService,
    build_lock_service,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """Just enough of ``redis.Redis`` for the lease lock."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.values = {}
        self.set_calls = []

    def set(self, key, value, nx=False, px=None):
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.set_calls.append((key, nx, px))
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    def register_script(self, script):
        def release(keys, args):
            if self.fail:
                raise RedisConnectionError("connection refused")
            key = keys[0]
            if self.values.get(key) == args[0]:
                del self.values[key]
                return 1
            return 0

        return release


def test_in_memory_lock_is_exclusive_until_expiry() -> None:
    clock = FakeClock()
    locks = InMemoryLockService(clock=clock)

    assert locks.try_lock("doc.pdf", 60)
    assert not locks.try_lock("doc.pdf", 60)
    assert locks.is_locked("doc.pdf")

    clock.now += 61
    assert not locks.is_locked("doc.pdf")
    assert locks.try_lock("doc.pdf", 60)


def test_in_memory_unlock_releases_lease() -> None:
    locks = InMemoryLockService()
    assert locks.try_lock("doc.pdf", 60)

    locks.unlock("doc.pdf")
    locks.unlock("never-locked.pdf")

    assert locks.try_lock("doc.pdf", 60)


def test_locks_are_per_key() -> None:
    locks = InMemoryLockService()

    assert locks.try_lock("a.pdf", 60)
    assert locks.try_lock("b.pdf", 60)


def test_non_positive_ttl_is_rejected() -> None:
    with pytest.raises(LockError):
        InMemoryLockService().try_lock("doc.pdf", 0)


def test_redis_lock_uses_set_nx_with_ttl() -> None:
    client = FakeRedis()
    locks = RedisLockService(client)

    assert locks.try_lock("doc.pdf", 1200)
    assert not locks.try_lock("doc.pdf", 1200)
    assert client.set_calls[0] == (f"{LOCK_KEY_PREFIX}doc.pdf", True, 1_200_000)


def test_redis_unlock_deletes_only_own_token() -> None:
    client = FakeRedis()
    locks = RedisLockService(client)
    assert locks.try_lock("doc.pdf", 60)

    client.values[f"{LOCK_KEY_PREFIX}doc.pdf"] = "another-worker"
    locks.unlock("doc.pdf")

    assert client.values[f"{LOCK_KEY_PREFIX}doc.pdf"] == "another-worker"


def test_redis_unlock_releases_key() -> None:
    client = FakeRedis()
    locks = RedisLockService(client)
    assert locks.try_lock("doc.pdf", 60)

    locks.unlock("doc.pdf")

    assert client.values == {}
    assert locks.try_lock("doc.pdf", 60)


def test_redis_errors_are_wrapped() -> None:
    locks = RedisLockService(FakeRedis(fail=True))

    with pytest.raises(LockError) as excinfo:
        locks.try_lock("doc.pdf", 60)

    assert isinstance(excinfo.value.__cause__, RedisConnectionError)


def test_build_lock_service_defaults_to_memory(settings) -> None:
    assert isinstance(build_lock_service(settings), InMemoryLockService)
