import threading
import uuid
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

import redis
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from storefront.exceptions import LockLostError, LockTimeoutError
from storefront.utils.retry import redis_retry
from storefront.utils.settings import LOCK_BACKEND, LOCK_TTL_SECONDS, LOCK_WAIT_SECONDS, REDIS_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

# compare-and-delete in one step: only the owner of the token may release
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

# compare-and-extend: renew the TTL only while the token still owns the key
_EXTEND_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('EXPIRE', KEYS[1], ARGV[2])
else
    return 0
end
"""

_POLL_SECONDS = 0.05


class RedisLockBackend:
    """
    Exclusive lock per key shared by every worker process.
    SET NX EX takes it, the lua script releases it, the TTL bounds a crashed holder.
    """

    def __init__(self, client: redis.Redis | None = None, ttl: int = LOCK_TTL_SECONDS):
        self.redis = client or redis.Redis.from_url(REDIS_URL, decode_responses=True)
        self.ttl = ttl

    @staticmethod
    def _name(key: str) -> str:
        return f"lock:{key}"

    @redis_retry()
    def try_acquire(self, key: str, token: str) -> bool:
        return bool(self.redis.set(name=self._name(key), value=token, nx=True, ex=self.ttl))

    def acquire(self, key: str, token: str, wait: float) -> bool:
        retryer = Retrying(
            stop=stop_after_delay(wait),
            wait=wait_fixed(_POLL_SECONDS),
            retry=retry_if_result(lambda acquired: not acquired),
        )
        try:
            return retryer(self.try_acquire, key, token)
        except RetryError:
            return False

    @redis_retry()
    def release(self, key: str, token: str) -> bool:
        res = self.redis.eval(_RELEASE_LUA, 1, self._name(key), token)
        if not res:
            logger.warning(f"Lock {key} expired before release")
        return bool(res)

    @redis_retry()
    def extend(self, key: str, token: str) -> bool:
        return bool(self.redis.eval(_EXTEND_LUA, 1, self._name(key), token, self.ttl))


class LocalLockBackend:
    """Keyed in-process locks, for a single worker process and for tests."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str):
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def acquire(self, key: str, token: str, wait: float) -> bool:
        lock = self._checkout(key)
        if lock.acquire(timeout=wait):
            return True
        self._checkin(key)
        return False

    def release(self, key: str, token: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        if lock is None:
            return False
        lock.release()
        self._checkin(key)
        return True

    def extend(self, key: str, token: str) -> bool:
        # in-process locks never expire
        with self._guard:
            return key in self._locks


class Lease:
    """Keys held by one hold() call."""

    def __init__(self, backend, token: str):
        self.backend = backend
        self.token = token
        self.keys: List[str] = []

    def confirm(self):
        """
        Renew every held key, or raise LockLostError if one of them expired
        (and may already belong to someone else). Call it after slow work and
        right before committing.
        """
        for key in self.keys:
            if not self.backend.extend(key, self.token):
                logger.warning(f"Lock {key} was lost before commit")
                raise LockLostError(key)


class ConsistencyGuard:
    """
    Serializes mutating cart operations per identity.

    hold() takes every requested key in sorted order, so two callers that
    need the same pair of carts (merge) can never deadlock each other.
    Holders that make remote calls under the lock confirm the lease
    before they commit, so an expired lock never leads to a blind write.
    """

    def __init__(self, backend=None, wait: float = LOCK_WAIT_SECONDS):
        self.backend = backend or make_backend()
        self.wait = wait

    @contextmanager
    def hold(self, *identities) -> Iterator[Lease]:
        keys = sorted({self._key(i) for i in identities})
        token = uuid.uuid4().hex
        held: List[Tuple[str, str]] = []
        lease = Lease(self.backend, token)

        try:
            for key in keys:
                if not self.backend.acquire(key, token, self.wait):
                    logger.warning(f"Timed out waiting for lock {key}")
                    raise LockTimeoutError(key)
                held.append((key, token))
                lease.keys.append(key)
            yield lease
        finally:
            for key, tok in reversed(held):
                self.backend.release(key, tok)

    @staticmethod
    def _key(identity) -> str:
        return identity if isinstance(identity, str) else identity.lock_key


def make_backend(kind: str = LOCK_BACKEND):
    if kind == "local":
        return LocalLockBackend()
    if kind == "redis":
        return RedisLockBackend()
    raise ValueError(f"Unknown lock backend: {kind}")
