"""
Per-key critical sections for attempt mutations.

With REDIS_URL configured the lock is a Redis lock shared by every API worker
and the rq sweeper; otherwise a fixed set of in-process lock stripes is used,
which is enough for a single process.
"""
import logging
import threading
import zlib
from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from redis.exceptions import LockError

from examhub.core.config import settings
from examhub.core.errors import Busy

logger = logging.getLogger(__name__)

_STRIPES = 64
_local_locks = [threading.RLock() for _ in range(_STRIPES)]

redis_client: Optional[redis.Redis] = (
    redis.Redis.from_url(settings.REDIS_URL, decode_responses=True) if settings.REDIS_URL else None
)

def start_key(exam_id: int, user_id: int) -> str: return f"lock:start:{exam_id}:{user_id}"
def attempt_key(attempt_id: int) -> str: return f"lock:attempt:{attempt_id}"

@contextmanager
def key_lock(key: str) -> Iterator[None]:
    """Hold the lock for `key` for the duration of the block."""
    if redis_client is None:
        lock = _local_locks[zlib.crc32(key.encode()) % _STRIPES]
        if not lock.acquire(timeout=settings.LOCK_WAIT_SECONDS):
            logger.warning(f"Timed out waiting for local lock {key}")
            raise Busy("Resource is busy, try again")
        try:
            yield
        finally:
            lock.release()
        return

    lock = redis_client.lock(key, timeout=settings.LOCK_TIMEOUT_SECONDS, blocking_timeout=settings.LOCK_WAIT_SECONDS)
    if not lock.acquire():
        logger.warning(f"Timed out waiting for redis lock {key}")
        raise Busy("Resource is busy, try again")
    try:
        yield
    finally:
        try:
            lock.release()
        except LockError:
            # expired while held; the DB guards still apply
            logger.warning(f"Lock {key} expired before release")
