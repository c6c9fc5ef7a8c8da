"""
Redis client for the exam serving layer.
Serializes requests on one attempt (autosave / submit / expire) with a short-lived lock,
and backs the rq queue that carries exam events.
"""

import os
from contextlib import contextmanager
from typing import Iterator, Optional

import redis

from assessment.errors import ConcurrentModification

# ─── Config ────────────────────────────────────────────────────────────────────

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
ATTEMPT_LOCK_TIMEOUT_SECONDS = float(os.getenv("ATTEMPT_LOCK_TIMEOUT_SECONDS") or 10)

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL)
    return _redis_client


# ─── Key helpers ───────────────────────────────────────────────────────────────

def _lock_key(attempt_id: int) -> str:
    return f"attempt-lock:{attempt_id}"


# ─── Per-attempt lock ──────────────────────────────────────────────────────────

@contextmanager
def attempt_lock(attempt_id: int, client: Optional[redis.Redis] = None) -> Iterator[None]:
    """
    Hold the attempt's lock for the duration of one request.
    The lock expires on its own so a crashed worker never wedges an attempt.
    """
    r = client or get_redis()
    lock = r.lock(
        _lock_key(attempt_id),
        timeout=ATTEMPT_LOCK_TIMEOUT_SECONDS,
        blocking_timeout=ATTEMPT_LOCK_TIMEOUT_SECONDS,
    )
    if not lock.acquire():
        raise ConcurrentModification(f"Attempt {attempt_id} is busy; retry the request")
    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            # Expired while we held it; the compare-and-set still guarded the write.
            pass
