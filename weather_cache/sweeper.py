"""Periodic removal of expired snapshots."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

import redis

from weather_cache import config
from weather_cache.errors import StorageUnavailableError
from weather_cache.freshness import ensure_utc, utcnow
from weather_cache.snapshot_store.base import SnapshotStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="sweeper")


@dataclass
class SweepResult:
    """Outcome of one sweep attempt."""
    started_at: datetime
    finished_at: datetime | None = None
    removed: int = 0
    skipped: bool = False
    error: str | None = None


class SweepLock(Protocol):
    """Cross-process guard so only one worker sweeps at a time."""

    def acquire(self) -> bool:
        """Return True if this process now holds the lock."""

    def release(self) -> None:
        """Release the lock if this process still holds it."""


class RedisSweepLock:
    """``SET NX EX`` lock; the TTL frees it if the holder dies mid-sweep."""

    # delete only if the stored token is still ours
    _RELEASE_SCRIPT = (
        "if redis.call('get', KEYS[1]) == ARGV[1] then "
        "return redis.call('del', KEYS[1]) else return 0 end"
    )

    def __init__(self, client, key: str = "weather_cache:sweep_lock", ttl_seconds: int = 120) -> None:
        self.client = client
        self.key = key
        self.ttl_seconds = ttl_seconds
        self._token: str | None = None

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        if self.client.set(self.key, token, nx=True, ex=self.ttl_seconds):
            self._token = token
            return True
        return False

    def release(self) -> None:
        if self._token is None:
            return
        self.client.eval(self._RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None


def build_sweep_lock(settings: config.Settings | None = None) -> Optional[RedisSweepLock]:
    """Redis lock when ``sweep_lock_redis_url`` is configured and reachable, else None."""
    settings = settings or config.settings
    if not settings.sweep_lock_redis_url:
        return None
    try:
        client = redis.Redis.from_url(settings.sweep_lock_redis_url, decode_responses=True)
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Sweep lock Redis unavailable; sweeping with the in-process lock only",
                       extra={"error": str(exc)})
        return None
    logger.info("Using Redis sweep lock")
    return RedisSweepLock(client, ttl_seconds=settings.sweep_lock_ttl_seconds)


class ExpirySweeper:
    """
    Deletes expired snapshots on a timer.

    ``sweep_once`` is the unit of work and can be triggered manually. A sweep
    already in progress (in this process, or in another process holding the
    optional distributed lock) causes the new attempt to be skipped. Failures
    are logged and recorded; the loop waits for the next tick before retrying.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        interval_seconds: float = 300.0,
        lock: SweepLock | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than zero")
        self.store = store
        self.interval_seconds = interval_seconds
        self.lock = lock
        self.clock = clock
        self.last_result: SweepResult | None = None
        self._running = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep_once(self, now: datetime | None = None) -> SweepResult:
        """Run one sweep unless another is in progress."""
        now = ensure_utc(now) if now else self.clock()
        result = SweepResult(started_at=now)

        if not self._running.acquire(blocking=False):
            logger.debug("Sweep already in progress; skipping")
            result.skipped = True
            result.finished_at = self.clock()
            return result
        try:
            try:
                acquired = self.lock is None or self.lock.acquire()
            except redis.RedisError as exc:
                logger.error("Sweep lock unavailable", extra={"error": str(exc)})
                result.error = str(exc)
                return result
            except Exception as exc:
                logger.exception("Sweep lock acquire failed")
                result.error = str(exc)
                return result
            if not acquired:
                logger.debug("Sweep lock held by another worker; skipping")
                result.skipped = True
                return result
            try:
                result.removed = self.store.delete_expired(now)
                logger.info(f"Sweep removed {result.removed} expired snapshots")
            except StorageUnavailableError as exc:
                logger.error("Sweep failed: storage unavailable", extra={"error": str(exc)})
                result.error = str(exc)
            except Exception as exc:
                logger.exception("Sweep failed")
                result.error = str(exc)
            finally:
                if self.lock is not None:
                    try:
                        self.lock.release()
                    except Exception as exc:
                        # a Redis lock is freed by its TTL
                        logger.warning("Failed to release sweep lock", extra={"error": str(exc)})
        finally:
            self._running.release()
            result.finished_at = self.clock()
            self.last_result = result
        return result

    def _loop(self) -> None:
        logger.info(f"Expiry sweeper started (interval {self.interval_seconds}s)")
        while not self._stop.wait(self.interval_seconds):
            self.sweep_once()
        logger.info("Expiry sweeper stopped")

    def start(self) -> None:
        """Start the background timer thread (no-op if already running)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="weather-cache-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the loop to exit and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
