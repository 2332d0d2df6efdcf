import threading
import unittest
from datetime import timedelta
from unittest.mock import MagicMock, patch

import redis

from snapshot_factory import NOW, make_snapshot
from weather_cache.config import Settings
from weather_cache.errors import StorageUnavailableError
from weather_cache.snapshot_store.memory import InMemorySnapshotStore
from weather_cache.sweeper import ExpirySweeper, RedisSweepLock, build_sweep_lock


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expires = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.expires[key] = ex
        return True

    def get(self, key):
        return self.store.get(key)

    def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            del self.store[key]
            self.expires.pop(key, None)
            return 1
        return 0

    def ping(self):
        return True


class FailingStore:
    def delete_expired(self, now=None):
        raise StorageUnavailableError("snapshot database unavailable")


class SignallingStore:
    def __init__(self):
        self.calls = 0
        self.called = threading.Event()

    def delete_expired(self, now=None):
        self.calls += 1
        self.called.set()
        return 0


class TestExpirySweeper(unittest.TestCase):
    def test_sweep_removes_expired_snapshots(self):
        store = InMemorySnapshotStore()
        store.put(make_snapshot(id="old", expires_at=NOW + timedelta(minutes=1)), now=NOW)
        store.put(make_snapshot(id="fresh", latitude=41.0), now=NOW)
        sweeper = ExpirySweeper(store, interval_seconds=60)

        result = sweeper.sweep_once(NOW + timedelta(minutes=5))

        self.assertEqual(result.removed, 1)
        self.assertFalse(result.skipped)
        self.assertIsNone(result.error)
        self.assertIs(sweeper.last_result, result)
        self.assertEqual(store.count(), 1)

    def test_storage_failure_is_recorded_not_raised(self):
        sweeper = ExpirySweeper(FailingStore(), interval_seconds=60)
        result = sweeper.sweep_once(NOW)
        self.assertEqual(result.removed, 0)
        self.assertIn("unavailable", result.error)
        self.assertIsNotNone(result.finished_at)

    def test_sweep_in_progress_is_skipped(self):
        store = SignallingStore()
        sweeper = ExpirySweeper(store, interval_seconds=60)
        sweeper._running.acquire()
        try:
            result = sweeper.sweep_once(NOW)
        finally:
            sweeper._running.release()
        self.assertTrue(result.skipped)
        self.assertEqual(store.calls, 0)

    def test_lock_held_elsewhere_skips(self):
        client = FakeRedis()
        client.set("weather_cache:sweep_lock", "other-worker")
        store = SignallingStore()
        sweeper = ExpirySweeper(store, interval_seconds=60, lock=RedisSweepLock(client))

        result = sweeper.sweep_once(NOW)

        self.assertTrue(result.skipped)
        self.assertEqual(store.calls, 0)
        self.assertEqual(client.get("weather_cache:sweep_lock"), "other-worker")

    def test_lock_is_released_after_sweep(self):
        client = FakeRedis()
        lock = RedisSweepLock(client, ttl_seconds=30)
        sweeper = ExpirySweeper(SignallingStore(), interval_seconds=60, lock=lock)

        sweeper.sweep_once(NOW)

        self.assertIsNone(client.get("weather_cache:sweep_lock"))
        self.assertTrue(lock.acquire())
        self.assertEqual(client.expires["weather_cache:sweep_lock"], 30)

    def test_redis_failure_on_acquire_is_recorded(self):
        lock = MagicMock()
        lock.acquire.side_effect = redis.ConnectionError("connection refused")
        store = SignallingStore()
        sweeper = ExpirySweeper(store, interval_seconds=60, lock=lock)

        result = sweeper.sweep_once(NOW)

        self.assertIn("connection refused", result.error)
        self.assertEqual(store.calls, 0)
        lock.release.assert_not_called()

    def test_any_lock_failure_is_recorded(self):
        lock = MagicMock()
        lock.acquire.side_effect = RuntimeError("lock backend broken")
        store = SignallingStore()
        sweeper = ExpirySweeper(store, interval_seconds=60, lock=lock)

        result = sweeper.sweep_once(NOW)

        self.assertIn("lock backend broken", result.error)
        self.assertEqual(store.calls, 0)

    def test_lock_release_failure_does_not_lose_result(self):
        lock = MagicMock()
        lock.acquire.return_value = True
        lock.release.side_effect = RuntimeError("release failed")
        store = SignallingStore()
        sweeper = ExpirySweeper(store, interval_seconds=60, lock=lock)

        result = sweeper.sweep_once(NOW)

        self.assertIsNone(result.error)
        self.assertEqual(store.calls, 1)

    def test_loop_keeps_running_after_lock_failures(self):
        store = SignallingStore()
        attempts = []

        class FlakyLock:
            def acquire(self):
                attempts.append(1)
                if len(attempts) < 3:
                    raise RuntimeError("lock backend broken")
                return True

            def release(self):
                pass

        sweeper = ExpirySweeper(store, interval_seconds=0.01, lock=FlakyLock())
        sweeper.start()
        try:
            self.assertTrue(store.called.wait(2.0))
            self.assertTrue(sweeper.running)
        finally:
            sweeper.stop()
        self.assertGreaterEqual(len(attempts), 3)

    def test_start_and_stop_background_loop(self):
        store = SignallingStore()
        sweeper = ExpirySweeper(store, interval_seconds=0.01)
        sweeper.start()
        try:
            self.assertTrue(store.called.wait(2.0))
            self.assertTrue(sweeper.running)
        finally:
            sweeper.stop()
        self.assertFalse(sweeper.running)

    def test_interval_must_be_positive(self):
        with self.assertRaises(ValueError):
            ExpirySweeper(SignallingStore(), interval_seconds=0)


class TestBuildSweepLock(unittest.TestCase):
    def test_no_url_means_no_lock(self):
        self.assertIsNone(build_sweep_lock(Settings(sweep_lock_redis_url=None)))

    def test_reachable_redis_builds_lock(self):
        fake = FakeRedis()
        settings = Settings(sweep_lock_redis_url="redis://localhost:6379/0", sweep_lock_ttl_seconds=45)
        with patch("weather_cache.sweeper.redis.Redis.from_url", return_value=fake):
            lock = build_sweep_lock(settings)
        self.assertIsInstance(lock, RedisSweepLock)
        self.assertIs(lock.client, fake)
        self.assertEqual(lock.ttl_seconds, 45)

    def test_unreachable_redis_falls_back(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("down")
        settings = Settings(sweep_lock_redis_url="redis://localhost:6379/0")
        with patch("weather_cache.sweeper.redis.Redis.from_url", return_value=client):
            self.assertIsNone(build_sweep_lock(settings))


if __name__ == "__main__":
    unittest.main()
