"""Behaviour every SnapshotStore backend must share; mixed into per-backend TestCases."""

import time
from datetime import timedelta

from snapshot_factory import NOW, analysis, make_snapshot
from weather_cache.cancellation import CancelToken
from weather_cache.domain import RiskLevel
from weather_cache.errors import CanceledError, ConflictError, NotFoundError, ValidationError
from weather_cache.freshness import derive_cache_key

SQUARE = [(-75.0, 40.0), (-74.0, 40.0), (-74.0, 41.0), (-75.0, 41.0)]


class StoreBehaviour:
    """Subclasses provide ``make_store()`` returning a store with a 900s cache-key interval."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    # -- put ------------------------------------------------------------------

    def test_put_fills_write_defaults(self):
        stored = self.store.put(make_snapshot(), now=NOW)
        self.assertTrue(stored.id)
        self.assertEqual(stored.created_at, NOW)
        self.assertEqual(stored.updated_at, NOW)
        self.assertEqual(stored.version, 1)
        self.assertEqual(stored.expires_at, NOW + timedelta(hours=6))
        self.assertGreater(stored.expires_at, stored.created_at)
        self.assertEqual(stored.cache_key, derive_cache_key(40.123, -74.456, NOW, interval_seconds=900))

    def test_put_then_find_by_cache_key_round_trips(self):
        snap = make_snapshot(rain_1h=12.5, ai_analysis=analysis("high", 80, flood="moderate"))
        stored = self.store.put(snap, now=NOW)
        found = self.store.find_by_cache_key(stored.cache_key, now=NOW)
        self.assertEqual(found.location, snap.location)
        self.assertEqual(found.current, snap.current)
        self.assertEqual(found.ai_analysis, snap.ai_analysis)

    def test_same_tick_different_id_conflicts(self):
        self.store.put(make_snapshot(id="first"), now=NOW)
        with self.assertRaises(ConflictError) as ctx:
            self.store.put(make_snapshot(id="second"), now=NOW + timedelta(minutes=1))
        self.assertEqual(ctx.exception.details["existing_id"], "first")
        self.assertEqual(self.store.count(), 1)

    def test_same_id_is_an_update(self):
        self.store.put(make_snapshot(id="abc", temperature=10.0), now=NOW)
        updated = self.store.put(make_snapshot(id="abc", temperature=11.0), now=NOW + timedelta(minutes=1))
        self.assertEqual(updated.version, 2)
        self.assertEqual(updated.created_at, NOW)
        self.assertEqual(updated.updated_at, NOW + timedelta(minutes=1))
        self.assertEqual(self.store.get("abc").current.temperature.value, 11.0)
        self.assertEqual(self.store.count(), 1)

    def test_expired_key_holder_is_evicted(self):
        self.store.put(make_snapshot(id="old", expires_at=NOW + timedelta(minutes=10)), now=NOW)
        self.store.put(make_snapshot(id="new"), now=NOW + timedelta(minutes=12))
        self.assertEqual(self.store.count(), 1)
        with self.assertRaises(NotFoundError):
            self.store.get("old")

    def test_put_rejects_missing_coordinates(self):
        with self.assertRaises(ValidationError):
            self.store.put(make_snapshot(latitude=None, longitude=None), now=NOW)

    def test_put_rejects_missing_observation_time(self):
        with self.assertRaises(ValidationError):
            self.store.put(make_snapshot(current=None), now=NOW)

    def test_put_rejects_expiry_before_creation(self):
        with self.assertRaises(ValidationError):
            self.store.put(make_snapshot(expires_at=NOW - timedelta(minutes=1)), now=NOW)
        self.assertEqual(self.store.count(), 0)

    def test_returned_snapshots_are_copies(self):
        stored = self.store.put(make_snapshot(id="abc"), now=NOW)
        stored.location.name = "Changed"
        self.assertEqual(self.store.get("abc").location.name, "Newark")

    def test_get_unknown_id_raises(self):
        with self.assertRaises(NotFoundError):
            self.store.get("missing")

    # -- queries --------------------------------------------------------------

    def _seed_nearby(self):
        self.store.put(make_snapshot(id="near", observed=NOW - timedelta(minutes=30)), now=NOW)
        self.store.put(make_snapshot(id="nearer-newer", latitude=40.15, observed=NOW - timedelta(minutes=5)), now=NOW)
        self.store.put(make_snapshot(id="stale", latitude=40.2, observed=NOW - timedelta(hours=5)), now=NOW)
        self.store.put(make_snapshot(id="far", latitude=42.2), now=NOW)
        self.store.put(
            make_snapshot(id="expired", latitude=40.1, expires_at=NOW - timedelta(minutes=1)),
            now=NOW - timedelta(hours=1),
        )

    def test_find_nearby_filters_and_orders(self):
        self._seed_nearby()
        found = self.store.find_nearby(-74.456, 40.123, 50.0, 3.0, now=NOW)
        self.assertEqual([s.id for s in found], ["nearer-newer", "near"])

    def test_find_nearby_never_returns_expired_or_too_old(self):
        self._seed_nearby()
        for snap in self.store.find_nearby(-74.456, 40.123, 500.0, 3.0, now=NOW):
            self.assertGreater(snap.expires_at, NOW)
            self.assertGreaterEqual(snap.observation_time, NOW - timedelta(hours=3))

    def test_find_nearby_across_antimeridian(self):
        self.store.put(make_snapshot(id="east", latitude=0.0, longitude=179.95), now=NOW)
        self.store.put(make_snapshot(id="west", latitude=0.0, longitude=-179.95), now=NOW)
        found = self.store.find_nearby(179.99, 0.0, 25.0, 3.0, now=NOW)
        self.assertEqual({s.id for s in found}, {"east", "west"})

    def test_find_nearby_includes_points_at_the_radius_edge(self):
        self.store.put(make_snapshot(id="north-edge", latitude=0.4495, longitude=0.0), now=NOW)
        self.store.put(make_snapshot(id="south-edge", latitude=-0.4495, longitude=0.0), now=NOW)
        self.store.put(make_snapshot(id="outside", latitude=0.4505, longitude=0.001), now=NOW)
        found = self.store.find_nearby(0.0, 0.0, 50.0, 3.0, now=NOW)
        self.assertEqual({s.id for s in found}, {"north-edge", "south-edge"})

    def test_find_nearby_honours_cancellation(self):
        self._seed_nearby()
        token = CancelToken()
        token.cancel()
        with self.assertRaises(CanceledError):
            self.store.find_nearby(-74.456, 40.123, cancel=token, now=NOW)
        with self.assertRaises(CanceledError):
            self.store.find_by_location("newark", cancel=CancelToken(deadline=time.monotonic() - 1), now=NOW)

    def test_find_by_location_matches_name_or_city_case_insensitively(self):
        self.store.put(make_snapshot(id="a", name="Newark Airport", city="Newark"), now=NOW)
        self.store.put(make_snapshot(id="b", latitude=41.0, name="Station 12", city="Paterson"), now=NOW)
        self.store.put(make_snapshot(id="c", latitude=42.0, name="100% Field", city=None), now=NOW)
        self.assertEqual([s.id for s in self.store.find_by_location("AIRPORT", now=NOW)], ["a"])
        self.assertEqual([s.id for s in self.store.find_by_location("paters", now=NOW)], ["b"])
        self.assertEqual([s.id for s in self.store.find_by_location("100%", now=NOW)], ["c"])
        self.assertEqual(self.store.find_by_location("nowhere", now=NOW), [])

    def test_find_by_cache_key_ignores_expired(self):
        stored = self.store.put(make_snapshot(expires_at=NOW + timedelta(minutes=5)), now=NOW)
        self.assertEqual(self.store.find_by_cache_key(stored.cache_key, now=NOW).id, stored.id)
        with self.assertRaises(NotFoundError):
            self.store.find_by_cache_key(stored.cache_key, now=NOW + timedelta(minutes=5))
        with self.assertRaises(NotFoundError):
            self.store.find_by_cache_key("weather_0.000_0.000_0", now=NOW)

    def test_find_within_boundary_and_time_range(self):
        self.store.put(make_snapshot(id="inside", latitude=40.5, longitude=-74.5), now=NOW)
        self.store.put(make_snapshot(id="edge", latitude=40.5, longitude=-74.0), now=NOW)
        self.store.put(make_snapshot(id="outside", latitude=40.5, longitude=-73.5), now=NOW)
        self.store.put(
            make_snapshot(id="old", latitude=40.6, longitude=-74.6, observed=NOW - timedelta(hours=30)),
            now=NOW,
        )
        found = self.store.find_within(SQUARE, NOW - timedelta(hours=24))
        self.assertEqual({s.id for s in found}, {"inside", "edge"})

    def test_high_risk_areas(self):
        self.store.put(make_snapshot(id="high", ai_analysis=analysis("high", 60, flood="moderate")), now=NOW)
        self.store.put(make_snapshot(id="extreme", latitude=41.0, ai_analysis=analysis("extreme", 90)), now=NOW)
        self.store.put(make_snapshot(id="moderate", latitude=42.0, ai_analysis=analysis("moderate", 99)), now=NOW)
        self.store.put(make_snapshot(id="unscored", latitude=43.0, ai_analysis=analysis("high")), now=NOW)
        self.store.put(make_snapshot(id="none", latitude=44.0), now=NOW)
        self.store.put(
            make_snapshot(id="expired", latitude=45.0, ai_analysis=analysis("extreme", 100),
                          expires_at=NOW - timedelta(minutes=1)),
            now=NOW - timedelta(hours=1),
        )

        self.assertEqual([s.id for s in self.store.high_risk_areas(now=NOW)], ["extreme", "high", "unscored"])
        self.assertEqual([s.id for s in self.store.high_risk_areas(min_level="extreme", now=NOW)], ["extreme"])
        self.assertEqual(
            [s.id for s in self.store.high_risk_areas("flood", RiskLevel.MODERATE, now=NOW)], ["high"]
        )

    def test_high_risk_areas_breaks_confidence_ties_deterministically(self):
        for sid, lat, minutes in (("c", 41.0, 20), ("a", 42.0, 20), ("b", 43.0, 5), ("d", 44.0, 50)):
            self.store.put(
                make_snapshot(id=sid, latitude=lat, observed=NOW - timedelta(minutes=minutes),
                              ai_analysis=analysis("high", 70)),
                now=NOW,
            )
        self.assertEqual([s.id for s in self.store.high_risk_areas(now=NOW)], ["b", "a", "c", "d"])

    def test_high_risk_areas_rejects_unknown_arguments(self):
        with self.assertRaises(ValidationError):
            self.store.high_risk_areas("tsunami", now=NOW)
        with self.assertRaises(ValidationError):
            self.store.high_risk_areas("overall", "severe", now=NOW)

    # -- expiry ---------------------------------------------------------------

    def test_delete_expired_is_idempotent(self):
        self.store.put(make_snapshot(id="short", expires_at=NOW + timedelta(minutes=5)), now=NOW)
        self.store.put(make_snapshot(id="long", latitude=41.0), now=NOW)
        later = NOW + timedelta(hours=1)
        self.assertEqual(self.store.delete_expired(later), 1)
        self.assertEqual(self.store.delete_expired(later), 0)
        self.assertEqual(self.store.get("long").id, "long")

    def test_delete_expired_keeps_refreshed_snapshot(self):
        self.store.put(make_snapshot(id="abc", expires_at=NOW + timedelta(minutes=5)), now=NOW)
        self.store.put(make_snapshot(id="abc"), now=NOW + timedelta(minutes=4))
        self.assertEqual(self.store.delete_expired(NOW + timedelta(minutes=10)), 0)
        self.assertEqual(self.store.get("abc").version, 2)

    def test_clear_removes_everything(self):
        self.store.put(make_snapshot(), now=NOW)
        self.store.clear()
        self.assertEqual(self.store.count(), 0)
