import unittest
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from snapshot_factory import make_snapshot
from weather_cache.config import Settings
from weather_cache.main import create_app


def _payload(**kwargs) -> dict:
    observed = datetime.now(timezone.utc) - timedelta(minutes=10)
    return make_snapshot(observed=observed, **kwargs).model_dump(mode="json", exclude_none=True)


class TestApi(unittest.TestCase):
    def setUp(self):
        self.app = create_app(Settings(sweeper_enabled=False, store_backend="memory"))
        self.client = TestClient(self.app)

    def _post(self, **kwargs):
        resp = self.client.post("/v1/snapshots", json=_payload(**kwargs))
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()

    def test_post_and_get_snapshot(self):
        body = self._post(wind_speed=95.0)
        self.assertTrue(body["id"])
        self.assertTrue(body["cache_key"].startswith("weather_40.123_-74.456_"))
        self.assertEqual(body["version"], 1)
        self.assertEqual(body["ai_analysis"]["risk_assessment"]["hazards"]["storm"]["risk"], "high")

        resp = self.client.get(f"/v1/snapshots/{body['id']}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["location"]["name"], "Newark")

    def test_unknown_snapshot_is_404(self):
        resp = self.client.get("/v1/snapshots/missing")
        self.assertEqual(resp.status_code, 404)
        data = resp.json()
        self.assertEqual(data["error"], "NotFoundError")
        self.assertEqual(data["context"], {"snapshot_id": "missing"})

    def test_cache_key_collision_is_409_unless_replacing(self):
        first = self._post(id="first", cache_key="dup")
        resp = self.client.post("/v1/snapshots", json=_payload(id="second", cache_key="dup"))
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["context"]["existing_id"], "first")

        resp = self.client.post(
            "/v1/snapshots",
            params={"replace_on_conflict": "true"},
            json=_payload(id="second", cache_key="dup", temperature=30.0),
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["id"], first["id"])
        self.assertEqual(resp.json()["version"], 2)

    def test_invalid_input_is_422(self):
        payload = _payload()
        payload["location"]["latitude"] = 100.0
        resp = self.client.post("/v1/snapshots", json=payload)
        self.assertEqual(resp.status_code, 422)

        resp = self.client.get("/v1/snapshots/nearby", params={"longitude": 0, "latitude": 100})
        self.assertEqual(resp.status_code, 422)

        resp = self.client.get("/v1/snapshots/high-risk", params={"hazard": "tsunami"})
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["error"], "ValidationError")

    def test_query_endpoints(self):
        body = self._post(wind_speed=95.0)

        resp = self.client.get("/v1/snapshots/nearby", params={"longitude": -74.4, "latitude": 40.1})
        self.assertEqual([s["id"] for s in resp.json()], [body["id"]])

        resp = self.client.get("/v1/snapshots/search", params={"name": "NEWARK"})
        self.assertEqual([s["id"] for s in resp.json()], [body["id"]])

        resp = self.client.get(f"/v1/snapshots/cache/{body['cache_key']}")
        self.assertEqual(resp.json()["id"], body["id"])

        resp = self.client.get("/v1/snapshots/high-risk", params={"hazard": "storm"})
        self.assertEqual([s["id"] for s in resp.json()], [body["id"]])

    def test_snapshot_projections(self):
        now = datetime.now(timezone.utc)
        alerts = [{"title": "Wind advisory", "severity": "moderate",
                   "start": (now - timedelta(hours=1)).isoformat(), "end": (now + timedelta(hours=1)).isoformat()}]
        body = self._post(wind_speed=95.0, alerts=alerts)
        snapshot_id = body["id"]

        resp = self.client.get(f"/v1/snapshots/{snapshot_id}/risks")
        self.assertEqual(resp.json()["storm"], "high")
        self.assertEqual(resp.json()["flood"], "unknown")

        resp = self.client.get(f"/v1/snapshots/{snapshot_id}/summary")
        self.assertEqual(resp.json()["location"], "Newark")
        self.assertEqual(resp.json()["wind_speed"], 95.0)

        resp = self.client.get(f"/v1/snapshots/{snapshot_id}/alerts")
        self.assertEqual([a["title"] for a in resp.json()], ["Wind advisory"])

        resp = self.client.get(f"/v1/snapshots/{snapshot_id}/freshness")
        data = resp.json()
        self.assertTrue(data["is_fresh"])
        self.assertEqual(data["snapshot_id"], snapshot_id)

    def test_region_stats(self):
        self._post(latitude=40.5, longitude=-74.5, temperature=18.0)
        ring = [[-75.0, 40.0], [-74.0, 40.0], [-74.0, 41.0], [-75.0, 41.0]]
        resp = self.client.post("/v1/regions/stats", json={"boundary": ring})
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["count"], 1)
        self.assertEqual(resp.json()["avg_temperature"], 18.0)

        resp = self.client.post("/v1/regions/stats", json={"boundary": [[0, 0], [1, 1]]})
        self.assertEqual(resp.status_code, 422)

    def test_manual_sweep(self):
        resp = self.client.post("/v1/maintenance/sweep")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["removed"], 0)
        self.assertFalse(data["skipped"])
        self.assertIsNone(data["error"])


if __name__ == "__main__":
    unittest.main()
