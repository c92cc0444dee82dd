# tests/api/test_routes.py
# HTTP tests against the FastAPI app with an in-memory store.
# The TestClient context runs the lifespan, so the timestamp poller is live.

import pytest
from fastapi.testclient import TestClient

from feedsync.db.storage import InMemoryKeyValueStore
from feedsync.main import create_app
from feedsync.state import AppState


@pytest.fixture
def state():
    return AppState(store=InMemoryKeyValueStore())


@pytest.fixture
def client(state):
    with TestClient(create_app(state=state)) as c:
        yield c


class TestHealth:

    def test_health_is_healthy_when_started(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["checks"]["storage"]["status"] == "healthy"
        assert body["checks"]["timers"]["status"] == "healthy"

    def test_liveness_and_readiness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}
        assert client.get("/health/ready").json() == {"status": "ready"}


class TestCacheRoutes:

    def test_save_then_load(self, client, state):
        resp = client.put("/api/cache/user_42", json={"items": [{"id": "e1"}, {"id": "e2"}], "synced_timestamp": 123})
        assert resp.status_code == 200
        assert resp.json() == {"feed_id": "user_42", "saved": True, "total_items": 2}

        page = client.get("/api/cache/user_42").json()
        assert page["feedId"] == "user_42"
        assert page["totalItems"] == 2
        assert page["lastSyncedTimestamp"] == 123
        assert page["schemaVersion"] == 1

    def test_save_defaults_to_stable_timestamp(self, client, state):
        client.put("/api/cache/discover", json={"items": []})
        page = client.get("/api/cache/discover").json()
        assert page["lastSyncedTimestamp"] == state.stable_timestamp.as_epoch_ms()

    def test_missing_feed_is_404(self, client):
        resp = client.get("/api/cache/nobody")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_index_and_clear(self, client):
        client.put("/api/cache/discover", json={"items": [1]})
        client.put("/api/cache/user_1", json={"items": [1, 2]})

        index = client.get("/api/cache").json()
        assert [f["feedId"] for f in index["feeds"]] == ["discover", "user_1"]
        assert index["total_size"] == sum(f["size"] for f in index["feeds"])

        assert client.delete("/api/cache/discover").json()["success"] is True
        assert client.get("/api/cache/discover").status_code == 404
        assert client.delete("/api/cache").json()["message"] == "cleared 1 feeds"
        assert client.get("/api/cache").json()["feeds"] == []


class TestBatchRoutes:

    def test_batch_lifecycle(self, client):
        resp = client.post("/api/batches", json={"batch_id": "b1", "temp_ids": ["t1", "t2"]})
        assert resp.status_code == 201
        assert resp.json()["total_count"] == 2
        assert client.get("/api/batches/active").json()["batch_id"] == "b1"

        resp = client.patch("/api/batches/b1", json={"status": "uploading"})
        assert resp.json()["status"] == "uploading"

        resp = client.patch("/api/batches/b1/images/t1", json={"status": "error", "error": "blurry"})
        assert resp.json()["images"][0] == {"temp_id": "t1", "status": "error", "error": "blurry"}

        client.post("/api/batches/b1/processed", json={"success": False})
        resp = client.post("/api/batches/b1/processed", json={"success": True})
        body = resp.json()
        assert body["status"] == "complete"
        assert (body["processed_count"], body["success_count"], body["error_count"]) == (2, 1, 1)
        assert client.get("/api/batches/active").status_code == 404

        assert client.delete("/api/batches/b1").json()["success"] is True
        assert client.get("/api/batches/b1").status_code == 404

    def test_generated_ids(self, client):
        body = client.post("/api/batches", json={"image_count": 3}).json()
        assert body["batch_id"].startswith("batch_")
        assert len(body["images"]) == 3
        assert all(img["temp_id"].startswith("temp_") for img in body["images"])

    @pytest.mark.parametrize("payload", [{"temp_ids": []}, {"image_count": 21}])
    def test_invalid_counts_are_400(self, client, payload):
        resp = client.post("/api/batches", json=payload)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_backward_status_is_ignored(self, client):
        client.post("/api/batches", json={"batch_id": "b1", "temp_ids": ["t1", "t2"]})
        client.post("/api/batches/b1/complete")
        resp = client.patch("/api/batches/b1", json={"status": "uploading"})
        assert resp.json()["status"] == "complete"

    def test_unknown_batch_and_image_are_404(self, client):
        assert client.patch("/api/batches/nope", json={"status": "uploading"}).status_code == 404
        client.post("/api/batches", json={"batch_id": "b1", "temp_ids": ["t1"]})
        assert client.patch("/api/batches/b1/images/nope", json={"status": "success"}).status_code == 404


class TestSessionRoutes:

    def test_timestamp_is_on_the_grid(self, client):
        body = client.get("/api/timestamp").json()
        assert body["grid_minutes"] == 15
        assert body["epoch_ms"] % (15 * 60 * 1000) == 0
        assert client.post("/api/timestamp/refresh").json()["epoch_ms"] >= body["epoch_ms"]

    def test_reset_clears_caches_and_batches(self, client, state):
        client.put("/api/cache/discover", json={"items": [1]})
        client.post("/api/batches", json={"batch_id": "b1", "temp_ids": ["t1"]})
        state.has_seen_onboarding = True

        resp = client.post("/api/session/reset")
        assert resp.json()["success"] is True
        assert client.get("/api/cache/discover").status_code == 404
        assert client.get("/api/batches/b1").status_code == 404
        assert state.has_seen_onboarding is True

    def test_reset_can_keep_caches(self, client):
        client.put("/api/cache/discover", json={"items": [1]})
        client.post("/api/session/reset", params={"clear_cache": "false"})
        assert client.get("/api/cache/discover").status_code == 200


class TestWarmRoute:

    def test_warm_skips_fresh_cache(self, client):
        first = client.post("/api/cache/discover/warm", json={"items": [1, 2, 3]})
        assert first.json() == {"feed_id": "discover", "saved": True, "total_items": 3}

        second = client.post("/api/cache/discover/warm", json={"items": [9]})
        assert second.json()["saved"] is False
        assert client.get("/api/cache/discover").json()["totalItems"] == 3
