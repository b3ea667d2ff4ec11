"""
API Server Tests
================

Exercises the HTTP surface with an injected orchestrator so no
environment configuration is read.
"""

import pytest
from fastapi.testclient import TestClient

from conflict_engine import EngineConfig, UpdateOrchestrator
from conflict_engine.api.server import create_app
from conflict_engine.contracts.base import HOUR
from conflict_engine.reference import StaticReferenceData
from conflict_engine.storage import InMemoryStorageBackend
from conflict_engine.temporal import LogicalClock

from .fixtures import NOW, make_alliance, make_conflict, make_frame, make_front


def build_engine(v2_enabled=True):
    store = InMemoryStorageBackend()
    store.upsert_conflict(make_conflict("USA", "RUS", importance=0.9))
    store.append_frame(make_frame("f1"))
    return UpdateOrchestrator(
        EngineConfig(v2_enabled=v2_enabled),
        store=store,
        reference=StaticReferenceData(alliances=[make_alliance()], front_lines=[make_front()]),
        clock=LogicalClock.manual(NOW),
    )


@pytest.fixture
def engine():
    return build_engine()


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as client:
        yield client


class TestReadEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "online", "cce_enabled": True, "v2_enabled": True}

    def test_top_conflicts_after_cycle(self, client):
        assert client.get("/api/v1/conflicts/top").json()["count"] == 0

        client.post("/api/v1/cycle")
        body = client.get("/api/v1/conflicts/top", params={"metric": "tension"}).json()
        assert body["count"] == 1
        assert body["results"][0]["conflict_id"] == "RUS_USA"
        assert body["results"][0]["tension"] > 0

    def test_invalid_metric_is_400(self, client):
        response = client.get("/api/v1/conflicts/top", params={"metric": "vibes"})
        assert response.status_code == 400

    def test_relations_and_stats(self, client):
        client.post("/api/v1/cycle")
        body = client.get("/api/v1/relations", params={"code": "usa", "type": "hostile"}).json()
        assert body["results"][0]["entity_a"] == "RUS"
        stats = client.get("/api/v1/relations/stats").json()
        assert stats["results"][0]["total"] == 1

    def test_v2_rollups(self, client):
        client.post("/api/v1/cycle")
        assert client.get("/api/v1/theatres").json()["results"][0]["theatre"] == "EuropeEast"
        assert client.get("/api/v1/fronts").json()["results"][0]["front_id"] == "donbas"
        assert client.get("/api/v1/alliances").json()["results"][0]["alliance_id"] == "NATO"

    def test_world(self, client):
        world = client.get("/api/v1/world").json()["results"][0]
        assert world["alert_level"] == "low"
        assert world["computed_at"] == NOW

    @pytest.mark.parametrize("path", ["/api/v1/theatres", "/api/v1/fronts", "/api/v1/alliances"])
    def test_v2_endpoints_unavailable_when_disabled(self, path):
        with TestClient(create_app(build_engine(v2_enabled=False))) as client:
            assert client.get(path).status_code == 503
            assert client.get("/api/v1/conflicts/top").status_code == 200


class TestCycleEndpoint:

    def test_runs_cycle(self, client):
        response = client.post("/api/v1/cycle", json={"min_tension": 0.05})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["phases"]["conflict_state"]["created"] == 1

    def test_override_validation(self, client):
        response = client.post("/api/v1/cycle", json={"min_tension": 2.0})
        assert response.status_code == 422

    def test_lock_held_is_409(self, client, engine):
        engine.store.acquire_lock("cce_update_cycle", "someone-else", NOW, HOUR)
        assert client.post("/api/v1/cycle").status_code == 409
