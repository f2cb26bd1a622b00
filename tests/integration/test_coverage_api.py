"""
Tests for the coverage HTTP API.
"""

from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from scentcover.api import create_app, router
from scentcover.feeds import InMemoryFeed
from scentcover.service import CoverageService

from conftest import T0, make_walk, wait_for


@pytest.fixture
def service(test_settings):
    feed = InMemoryFeed(
        make_walk(6, source_id="rover-a", session_id="s1")
        + make_walk(6, source_id="rover-b", session_id="s2", bearing_deg=90.0,
                    start=T0 + timedelta(hours=8))
    )
    svc = CoverageService(feed, settings=test_settings)
    svc.poll_once()
    assert wait_for(lambda: svc.get_global_coverage().polygon_count == 12)
    yield svc
    svc.stop(timeout=5.0)


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


class TestCoverageEndpoints:

    def test_global_coverage(self, client):
        response = client.get("/api/coverage")
        assert response.status_code == 200

        data = response.json()
        assert data["polygon_count"] == 12
        assert data["source_ids"] == ["rover-a", "rover-b"]
        assert data["total_area_m2"] > 0
        assert data["total_area_ha"] == pytest.approx(data["total_area_m2"] / 10_000)
        assert len(data["rings"]) >= 1

    def test_without_geometry(self, client):
        data = client.get("/api/coverage", params={"include_geometry": False}).json()
        assert data["rings"] == []

    def test_range(self, client):
        response = client.get("/api/coverage/range", params={
            "start": (T0 + timedelta(hours=7)).isoformat(),
            "end": (T0 + timedelta(hours=9)).isoformat(),
        })
        assert response.status_code == 200
        assert response.json()["source_ids"] == ["rover-b"]

    def test_range_rejects_inverted_bounds(self, client):
        response = client.get("/api/coverage/range", params={
            "start": (T0 + timedelta(hours=1)).isoformat(),
            "end": T0.isoformat(),
        })
        assert response.status_code == 400

    def test_range_naive_times_read_as_utc(self, client):
        response = client.get("/api/coverage/range", params={
            "start": (T0 + timedelta(hours=7)).replace(tzinfo=None).isoformat(),
            "end": (T0 + timedelta(hours=9)).replace(tzinfo=None).isoformat(),
        })
        assert response.status_code == 200
        assert response.json()["source_ids"] == ["rover-b"]

    def test_range_mixed_naive_and_aware(self, client):
        response = client.get("/api/coverage/range", params={
            "start": T0.replace(tzinfo=None).isoformat(),
            "end": (T0 + timedelta(hours=1)).isoformat(),
        })
        assert response.status_code == 200
        assert response.json()["source_ids"] == ["rover-a"]

    def test_range_rejects_inverted_naive_bounds(self, client):
        response = client.get("/api/coverage/range", params={
            "start": (T0 + timedelta(hours=1)).replace(tzinfo=None).isoformat(),
            "end": T0.isoformat(),
        })
        assert response.status_code == 400

    def test_session(self, client):
        data = client.get("/api/coverage/sessions/s1").json()
        assert data["source_ids"] == ["rover-a"]
        assert data["session_ids"] == ["s1"]

    def test_source(self, client):
        data = client.get("/api/coverage/sources/rover-b").json()
        assert data["source_id"] == "rover-b"
        assert data["polygon_count"] == 6
        assert "rings" in data

    def test_unknown_source(self, client):
        assert client.get("/api/coverage/sources/nobody").status_code == 404


class TestStatusAndMetrics:

    def test_status(self, client):
        data = client.get("/api/status").json()
        assert data["total_polygon_count"] == 12
        assert data["source_count"] == 2
        assert data["data_source"] == "memory"
        assert {s["source_id"] for s in data["sources"]} == {"rover-a", "rover-b"}

    def test_metrics(self, client):
        client.get("/api/coverage")
        data = client.get("/api/metrics").json()
        assert data["counters"]["measurements_processed"] == 12
        assert "polygon_compute" in data["timings"]


class TestPolygonEndpoint:

    def test_compute(self, client, service):
        response = client.post("/api/polygon", json={
            "latitude": -36.85,
            "longitude": 174.76,
            "wind_direction_deg": 270,
            "wind_speed_mps": 3.0,
        })
        assert response.status_code == 200

        data = response.json()
        assert data["kind"] == "combined"
        assert data["is_valid"] is True
        assert data["area_m2"] > 0
        assert data["ring"][0] == data["ring"][-1]
        assert service.total_polygon_count == 12

    def test_validation(self, client):
        response = client.post("/api/polygon", json={
            "latitude": 95.0,
            "longitude": 174.76,
            "wind_direction_deg": 270,
            "wind_speed_mps": 3.0,
        })
        assert response.status_code == 422

    def test_negative_wind_speed_rejected(self, client):
        response = client.post("/api/polygon", json={
            "latitude": -36.85,
            "longitude": 174.76,
            "wind_direction_deg": 270,
            "wind_speed_mps": -1.0,
        })
        assert response.status_code == 422


def test_unconfigured_app_returns_503():
    app = FastAPI()
    app.include_router(router)
    client = TestClient(app)

    assert client.get("/api/coverage").status_code == 503
