"""Tests for the HTTP layer: wiring and error mapping."""

import pytest
from fastapi.testclient import TestClient

from transitplan.api import stops, vehicles
from transitplan.core.errors import PersistenceError, UpstreamError, ValidationError
from transitplan.main import app
from transitplan.schemas.transit import NearbyStop


class _Locator:
    def __init__(self, error=None):
        self.error = error

    async def find_nearby_stops(self, lat, lon, radius_km, limit):
        if self.error:
            raise self.error
        return [NearbyStop(stop_id="KJ10", name="KLCC", lat=3.134, lon=101.6865, distance_km=0.04,
                           category="rapid-rail-kl")]


@pytest.fixture
def client(monkeypatch):
    # No lifespan: services are wired per test
    monkeypatch.setattr(stops, "locator", None)
    monkeypatch.setattr(vehicles, "tracker", None)
    return TestClient(app)


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_service_not_ready(client):
    assert client.get("/api/stops/nearby", params={"lat": 3.1, "lon": 101.6}).status_code == 503


def test_nearby_stops(client, monkeypatch):
    monkeypatch.setattr(stops, "locator", _Locator())
    resp = client.get("/api/stops/nearby", params={"lat": 3.1337, "lon": 101.6863})
    assert resp.status_code == 200
    assert resp.json()[0]["stop_id"] == "KJ10"


@pytest.mark.parametrize("error,status", [
    (ValidationError("Invalid coordinates"), 422),
    (UpstreamError("feed down", source="prasarana"), 502),
    (PersistenceError("database unavailable"), 503),
])
def test_error_mapping(client, monkeypatch, error, status):
    monkeypatch.setattr(stops, "locator", _Locator(error))
    resp = client.get("/api/stops/nearby", params={"lat": 3.1337, "lon": 101.6863})
    assert resp.status_code == status
    assert resp.json()["detail"] == str(error)
