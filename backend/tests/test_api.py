from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

import canyon_route.main as main_module

ROUTE_BODY = {
    "waypoints": [
        {"coordinates": [9.0, 48.0]},
        {"coordinates": [9.01, 48.01], "segment_mode": "routed"},
    ]
}


@pytest.fixture
def engine(services, monkeypatch: pytest.MonkeyPatch):
    engine = services.engine()
    monkeypatch.setattr(main_module, "RouteEngine", SimpleNamespace(from_settings=lambda: engine))
    return engine


def test_health_reports_credential(engine) -> None:
    with TestClient(main_module.app) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "access_token_configured": True}


def test_generate_route(services, engine) -> None:
    with TestClient(main_module.app) as client:
        resp = client.post("/route", json=ROUTE_BODY)

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "Route ready."
    assert body["warnings"] == []
    route = body["route"]
    assert route["type"] == "Feature"
    assert route["geometry"]["coordinates"][0] == [9.0, 48.0]
    assert route["geometry"]["coordinates"][-1] == [9.01, 48.01]
    [segment] = route["properties"]["segments"]
    assert segment["from"] == [9.0, 48.0]
    assert segment["mode"] == "route"
    assert len(services.directions_requests) == 1


def test_generate_route_reports_fallback(services, engine) -> None:
    services.directions_handler = lambda request: httpx.Response(503, json={"message": "Service unavailable"})
    with TestClient(main_module.app) as client:
        resp = client.post("/route", json=ROUTE_BODY)

    assert resp.status_code == 200
    body = resp.json()
    assert body["warnings"] == ["Segment 1 fallback to straight line: Service unavailable"]
    assert body["status"].startswith("Route ready with warnings: ")
    assert body["route"]["properties"]["segments"][0]["failed"] is True


def test_route_errors_map_to_status_codes(engine) -> None:
    with TestClient(main_module.app) as client:
        not_ready = client.post("/route", json={"waypoints": [{"coordinates": [9.0, 48.0]}]})
        invalid = client.post("/route", json={"waypoints": [{"coordinates": [200.0, 48.0]}]})
        engine.set_access_token("")
        no_token = client.post("/route", json=ROUTE_BODY)

    assert not_ready.status_code == 422
    assert not_ready.json()["detail"]["reason_code"] == "route_not_ready"
    assert invalid.status_code == 422
    assert no_token.status_code == 400
    assert no_token.json()["detail"] == {
        "reason_code": "missing_access_token",
        "message": "Missing Mapbox access token.",
    }


def test_route_elevations(services, engine) -> None:
    services.tile_elevations = {8601: 512.2, 8602: 498.7}
    with TestClient(main_module.app) as client:
        route = client.post("/route", json=ROUTE_BODY).json()["route"]
        resp = client.post("/route/elevations", json={"route": route})

        services.tile_status = 404
        unavailable = client.post("/route/elevations", json={"route": route})

    assert resp.status_code == 200
    assert resp.json() == {"start_m": 512, "end_m": 499}
    assert unavailable.status_code == 502
    assert unavailable.json()["detail"]["message"] == "Elevation unavailable for this route."


def test_cache_and_token_endpoints(services, engine) -> None:
    with TestClient(main_module.app) as client:
        client.post("/route", json=ROUTE_BODY)
        client.post("/route", json=ROUTE_BODY)
        stats = client.get("/cache/stats").json()

        same = client.put("/access-token", json={"access_token": "pk.test"}).json()
        rotated = client.put("/access-token", json={"access_token": "pk.next"}).json()
        after_rotation = client.get("/cache/stats").json()

        client.post("/route", json=ROUTE_BODY)
        cleared = client.delete("/cache").json()
        empty = client.put("/access-token", json={"access_token": ""})

    assert stats["size"] == 1
    assert stats["hits"] == 1
    assert stats["max_entries"] == 400
    assert same == {"changed": False}
    assert rotated == {"changed": True}
    assert after_rotation["size"] == 0
    assert cleared == {"cleared": 1}
    assert empty.status_code == 422
    assert len(services.directions_requests) == 2
