from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from shape_router.geo_math import local_meters_to_latlon
from shape_router.main import app, routing_session
from shape_router.poi_mapping import POI
from shape_router.road_graph import build_road_graph
from shape_router.session import RoutingSession
from shape_router.settings import settings
from shape_router.synthesizer import GenerationResult

LAT0, LON0 = 35.8200, 127.1400


def _corner(east_m: float, north_m: float) -> tuple[float, float]:
    return local_meters_to_latlon(LAT0, LON0, east_m, north_m)


def _square_session() -> RoutingSession:
    corners = [_corner(0, 0), _corner(10, 0), _corner(10, 10), _corner(0, 10), _corner(0, 0)]
    return RoutingSession(build_road_graph([{"geometry": [{"lat": lat, "lon": lon} for lat, lon in corners]}]))


CATALOG = [
    POI("Gyeonggijeon", 35.8153, 127.1498, "관광명소"),
    POI("Deokjin Park", 35.8470, 127.1210, "공원"),
    POI("Cafe Hanok", 35.8160, 127.1520, "카페"),
]


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setattr(settings, "load_data_on_startup", False)
    session = _square_session()
    app.dependency_overrides[routing_session] = lambda: session
    try:
        with TestClient(app) as client:
            client.app.state.pois = list(CATALOG)
            client.app.state.road_data_path = "memory"
            yield client
    finally:
        app.dependency_overrides.clear()


def _generate_payload(**overrides: Any) -> dict[str, Any]:
    lat, lon = _corner(0, 0)
    payload: dict[str, Any] = {
        "shape": "square",
        "start": {"lat": lat, "lon": lon},
        "length_range": {"min_m": 40, "max_m": 40},
    }
    payload.update(overrides)
    return payload


def test_health_reports_graph_and_catalog(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["graph"]["nodes"] == 4
    assert body["pois"] == 3
    assert body["road_data_path"] == "memory"


def test_health_is_degraded_without_graph(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "load_data_on_startup", False)
    with TestClient(app) as client:
        body = client.get("/health").json()
    assert body["status"] == "degraded"
    assert body["graph"]["nodes"] == 0


def test_shapes_list_variation_sets(client: TestClient) -> None:
    shapes = {s["id"]: s for s in client.get("/shapes").json()["shapes"]}
    assert set(shapes) == {"square", "triangle", "heart", "slate", "hanok", "book"}
    assert shapes["square"]["rotations"] == [0, 45]
    assert len(shapes["heart"]["rotations"]) == 8


def test_poi_catalog_filters_by_group(client: TestClient) -> None:
    everything = client.get("/pois").json()
    assert everything["group"] == "all"
    assert everything["count"] == 3

    food = client.get("/pois", params={"group": "food"}).json()
    assert [p["name"] for p in food["pois"]] == ["Cafe Hanok"]

    assert client.get("/pois", params={"group": "nightlife"}).status_code == 422


def test_poi_validation_endpoint(client: TestClient) -> None:
    resp = client.post(
        "/pois/validate",
        json={"start": {"lat": 35.8242, "lon": 127.1480}, "pois": [{"name": "Gyeonggijeon", "lat": 35.8153, "lon": 127.1498}]},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["valid"]
    assert body["fits_default_range"]
    assert body["tour_m"] == 0.0


def test_generate_returns_best_route(client: TestClient) -> None:
    resp = client.post("/routes/generate", json=_generate_payload())
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["shape"] == "square"
    assert body["route"]["distance_m"] == pytest.approx(40.0, abs=1.0)
    assert body["route"]["node_keys"][0] == body["route"]["node_keys"][-1]
    assert body["route"]["similarity"] >= 90.0


def test_generate_rejects_inverted_length_range(client: TestClient) -> None:
    resp = client.post("/routes/generate", json=_generate_payload(length_range={"min_m": 500, "max_m": 100}))
    assert resp.status_code == 422


def test_generate_maps_domain_errors_to_status(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def nothing(*args: Any, **kwargs: Any) -> GenerationResult:
        return GenerationResult(best=None)

    monkeypatch.setattr("shape_router.service.generate_route", nothing)
    resp = client.post("/routes/generate", json=_generate_payload())
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["reason_code"] == "no_route_candidates"
    assert detail["details"]["shape"] == "square"


def test_generate_without_graph_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "load_data_on_startup", False)
    with TestClient(app) as client:
        resp = client.post("/routes/generate", json=_generate_payload())
    assert resp.status_code == 503
    assert resp.json()["detail"]["reason_code"] == "graph_unavailable"


def test_startup_loads_road_data(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    roads = tmp_path / "roads.json"
    lat0, lon0 = _corner(0, 0)
    lat1, lon1 = _corner(10, 0)
    roads.write_text(
        '{"roads": [{"geometry": [{"lat": %r, "lon": %r}, {"lat": %r, "lon": %r}]}]}' % (lat0, lon0, lat1, lon1),
        encoding="utf-8",
    )
    monkeypatch.setattr(settings, "load_data_on_startup", True)
    monkeypatch.setattr(settings, "road_data_path", str(roads))
    monkeypatch.setattr(settings, "poi_data_path", str(tmp_path / "missing.csv"))
    with TestClient(app) as client:
        body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["graph"]["nodes"] == 2
    assert body["pois"] == 0
    assert body["road_data_path"] == str(roads)


def test_startup_survives_missing_road_data(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setattr(settings, "load_data_on_startup", True)
    monkeypatch.setattr(settings, "road_data_path", str(tmp_path / "a.json"))
    monkeypatch.setattr(settings, "road_data_fallback_path", str(tmp_path / "b.json"))
    monkeypatch.setattr(settings, "poi_data_path", str(tmp_path / "missing.csv"))
    with TestClient(app) as client:
        assert client.get("/health").json()["status"] == "degraded"


def test_session_reset_clears_path_cache(client: TestClient) -> None:
    assert client.post("/routes/generate", json=_generate_payload()).status_code == 200
    cleared = client.post("/session/reset").json()["cleared_paths"]
    assert cleared > 0
    assert client.post("/session/reset").json()["cleared_paths"] == 0


def test_root_points_at_docs(client: TestClient) -> None:
    assert client.get("/").json()["docs"] == "/docs"
