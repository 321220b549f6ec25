from __future__ import annotations

import asyncio
from typing import Any

import pytest

import shape_router.service as service
from shape_router.errors import RouteGenerationError
from shape_router.geo_math import local_meters_to_latlon
from shape_router.models import LatLng, LengthRange, POIModel, RouteGenerateRequest
from shape_router.road_graph import build_road_graph
from shape_router.session import RoutingSession
from shape_router.settings import settings
from shape_router.synthesizer import GenerationResult

LAT0, LON0 = 35.8200, 127.1400


def _corner(east_m: float, north_m: float) -> tuple[float, float]:
    return local_meters_to_latlon(LAT0, LON0, east_m, north_m)


def _square_session(side_m: float = 10.0) -> RoutingSession:
    corners = [_corner(0, 0), _corner(side_m, 0), _corner(side_m, side_m), _corner(0, side_m), _corner(0, 0)]
    graph = build_road_graph([{"geometry": [{"lat": lat, "lon": lon} for lat, lon in corners]}])
    return RoutingSession(graph)


def _request(**overrides: Any) -> RouteGenerateRequest:
    lat, lon = _corner(0, 0)
    payload: dict[str, Any] = {
        "shape": "square",
        "start": {"lat": lat, "lon": lon},
        "length_range": {"min_m": 40.0, "max_m": 40.0},
    }
    payload.update(overrides)
    return RouteGenerateRequest(**payload)


def test_start_point_resolution() -> None:
    assert service.resolve_start_point(None) == LatLng(lat=settings.default_start_lat, lon=settings.default_start_lon)
    inside = LatLng(lat=35.83, lon=127.15)
    assert service.resolve_start_point(inside) == inside
    seoul = LatLng(lat=37.5665, lon=126.9780)
    assert service.resolve_start_point(seoul) == LatLng(
        lat=settings.fallback_start_lat,
        lon=settings.fallback_start_lon,
    )


@pytest.mark.anyio
async def test_generates_square_loop_in_requested_range() -> None:
    response = await service.generate_shape_route(_square_session(), _request())
    assert response.shape == "square"
    assert not response.fallback_used
    assert response.target_length_m == pytest.approx(40.0)
    assert response.route.distance_m == pytest.approx(40.0, abs=1.0)
    assert response.route.similarity >= 90.0
    assert response.template_hash
    assert response.candidates


@pytest.mark.anyio
async def test_retries_once_with_fallback_range(monkeypatch: pytest.MonkeyPatch) -> None:
    targets: list[float] = []
    real = service.generate_route

    async def first_attempt_fails(session: RoutingSession, template: Any, **kwargs: Any) -> GenerationResult | None:
        targets.append(kwargs["target_length_m"])
        if len(targets) == 1:
            return GenerationResult(best=None, evaluated=3, failed=3)
        return await real(session, template, **kwargs)

    monkeypatch.setattr(settings, "fallback_length_min_m", 40.0)
    monkeypatch.setattr(settings, "fallback_length_max_m", 48.0)
    monkeypatch.setattr(service, "generate_route", first_attempt_fails)
    response = await service.generate_shape_route(_square_session(), _request())
    assert response.fallback_used
    assert targets == [40.0, 44.0]
    assert response.target_length_m == pytest.approx(44.0)
    assert response.length_range == LengthRange(min_m=40.0, max_m=48.0)


@pytest.mark.anyio
async def test_no_candidates_in_any_range_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    async def always_empty(*args: Any, **kwargs: Any) -> GenerationResult:
        return GenerationResult(best=None)

    monkeypatch.setattr(service, "generate_route", always_empty)
    with pytest.raises(RouteGenerationError) as exc:
        await service.generate_shape_route(_square_session(), _request())
    assert exc.value.reason_code == "no_route_candidates"


@pytest.mark.anyio
async def test_hanok_keeps_fixed_template_length(monkeypatch: pytest.MonkeyPatch) -> None:
    lengths: list[float] = []
    real = service.create_template

    def recording(kind: Any, lat: float, lon: float, length_m: float):
        lengths.append(length_m)
        return real(kind, lat, lon, length_m)

    async def no_route(*args: Any, **kwargs: Any) -> GenerationResult:
        return GenerationResult(best=None)

    monkeypatch.setattr(service, "create_template", recording)
    monkeypatch.setattr(service, "generate_route", no_route)
    with pytest.raises(RouteGenerationError):
        await service.generate_shape_route(_square_session(), _request(shape="hanok"))
    assert lengths == [settings.hanok_template_length_m, settings.hanok_template_length_m]


@pytest.mark.anyio
async def test_missing_and_empty_graph_errors() -> None:
    with pytest.raises(RouteGenerationError) as exc:
        await service.generate_shape_route(None, _request())
    assert exc.value.reason_code == "graph_unavailable"

    with pytest.raises(RouteGenerationError) as exc:
        await service.generate_shape_route(RoutingSession(build_road_graph([])), _request())
    assert exc.value.reason_code == "graph_empty"


@pytest.mark.anyio
async def test_all_pois_unmappable_is_an_error() -> None:
    lat, lon = _corner(0, 3000)
    request = _request(pois=[{"name": "Far", "lat": lat, "lon": lon, "category": "공원"}])
    with pytest.raises(RouteGenerationError) as exc:
        await service.generate_shape_route(_square_session(), request)
    assert exc.value.reason_code == "poi_unmappable"


@pytest.mark.anyio
async def test_partially_mappable_pois_warn_and_continue() -> None:
    near_lat, near_lon = _corner(10, 10)
    far_lat, far_lon = _corner(0, 3000)
    request = _request(
        pois=[
            {"name": "Near", "lat": near_lat, "lon": near_lon},
            {"name": "Far", "lat": far_lat, "lon": far_lon},
        ]
    )
    response = await service.generate_shape_route(_square_session(), request)
    assert response.mapped_pois == 1
    assert any("skipped" in w for w in response.warnings)


@pytest.mark.anyio
async def test_overlong_poi_selection_is_rejected() -> None:
    lat, lon = _corner(0, 9000)
    request = _request(pois=[{"name": "Distant", "lat": lat, "lon": lon}])
    with pytest.raises(RouteGenerationError) as exc:
        await service.generate_shape_route(_square_session(), request)
    assert exc.value.reason_code == "poi_selection_too_long"


@pytest.mark.anyio
async def test_wall_clock_budget_raises_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    async def slow(*args: Any, **kwargs: Any) -> GenerationResult:
        await asyncio.sleep(5)
        return GenerationResult(best=None)

    monkeypatch.setattr(service, "generate_route", slow)
    with pytest.raises(RouteGenerationError) as exc:
        await service.generate_shape_route(_square_session(), _request(), timeout_s=0.05)
    assert exc.value.reason_code == "route_generation_timeout"


def test_poi_selection_check_reports_tour_warning() -> None:
    pois = [
        POIModel(name="A", lat=35.80, lon=127.10),
        POIModel(name="B", lat=35.89, lon=127.10),
    ]
    result = service.check_poi_selection(LatLng(lat=35.80, lon=127.10), pois)
    assert result.tour_m == pytest.approx(10_007.5, abs=5.0)
    assert result.tour_warning
    # Out and back to B is twice the tour before the route factor.
    assert result.straight_line_m == pytest.approx(2 * result.tour_m, abs=0.2)
    assert not result.valid
    assert not result.fits_default_range
    assert result.estimated_route_m == pytest.approx(result.straight_line_m * 1.5, abs=0.2)
