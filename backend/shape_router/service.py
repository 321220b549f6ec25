from __future__ import annotations

import asyncio
from collections.abc import Callable

from .errors import RouteGenerationError
from .logging_utils import log_event
from .models import (
    LatLng,
    LengthRange,
    POIModel,
    POIValidateResponse,
    RouteGenerateRequest,
    RouteGenerateResponse,
    RouteModel,
)
from .poi_mapping import POI, map_selected_pois, poi_straight_line_tour_m, validate_poi_selection
from .road_graph import ProgressFn
from .session import RoutingSession
from .settings import settings
from .synthesizer import RouteCandidate, generate_route
from .templates import ShapeKind, Template, create_template, parse_shape, scale_to_length, template_hash


def default_length_range() -> LengthRange:
    return LengthRange(min_m=settings.default_length_min_m, max_m=settings.default_length_max_m)


def fallback_length_range() -> LengthRange:
    return LengthRange(min_m=settings.fallback_length_min_m, max_m=settings.fallback_length_max_m)


def in_service_area(lat: float, lon: float) -> bool:
    return (
        settings.service_area_min_lat <= lat <= settings.service_area_max_lat
        and settings.service_area_min_lon <= lon <= settings.service_area_max_lon
    )


def resolve_start_point(start: LatLng | None) -> LatLng:
    if start is None:
        return LatLng(lat=settings.default_start_lat, lon=settings.default_start_lon)
    if not in_service_area(start.lat, start.lon):
        log_event(
            "start_outside_service_area",
            level="warning",
            lat=start.lat,
            lon=start.lon,
            fallback_lat=settings.fallback_start_lat,
            fallback_lon=settings.fallback_start_lon,
        )
        return LatLng(lat=settings.fallback_start_lat, lon=settings.fallback_start_lon)
    return start


def _to_poi(model: POIModel) -> POI:
    return POI(name=model.name, lat=model.lat, lon=model.lon, category=model.category)


def _route_model(candidate: RouteCandidate) -> RouteModel:
    return RouteModel(
        coordinates=[(lat, lon) for lat, lon in candidate.coordinates],
        distance_m=round(candidate.distance_m, 2),
        cost=round(candidate.cost, 2),
        node_keys=list(candidate.node_keys),
        similarity=round(candidate.similarity, 2),
        score=round(candidate.score, 4),
        variation_key=candidate.variation_key,
        rotation_deg=candidate.rotation_deg,
        flip=candidate.flip,
        phase_index=candidate.phase_index,
    )


def check_poi_selection(start: LatLng | None, pois: list[POIModel]) -> POIValidateResponse:
    origin = resolve_start_point(start)
    selected = [_to_poi(p) for p in pois]
    check = validate_poi_selection(origin.lat, origin.lon, selected)
    tour_m = poi_straight_line_tour_m(selected)
    return POIValidateResponse(
        valid=check.valid,
        fits_default_range=check.fits_default_range,
        straight_line_m=round(check.straight_line_m, 1),
        estimated_route_m=round(check.estimated_route_m, 1),
        tour_m=round(tour_m, 1),
        tour_warning=tour_m > settings.poi_tour_warning_m,
    )


def _require_session(session: RoutingSession | None) -> RoutingSession:
    if session is None or session.graph is None:
        raise RouteGenerationError(
            reason_code="graph_unavailable",
            message="Road graph is not loaded.",
        )
    if len(session.graph) == 0:
        raise RouteGenerationError(
            reason_code="graph_empty",
            message="Road graph has no nodes.",
        )
    return session


def _build_template(kind: ShapeKind, lat: float, lon: float, target_length_m: float) -> Template:
    # Hanok proportions only read well at their fixed size.
    if kind is ShapeKind.HANOK:
        return create_template(kind, lat, lon, settings.hanok_template_length_m)
    return scale_to_length(create_template(kind, lat, lon, target_length_m), target_length_m)


async def _generate(
    session: RoutingSession | None,
    request: RouteGenerateRequest,
    *,
    progress: ProgressFn | None,
    should_cancel: Callable[[], bool] | None,
) -> RouteGenerateResponse:
    ready = _require_session(session)
    kind = parse_shape(request.shape)
    start = resolve_start_point(request.start)
    warnings: list[str] = []

    selected = [_to_poi(p) for p in request.pois]
    poi_nodes: list[str] = []
    if selected:
        check = validate_poi_selection(start.lat, start.lon, selected)
        if not check.valid:
            raise RouteGenerationError(
                reason_code="poi_selection_too_long",
                message="Selected POIs are too far apart for a single loop.",
                details={
                    "estimated_route_m": round(check.estimated_route_m, 1),
                    "max_m": settings.fallback_length_max_m,
                },
            )
        tour_m = poi_straight_line_tour_m(selected)
        if tour_m > settings.poi_tour_warning_m:
            log_event("poi_tour_long", level="warning", tour_m=round(tour_m, 1))
            warnings.append(f"POI tour is about {tour_m / 1000.0:.1f} km before following the shape.")
        mapped = map_selected_pois(selected, ready.graph, ready.spatial_index)
        if not mapped:
            raise RouteGenerationError(
                reason_code="poi_unmappable",
                message="None of the selected POIs are near a walkable road.",
                details={"requested": len(selected)},
            )
        if len(mapped) < len(selected):
            warnings.append(f"{len(selected) - len(mapped)} POI(s) are too far from any road and were skipped.")
        poi_nodes = [m.node_key for m in mapped]

    ranges = [request.length_range or default_length_range()]
    fallback = fallback_length_range()
    if fallback != ranges[0]:
        ranges.append(fallback)

    for attempt, length_range in enumerate(ranges):
        target = length_range.target_m
        template = _build_template(kind, start.lat, start.lon, target)
        if len(template) < 2:
            raise RouteGenerationError(
                reason_code="template_empty",
                message=f"Shape '{kind.value}' produced no template points.",
            )
        if attempt > 0:
            log_event(
                "route_retry_fallback_range",
                level="warning",
                shape=kind.value,
                min_m=length_range.min_m,
                max_m=length_range.max_m,
            )
        result = await generate_route(
            ready,
            template,
            shape=kind,
            start_lat=start.lat,
            start_lon=start.lon,
            target_length_m=target,
            poi_nodes=poi_nodes,
            num_candidates=request.num_candidates,
            include_variations=request.include_variations,
            top_n_for_precise=request.top_n_for_precise,
            progress=progress,
            should_cancel=should_cancel,
        )
        if result is None:
            raise RouteGenerationError(
                reason_code="start_unreachable",
                message="Start point could not be matched to the road network.",
                details={"lat": start.lat, "lon": start.lon},
            )
        if result.best is None:
            if result.cancelled:
                break
            continue
        return RouteGenerateResponse(
            shape=kind.value,
            start=start,
            target_length_m=target,
            length_range=length_range,
            fallback_used=attempt > 0,
            template_hash=template_hash(template),
            route=_route_model(result.best),
            candidates=[_route_model(c) for c in result.candidates],
            evaluated=result.evaluated,
            failed=result.failed,
            mapped_pois=len(poi_nodes),
            warnings=warnings,
        )

    raise RouteGenerationError(
        reason_code="no_route_candidates",
        message="No route could be built for this shape in any length range.",
        details={"shape": kind.value, "ranges": [r.model_dump() for r in ranges]},
    )


async def generate_shape_route(
    session: RoutingSession | None,
    request: RouteGenerateRequest,
    *,
    progress: ProgressFn | None = None,
    should_cancel: Callable[[], bool] | None = None,
    timeout_s: float | None = None,
) -> RouteGenerateResponse:
    """Run the candidate search under a wall-clock budget, widening the length window once."""
    budget = settings.route_generation_timeout_s if timeout_s is None else timeout_s
    work = _generate(session, request, progress=progress, should_cancel=should_cancel)
    if budget <= 0:
        return await work
    try:
        return await asyncio.wait_for(work, timeout=budget)
    except asyncio.TimeoutError as exc:
        log_event("route_generation_timeout", level="error", shape=request.shape, timeout_s=budget)
        raise RouteGenerationError(
            reason_code="route_generation_timeout",
            message=f"Route generation exceeded {budget:g}s.",
            details={"timeout_s": budget},
        ) from exc
