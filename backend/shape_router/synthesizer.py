from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from .geo_math import LatLon, dedupe_consecutive, path_length_m
from .logging_utils import log_event
from .road_graph import ProgressFn, notify_progress
from .session import RoutingSession
from .settings import settings
from .similarity import similarity
from .spur_remover import remove_spurs
from .templates import (
    ShapeKind,
    TemplateVariation,
    align_to_start,
    curvature_weight_for,
    generate_variations,
    reorder,
    resample_adaptive,
)
from .tsp import combine_template_and_poi_nodes, solve_tsp

ROUTE_SEARCH_STAGE = "route_search"


@dataclass(frozen=True)
class RouteCandidate:
    variation_key: str
    rotation_deg: int
    flip: int
    phase_index: int
    similarity: float
    score: float
    distance_m: float
    cost: float
    coordinates: tuple[LatLon, ...]
    node_keys: tuple[str, ...]
    template_nodes: tuple[str, ...]
    aligned_template: tuple[LatLon, ...]


@dataclass
class GenerationResult:
    best: RouteCandidate | None
    candidates: list[RouteCandidate] = field(default_factory=list)
    evaluated: int = 0
    failed: int = 0
    cancelled: bool = False


def phase_offsets(num_points: int, num_candidates: int) -> list[int]:
    """Evenly spaced cut indices into a closed loop, always including 0."""
    if num_points <= 0:
        return [0]
    target = max(1, min(num_candidates, num_points))
    step = max(1, num_points // target)
    picked: set[int] = {0}
    for i in range(target):
        picked.add((i * step) % num_points)
    return sorted(picked)[:target]


def composite_score(similarity_pct: float, distance_m: float, target_length_m: float) -> float:
    return (100.0 - similarity_pct) + settings.rank_distance_weight * abs(distance_m - target_length_m)


def _compare(a: RouteCandidate, b: RouteCandidate) -> int:
    if abs(a.similarity - b.similarity) > settings.rank_similarity_tie_band:
        return -1 if a.similarity > b.similarity else 1
    if a.score == b.score:
        return 0
    return -1 if a.score < b.score else 1


def rank_candidates(candidates: Sequence[RouteCandidate], *, limit: int | None = None) -> list[RouteCandidate]:
    keep = settings.max_ranked_candidates if limit is None else limit
    return sorted(candidates, key=functools.cmp_to_key(_compare))[:keep]


def _is_better(candidate: RouteCandidate, best: RouteCandidate | None) -> bool:
    if best is None:
        return True
    if candidate.similarity > best.similarity:
        return True
    return candidate.similarity == best.similarity and candidate.score < best.score


def _template_nodes(session: RoutingSession, aligned: Sequence[LatLon], start_node: str) -> list[str]:
    nodes: list[str] = []
    for lat, lon in aligned[:-1]:
        key = session.nearest_node(lat, lon)
        if key is not None:
            nodes.append(key)
    nodes = dedupe_consecutive(nodes)
    if nodes:
        nodes[0] = start_node
    else:
        nodes = [start_node]
    nodes.append(start_node)
    return dedupe_consecutive(nodes)


def _stitch(session: RoutingSession, anchors: Sequence[str]) -> tuple[list[str], float] | None:
    route: list[str] = [anchors[0]]
    cost = 0.0
    for i in range(len(anchors) - 1):
        leg = session.shortest_path(anchors[i], anchors[i + 1])
        if leg is None:
            return None
        route.extend(leg.nodes[1:])
        cost += leg.cost
    return route, cost


def _evaluate(
    session: RoutingSession,
    variation: TemplateVariation,
    phase: int,
    *,
    start_lat: float,
    start_lon: float,
    start_node: str,
    tour: Sequence[str],
    target_length_m: float,
) -> RouteCandidate | None:
    graph = session.graph
    assert graph is not None
    aligned = align_to_start(reorder(variation.template, phase), start_lat, start_lon)
    template_nodes = _template_nodes(session, aligned, start_node)
    anchors = template_nodes
    if len(tour) > 2:
        anchors = combine_template_and_poi_nodes(template_nodes, tour, graph, cache=session.path_cache)

    stitched = _stitch(session, anchors)
    if stitched is None:
        return None
    route, cost = stitched
    route = dedupe_consecutive(route)
    protected = {start_node, *template_nodes, *tour}
    route = remove_spurs(route, protected, graph, cache=session.path_cache)

    coordinates = tuple(graph.coords(key) for key in route)
    if any(c is None for c in coordinates):
        return None
    coords: tuple[LatLon, ...] = coordinates  # type: ignore[assignment]
    distance = path_length_m(coords)
    sim = similarity(aligned, coords)
    return RouteCandidate(
        variation_key=variation.key,
        rotation_deg=variation.rotation_deg,
        flip=variation.flip,
        phase_index=phase,
        similarity=sim,
        score=composite_score(sim, distance, target_length_m),
        distance_m=distance,
        cost=cost,
        coordinates=coords,
        node_keys=tuple(route),
        template_nodes=tuple(template_nodes),
        aligned_template=aligned,
    )


async def generate_route(
    session: RoutingSession,
    template: Sequence[LatLon],
    *,
    shape: ShapeKind = ShapeKind.DEFAULT,
    start_lat: float,
    start_lon: float,
    target_length_m: float,
    poi_nodes: Sequence[str] = (),
    num_candidates: int | None = None,
    include_variations: bool = True,
    top_n_for_precise: int | None = None,
    progress: ProgressFn | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> GenerationResult | None:
    """Search rotations, reflections and phase offsets of a template for the best road loop.

    Returns None when the inputs make a search impossible (no graph, empty
    template, start not on the network). A search where every candidate hits
    an unreachable segment returns a result whose ``best`` is None.
    ``top_n_for_precise`` is accepted for request compatibility; every
    candidate is fully evaluated.
    """
    if not session.ready:
        log_event("route_search_skipped", level="warning", reason="graph_unavailable")
        return None
    if len(template) < 2:
        log_event("route_search_skipped", level="warning", reason="template_empty")
        return None
    start_node = session.nearest_node(start_lat, start_lon)
    if start_node is None:
        log_event("route_search_skipped", level="warning", reason="start_unreachable")
        return None

    resampled = resample_adaptive(template, settings.resample_target_points, curvature_weight_for(shape))
    if include_variations:
        variations = generate_variations(resampled, start_lat, start_lon, shape)
    else:
        variations = [TemplateVariation(template=resampled, rotation_deg=0, flip=1, key="0_1")]
    count = settings.num_candidates if num_candidates is None else num_candidates
    offsets = phase_offsets(len(resampled) - 1, count)
    jobs = [(variation, phase) for variation in variations for phase in offsets]

    tour = solve_tsp(start_node, poi_nodes, session.graph, cache=session.path_cache) if poi_nodes else [start_node]

    total = len(jobs)
    started = time.perf_counter()
    log_event(
        "route_search_started",
        shape=shape.value,
        variations=len(variations),
        phases=len(offsets),
        candidates=total,
        pois=len(poi_nodes),
        target_length_m=round(target_length_m, 1),
        top_n_for_precise=top_n_for_precise,
    )
    result = GenerationResult(best=None)
    evaluated: list[RouteCandidate] = []
    await notify_progress(progress, 0, total, ROUTE_SEARCH_STAGE)
    for i, (variation, phase) in enumerate(jobs, start=1):
        if should_cancel is not None and should_cancel():
            result.cancelled = True
            log_event("route_search_cancelled", level="warning", completed=i - 1, candidates=total)
            break
        candidate = _evaluate(
            session,
            variation,
            phase,
            start_lat=start_lat,
            start_lon=start_lon,
            start_node=start_node,
            tour=tour,
            target_length_m=target_length_m,
        )
        result.evaluated += 1
        if candidate is None:
            result.failed += 1
            log_event("route_candidate_discarded", level="debug", variation=variation.key, phase=phase)
        else:
            evaluated.append(candidate)
            if _is_better(candidate, result.best):
                result.best = candidate
        await notify_progress(progress, i, total, ROUTE_SEARCH_STAGE)
        await asyncio.sleep(0)

    result.candidates = rank_candidates(evaluated)
    if result.best is None and result.candidates:
        result.best = result.candidates[0]
    if result.best is None:
        log_event("route_search_no_candidates", level="warning", evaluated=result.evaluated, failed=result.failed)
    else:
        log_event(
            "route_search_complete",
            evaluated=result.evaluated,
            failed=result.failed,
            best_variation=result.best.variation_key,
            best_phase=result.best.phase_index,
            best_similarity=round(result.best.similarity, 2),
            best_distance_m=round(result.best.distance_m, 1),
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 2),
            path_cache=session.path_cache.snapshot(),
        )
    return result
