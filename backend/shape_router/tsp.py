from __future__ import annotations

import math
from collections.abc import Sequence

from .logging_utils import log_event
from .path_finder import PathCache, find_shortest_path
from .road_graph import RoadGraph
from .settings import settings


def _unique(keys: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for key in keys:
        if key not in seen:
            seen.add(key)
            out.append(key)
    return out


def _distance_matrix(
    nodes: Sequence[str],
    graph: RoadGraph,
    cache: PathCache | None,
) -> dict[tuple[str, str], float]:
    matrix: dict[tuple[str, str], float] = {}
    for i in range(len(nodes)):
        for j in range(i + 1, len(nodes)):
            a, b = nodes[i], nodes[j]
            result = find_shortest_path(graph, a, b, cache=cache)
            if result is None:
                continue
            matrix[(a, b)] = result.distance_m
            matrix[(b, a)] = result.distance_m
    return matrix


def solve_tsp(
    start: str,
    poi_nodes: Sequence[str],
    graph: RoadGraph,
    *,
    cache: PathCache | None = None,
) -> list[str]:
    """Closed nearest-neighbour tour start -> POIs -> start over road distance.

    Unreachable pairs count as infinitely far; a POI nobody can reach is still
    visited, just last.
    """
    pois = _unique(poi_nodes)
    if not pois:
        return [start]
    if len(pois) == 1:
        return [start, pois[0], start]

    matrix = _distance_matrix([start, *pois], graph, cache)
    unvisited = list(pois)
    tour = [start]
    current = start
    while unvisited:
        nearest_idx = 0
        nearest_dist = math.inf
        for idx, candidate in enumerate(unvisited):
            dist = matrix.get((current, candidate), math.inf)
            if dist < nearest_dist:
                nearest_dist = dist
                nearest_idx = idx
        current = unvisited.pop(nearest_idx)
        tour.append(current)
    tour.append(start)
    log_event("poi_tour_computed", pois=len(pois), tour_nodes=len(tour))
    return tour


def combine_template_and_poi_nodes(
    template_nodes: Sequence[str],
    tour: Sequence[str],
    graph: RoadGraph,
    *,
    cache: PathCache | None = None,
    detour_threshold_m: float | None = None,
) -> list[str]:
    """Thread POIs into a template's anchor sequence.

    Each gap between consecutive template anchors takes at most one POI: the
    unvisited one with the smallest detour under the threshold, ties going to
    the shorter approach. POIs never placed this way are slotted in tour order
    just before the closing node.
    """
    if len(tour) < 3 or not template_nodes:
        return list(template_nodes)
    pending = _unique(tour[1:-1])
    if not pending:
        return list(template_nodes)
    threshold = settings.poi_detour_threshold_m if detour_threshold_m is None else detour_threshold_m

    combined: list[str] = [template_nodes[0]]
    for i in range(len(template_nodes) - 1):
        here, there = template_nodes[i], template_nodes[i + 1]
        if combined[-1] != here:
            combined.append(here)
        direct = find_shortest_path(graph, here, there, cache=cache)
        if direct is None:
            continue
        best_poi: str | None = None
        best_detour = math.inf
        best_approach = math.inf
        for poi in pending:
            to_poi = find_shortest_path(graph, here, poi, cache=cache)
            if to_poi is None:
                continue
            from_poi = find_shortest_path(graph, poi, there, cache=cache)
            if from_poi is None:
                continue
            detour = (to_poi.distance_m + from_poi.distance_m) - direct.distance_m
            if detour >= threshold:
                continue
            if detour < best_detour or (detour == best_detour and to_poi.distance_m < best_approach):
                best_poi = poi
                best_detour = detour
                best_approach = to_poi.distance_m
        if best_poi is not None:
            combined.append(best_poi)
            pending.remove(best_poi)

    if combined[-1] != template_nodes[-1]:
        combined.append(template_nodes[-1])

    if pending:
        log_event("poi_appended_before_close", pois=len(pending))
        closing = combined.pop()
        combined.extend(pending)
        combined.append(closing)

    out: list[str] = []
    for key in combined:
        if not out or out[-1] != key:
            out.append(key)
    return out
