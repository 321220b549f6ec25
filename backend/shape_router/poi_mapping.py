from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .geo_math import haversine_m
from .logging_utils import log_event
from .road_graph import RoadGraph
from .settings import settings
from .spatial_index import SpatialIndex, nearest_node


@dataclass(frozen=True)
class POI:
    name: str
    lat: float
    lon: float
    category: str = ""


@dataclass(frozen=True)
class MappedPOI:
    poi: POI
    node_key: str
    distance_m: float


@dataclass(frozen=True)
class POISelectionCheck:
    straight_line_m: float
    estimated_route_m: float
    valid: bool
    fits_default_range: bool


def map_poi_to_node(
    poi: POI,
    graph: RoadGraph | None,
    index: SpatialIndex | None,
    *,
    max_distance_m: float | None = None,
) -> MappedPOI | None:
    if graph is None or len(graph) == 0:
        log_event("poi_mapping_skipped", level="warning", poi=poi.name, reason="no graph")
        return None
    limit = settings.poi_max_mapping_distance_m if max_distance_m is None else max_distance_m
    # Degree radius derived from the meter limit, generous at these latitudes.
    key = nearest_node(graph, index, poi.lat, poi.lon, max_radius_deg=limit / 1000.0)
    if key is None:
        return None
    node = graph.nodes[key]
    distance = haversine_m(poi.lat, poi.lon, node.lat, node.lon)
    if distance > limit:
        log_event(
            "poi_dropped_too_far",
            level="warning",
            poi=poi.name,
            distance_m=round(distance, 1),
            max_distance_m=limit,
        )
        return None
    return MappedPOI(poi=poi, node_key=key, distance_m=distance)


def map_selected_pois(
    pois: Sequence[POI],
    graph: RoadGraph | None,
    index: SpatialIndex | None,
    *,
    max_distance_m: float | None = None,
) -> list[MappedPOI]:
    mapped: list[MappedPOI] = []
    for poi in pois:
        result = map_poi_to_node(poi, graph, index, max_distance_m=max_distance_m)
        if result is not None:
            mapped.append(result)
    log_event("pois_mapped", requested=len(pois), mapped=len(mapped))
    return mapped


def poi_straight_line_tour_m(pois: Sequence[POI]) -> float:
    """Open nearest-neighbour tour length over the POIs, starting at the first one."""
    if len(pois) < 2:
        return 0.0
    remaining = list(pois[1:])
    current = pois[0]
    total = 0.0
    while remaining:
        idx = min(
            range(len(remaining)),
            key=lambda i: haversine_m(current.lat, current.lon, remaining[i].lat, remaining[i].lon),
        )
        nxt = remaining.pop(idx)
        total += haversine_m(current.lat, current.lon, nxt.lat, nxt.lon)
        current = nxt
    return total


def validate_poi_selection(
    start_lat: float,
    start_lon: float,
    pois: Sequence[POI],
    *,
    estimate_factor: float | None = None,
) -> POISelectionCheck:
    """Straight-line loop start -> POIs (selection order) -> start, scaled to a route estimate."""
    factor = settings.poi_route_estimate_factor if estimate_factor is None else estimate_factor
    if not pois:
        return POISelectionCheck(straight_line_m=0.0, estimated_route_m=0.0, valid=True, fits_default_range=True)
    stops = [(start_lat, start_lon), *((p.lat, p.lon) for p in pois), (start_lat, start_lon)]
    straight = sum(
        haversine_m(stops[i][0], stops[i][1], stops[i + 1][0], stops[i + 1][1])
        for i in range(len(stops) - 1)
    )
    estimate = straight * factor
    return POISelectionCheck(
        straight_line_m=straight,
        estimated_route_m=estimate,
        valid=estimate <= settings.fallback_length_max_m,
        fits_default_range=estimate <= settings.default_length_max_m,
    )
