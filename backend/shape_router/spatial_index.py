from __future__ import annotations

import math
from dataclasses import dataclass

from .geo_math import haversine_m
from .logging_utils import log_event
from .road_graph import RoadGraph
from .settings import settings


@dataclass(frozen=True)
class SpatialIndex:
    grid_size_deg: float
    cells: dict[tuple[int, int], tuple[str, ...]]

    def cell_key(self, lat: float, lon: float) -> tuple[int, int]:
        return _grid_key(lat, lon, self.grid_size_deg)


def _grid_key(lat: float, lon: float, bucket_deg: float) -> tuple[int, int]:
    return (int(math.floor(lat / bucket_deg)), int(math.floor(lon / bucket_deg)))


def _ring_offsets(radius: int) -> tuple[tuple[int, int], ...]:
    if radius <= 0:
        return ((0, 0),)
    offsets: list[tuple[int, int]] = []
    for dx in range(-radius, radius + 1):
        offsets.append((dx, -radius))
        offsets.append((dx, radius))
    for dy in range(-radius + 1, radius):
        offsets.append((-radius, dy))
        offsets.append((radius, dy))
    return tuple(offsets)


def search_ring_count(max_radius_deg: float, grid_size_deg: float) -> int:
    # Rounded first so 0.05 / 0.01 does not become 6 rings through float noise.
    return max(0, int(math.ceil(round(max_radius_deg / grid_size_deg, 9))))


def build_spatial_index(graph: RoadGraph | None, *, grid_size_deg: float | None = None) -> SpatialIndex | None:
    if graph is None or len(graph) == 0:
        return None
    bucket = float(settings.spatial_grid_size_deg if grid_size_deg is None else grid_size_deg)
    grid_mut: dict[tuple[int, int], list[str]] = {}
    for key, node in graph.nodes.items():
        grid_mut.setdefault(_grid_key(node.lat, node.lon, bucket), []).append(key)
    index = SpatialIndex(
        grid_size_deg=bucket,
        cells={cell: tuple(keys) for cell, keys in grid_mut.items()},
    )
    log_event("spatial_index_built", cells=len(index.cells), nodes=len(graph), grid_size_deg=bucket)
    return index


def nearest_node_brute_force(graph: RoadGraph, lat: float, lon: float) -> str | None:
    best_key: str | None = None
    best_dist = math.inf
    for key, node in graph.nodes.items():
        dist = haversine_m(lat, lon, node.lat, node.lon)
        if dist < best_dist:
            best_dist = dist
            best_key = key
    return best_key


def nearest_node(
    graph: RoadGraph | None,
    index: SpatialIndex | None,
    lat: float,
    lon: float,
    *,
    max_radius_deg: float | None = None,
) -> str | None:
    """Nearest graph node by Haversine distance.

    Scans grid rings around the query cell out to ``ceil(max_radius / grid)``
    rings, then falls back to a full scan when the index is missing or the
    rings hold no nodes.
    """
    if graph is None or len(graph) == 0:
        return None
    if index is None:
        return nearest_node_brute_force(graph, lat, lon)
    radius_deg = settings.nearest_node_max_radius_deg if max_radius_deg is None else max_radius_deg
    ring_limit = search_ring_count(radius_deg, index.grid_size_deg)
    center_key = index.cell_key(lat, lon)
    best_key: str | None = None
    best_dist = math.inf
    for radius in range(0, ring_limit + 1):
        for dlat, dlon in _ring_offsets(radius):
            cell = (center_key[0] + dlat, center_key[1] + dlon)
            for key in index.cells.get(cell, ()):
                node = graph.nodes.get(key)
                if node is None:
                    continue
                dist = haversine_m(lat, lon, node.lat, node.lon)
                if dist < best_dist:
                    best_dist = dist
                    best_key = key
    if best_key is None:
        return nearest_node_brute_force(graph, lat, lon)
    return best_key
