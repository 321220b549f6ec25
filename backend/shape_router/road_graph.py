from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .geo_math import haversine_m
from .logging_utils import log_event
from .settings import settings

ProgressFn = Callable[[int, int, str], Awaitable[None] | None]

GRAPH_BUILD_STAGE = "graph_build"


@dataclass(frozen=True)
class GraphEdge:
    to: str
    distance_m: float
    cost: float
    weight: float = 1.0


@dataclass(frozen=True)
class GraphNode:
    lat: float
    lon: float
    edges: tuple[GraphEdge, ...]


@dataclass(frozen=True)
class RoadGraph:
    nodes: dict[str, GraphNode]
    edge_index: dict[tuple[str, str], GraphEdge]
    roads_seen: int = 0
    roads_skipped: int = 0
    segments_skipped: int = 0

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, key: object) -> bool:
        return key in self.nodes

    def coords(self, key: str) -> tuple[float, float] | None:
        node = self.nodes.get(key)
        if node is None:
            return None
        return (node.lat, node.lon)

    def neighbors(self, key: str) -> tuple[GraphEdge, ...]:
        node = self.nodes.get(key)
        return node.edges if node is not None else ()

    def edge(self, a: str, b: str) -> GraphEdge | None:
        return self.edge_index.get((a, b))

    def is_adjacent(self, a: str, b: str) -> bool:
        return (a, b) in self.edge_index

    @property
    def edge_count(self) -> int:
        # Each undirected road segment is stored once per direction.
        return len(self.edge_index) // 2


def node_key(lat: float, lon: float, precision: int | None = None) -> str:
    digits = settings.node_key_precision if precision is None else int(precision)
    return f"{lat:.{digits}f},{lon:.{digits}f}"


def _parse_coord(raw: object) -> float | None:
    if not isinstance(raw, (int, float, str, Decimal)) or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def _parse_vertex(raw: object) -> tuple[float, float] | None:
    if not isinstance(raw, Mapping):
        return None
    lat = _parse_coord(raw.get("lat"))
    lon = _parse_coord(raw.get("lon"))
    if lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return (lat, lon)


def _road_weight(raw: object) -> float:
    weight = _parse_coord(raw)
    # Missing or zero weight means an ordinary road.
    if weight is None or weight == 0.0:
        return 1.0
    return weight


class _GraphAccumulator:
    def __init__(self, *, penalty_multiplier: float, precision: int) -> None:
        self.penalty_multiplier = float(penalty_multiplier)
        self.precision = int(precision)
        self.coords: dict[str, tuple[float, float]] = {}
        self.adjacency: dict[str, list[GraphEdge]] = {}
        self.edge_index: dict[tuple[str, str], GraphEdge] = {}
        self.roads_seen = 0
        self.roads_skipped = 0
        self.segments_skipped = 0

    def _ensure_node(self, key: str, lat: float, lon: float) -> None:
        if key not in self.coords:
            self.coords[key] = (lat, lon)
            self.adjacency[key] = []

    def _insert_edge(self, src: str, dst: str, edge: GraphEdge) -> None:
        # First occurrence of a node pair wins.
        if (src, dst) in self.edge_index:
            return
        self.edge_index[(src, dst)] = edge
        self.adjacency[src].append(edge)

    def add_road(self, road: object) -> None:
        self.roads_seen += 1
        geometry = road.get("geometry") if isinstance(road, Mapping) else None
        if not isinstance(geometry, (list, tuple)) or len(geometry) < 2:
            self.roads_skipped += 1
            return
        weight = _road_weight(road.get("weight"))  # type: ignore[union-attr]
        penalty = max(0.0, weight - 1.0) * self.penalty_multiplier
        for idx in range(len(geometry) - 1):
            p1 = _parse_vertex(geometry[idx])
            p2 = _parse_vertex(geometry[idx + 1])
            if p1 is None or p2 is None:
                self.segments_skipped += 1
                continue
            key1 = node_key(p1[0], p1[1], self.precision)
            key2 = node_key(p2[0], p2[1], self.precision)
            self._ensure_node(key1, p1[0], p1[1])
            self._ensure_node(key2, p2[0], p2[1])
            if key1 == key2:
                continue
            lat1, lon1 = self.coords[key1]
            lat2, lon2 = self.coords[key2]
            distance_m = haversine_m(lat1, lon1, lat2, lon2)
            cost = distance_m + penalty
            self._insert_edge(key1, key2, GraphEdge(to=key2, distance_m=distance_m, cost=cost, weight=weight))
            self._insert_edge(key2, key1, GraphEdge(to=key1, distance_m=distance_m, cost=cost, weight=weight))

    def finalize(self) -> RoadGraph:
        nodes = {
            key: GraphNode(lat=lat, lon=lon, edges=tuple(self.adjacency.get(key, ())))
            for key, (lat, lon) in self.coords.items()
        }
        return RoadGraph(
            nodes=nodes,
            edge_index=dict(self.edge_index),
            roads_seen=self.roads_seen,
            roads_skipped=self.roads_skipped,
            segments_skipped=self.segments_skipped,
        )


def component_summary(graph: RoadGraph) -> tuple[int, int]:
    """Return (component_count, largest_component_nodes)."""
    seen: set[str] = set()
    component_count = 0
    largest = 0
    for start in graph.nodes:
        if start in seen:
            continue
        component_count += 1
        size = 0
        q: deque[str] = deque([start])
        seen.add(start)
        while q:
            current = q.popleft()
            size += 1
            for edge in graph.neighbors(current):
                if edge.to not in seen:
                    seen.add(edge.to)
                    q.append(edge.to)
        largest = max(largest, size)
    return component_count, largest


def _log_complete(graph: RoadGraph, started: float) -> None:
    component_count, largest_component_nodes = component_summary(graph)
    log_event(
        "road_graph_built",
        nodes=len(graph),
        edges=graph.edge_count,
        roads_seen=graph.roads_seen,
        roads_skipped=graph.roads_skipped,
        segments_skipped=graph.segments_skipped,
        component_count=component_count,
        largest_component_nodes=largest_component_nodes,
        elapsed_ms=round((time.perf_counter() - started) * 1000.0, 2),
    )


async def notify_progress(progress: ProgressFn | None, current: int, total: int, stage: str) -> None:
    """Invoke a sync or async progress callback."""
    if progress is None:
        return
    result = progress(current, total, stage)
    if asyncio.iscoroutine(result):
        await result


async def build_road_graph_async(
    roads: Iterable[Any] | None,
    *,
    progress: ProgressFn | None = None,
    penalty_multiplier: float | None = None,
    precision: int | None = None,
    progress_every: int | None = None,
) -> RoadGraph | None:
    """Build the routing graph, yielding to the event loop at a fixed cadence.

    Returns None only when the road collection itself is absent. Malformed
    roads and segments are skipped and counted.
    """
    if roads is None:
        log_event("road_graph_unavailable", level="error", reason="no road data")
        return None
    items = list(roads)
    total = len(items)
    every = max(1, int(progress_every if progress_every is not None else settings.graph_progress_every))
    acc = _GraphAccumulator(
        penalty_multiplier=(
            settings.road_weight_penalty_multiplier if penalty_multiplier is None else penalty_multiplier
        ),
        precision=settings.node_key_precision if precision is None else precision,
    )
    started = time.perf_counter()
    log_event("road_graph_build_started", roads=total)
    for processed, road in enumerate(items, start=1):
        acc.add_road(road)
        if processed % every == 0:
            await notify_progress(progress, processed, total, GRAPH_BUILD_STAGE)
            await asyncio.sleep(0)
    graph = acc.finalize()
    _log_complete(graph, started)
    return graph


def build_road_graph(
    roads: Iterable[Any] | None,
    *,
    penalty_multiplier: float | None = None,
    precision: int | None = None,
) -> RoadGraph | None:
    """Blocking variant for scripts and tests; same semantics without yielding."""
    if roads is None:
        log_event("road_graph_unavailable", level="error", reason="no road data")
        return None
    acc = _GraphAccumulator(
        penalty_multiplier=(
            settings.road_weight_penalty_multiplier if penalty_multiplier is None else penalty_multiplier
        ),
        precision=settings.node_key_precision if precision is None else precision,
    )
    started = time.perf_counter()
    for road in roads:
        acc.add_road(road)
    graph = acc.finalize()
    _log_complete(graph, started)
    return graph
