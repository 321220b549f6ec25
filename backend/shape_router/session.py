from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from .logging_utils import log_event
from .path_finder import PathCache, PathResult, find_shortest_path
from .road_graph import ProgressFn, RoadGraph, build_road_graph_async
from .spatial_index import SpatialIndex, build_spatial_index, nearest_node


class RoutingSession:
    """Owns one road graph plus the structures derived from it.

    The spatial index and path cache are only valid for the graph they were
    built from, so replacing the graph always rebuilds both.
    """

    def __init__(
        self,
        graph: RoadGraph | None = None,
        *,
        grid_size_deg: float | None = None,
    ) -> None:
        self._grid_size_deg = grid_size_deg
        self.graph: RoadGraph | None = None
        self.spatial_index: SpatialIndex | None = None
        self.path_cache = PathCache()
        if graph is not None:
            self.replace_graph(graph)

    @classmethod
    async def from_roads(
        cls,
        roads: Iterable[Any] | None,
        *,
        progress: ProgressFn | None = None,
        penalty_multiplier: float | None = None,
        grid_size_deg: float | None = None,
    ) -> RoutingSession:
        session = cls(grid_size_deg=grid_size_deg)
        await session.rebuild(roads, progress=progress, penalty_multiplier=penalty_multiplier)
        return session

    @property
    def ready(self) -> bool:
        return self.graph is not None and len(self.graph) > 0

    def replace_graph(self, graph: RoadGraph | None) -> None:
        self.graph = graph
        self.spatial_index = build_spatial_index(graph, grid_size_deg=self._grid_size_deg)
        self.path_cache.clear()

    async def rebuild(
        self,
        roads: Iterable[Any] | None,
        *,
        progress: ProgressFn | None = None,
        penalty_multiplier: float | None = None,
    ) -> RoadGraph | None:
        graph = await build_road_graph_async(roads, progress=progress, penalty_multiplier=penalty_multiplier)
        self.replace_graph(graph)
        return graph

    def reset(self) -> int:
        cleared = self.path_cache.clear()
        log_event("routing_session_reset", cleared_paths=cleared)
        return cleared

    def nearest_node(self, lat: float, lon: float, *, max_radius_deg: float | None = None) -> str | None:
        return nearest_node(self.graph, self.spatial_index, lat, lon, max_radius_deg=max_radius_deg)

    def shortest_path(self, start: str, end: str, *, use_cache: bool = True) -> PathResult | None:
        return find_shortest_path(self.graph, start, end, cache=self.path_cache, use_cache=use_cache)

    def snapshot(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "nodes": len(self.graph) if self.graph is not None else 0,
            "edges": self.graph.edge_count if self.graph is not None else 0,
            "grid_cells": len(self.spatial_index.cells) if self.spatial_index is not None else 0,
            "path_cache": self.path_cache.snapshot(),
        }
