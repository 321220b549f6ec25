from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass
from threading import Lock

from .geo_math import haversine_m
from .road_graph import RoadGraph


@dataclass(frozen=True)
class PathResult:
    nodes: tuple[str, ...]
    distance_m: float
    cost: float

    def reversed(self) -> PathResult:
        return PathResult(nodes=tuple(reversed(self.nodes)), distance_m=self.distance_m, cost=self.cost)


class PathCache:
    """Session-lifetime memo of shortest paths keyed by (start, end).

    Entries are never evicted; the owning session clears the cache when its
    graph changes. The lock only matters if evaluation is ever parallelised.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._items: dict[tuple[str, str], PathResult] = {}
        self._hits = 0
        self._misses = 0

    def get(self, start: str, end: str) -> PathResult | None:
        with self._lock:
            entry = self._items.get((start, end))
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry

    def set(self, start: str, end: str, result: PathResult) -> None:
        with self._lock:
            self._items[(start, end)] = result
            reverse_key = (end, start)
            if reverse_key not in self._items:
                self._items[reverse_key] = result.reversed()

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            self._hits = 0
            self._misses = 0
            return cleared

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
            }


def _astar_search(
    graph: RoadGraph,
    start: str,
    goal: str,
    *,
    explored_counter: list[int] | None = None,
) -> PathResult | None:
    goal_node = graph.nodes.get(goal)
    if goal_node is None or start not in graph.nodes:
        return None
    goal_lat = goal_node.lat
    goal_lon = goal_node.lon

    def heuristic(key: str) -> float:
        node = graph.nodes[key]
        return haversine_m(node.lat, node.lon, goal_lat, goal_lon)

    g_score: dict[str, float] = {start: 0.0}
    distance: dict[str, float] = {start: 0.0}
    previous: dict[str, str] = {}
    visited: set[str] = set()
    # Sequence number keeps equal-f entries in insertion order.
    seq = itertools.count()
    heap: list[tuple[float, int, str]] = [(heuristic(start), next(seq), start)]
    reached = False

    while heap:
        _f, _order, current = heapq.heappop(heap)
        # Stale entries are skipped here rather than removed on improvement.
        if current in visited:
            continue
        if explored_counter is not None:
            explored_counter[0] += 1
        if current == goal:
            reached = True
            break
        visited.add(current)
        current_g = g_score[current]
        current_d = distance[current]
        for edge in graph.neighbors(current):
            if edge.to in visited:
                continue
            tentative_g = current_g + edge.cost
            prior = g_score.get(edge.to)
            if prior is not None and tentative_g >= prior:
                continue
            g_score[edge.to] = tentative_g
            distance[edge.to] = current_d + edge.distance_m
            previous[edge.to] = current
            heapq.heappush(heap, (tentative_g + heuristic(edge.to), next(seq), edge.to))

    if not reached:
        return None

    limit = len(graph)
    path: list[str] = [goal]
    cursor = goal
    while cursor != start:
        prev = previous.get(cursor)
        if prev is None:
            return None
        path.append(prev)
        cursor = prev
        if len(path) > limit:
            return None
    path.reverse()
    return PathResult(nodes=tuple(path), distance_m=distance[goal], cost=g_score[goal])


def find_shortest_path(
    graph: RoadGraph | None,
    start: str,
    end: str,
    *,
    cache: PathCache | None = None,
    use_cache: bool = True,
    explored_counter: list[int] | None = None,
) -> PathResult | None:
    """Least-cost path between two node keys, or None when unreachable."""
    if start == end:
        return PathResult(nodes=(start,), distance_m=0.0, cost=0.0)
    if graph is None:
        return None
    caching = use_cache and cache is not None
    if caching:
        cached = cache.get(start, end)  # type: ignore[union-attr]
        if cached is not None:
            return cached
    result = _astar_search(graph, start, end, explored_counter=explored_counter)
    if result is not None and caching:
        cache.set(start, end, result)  # type: ignore[union-attr]
    return result
