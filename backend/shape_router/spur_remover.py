from __future__ import annotations

from collections import Counter
from collections.abc import Collection, Sequence

from .geo_math import haversine_m
from .path_finder import PathCache, find_shortest_path
from .road_graph import RoadGraph
from .settings import settings


def _undirected(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


def _edge_length_m(graph: RoadGraph, a: str, b: str) -> float | None:
    ca = graph.coords(a)
    cb = graph.coords(b)
    if ca is None or cb is None:
        return None
    return haversine_m(ca[0], ca[1], cb[0], cb[1])


def _has_mirror_nearby(route: Sequence[str], idx: int, window: int) -> bool:
    src, dst = route[idx], route[idx + 1]
    for j in range(max(0, idx - window), idx):
        if route[j] == dst and route[j + 1] == src:
            return True
    for j in range(idx + 1, min(len(route) - 1, idx + window + 1)):
        if route[j] == dst and route[j + 1] == src:
            return True
    return False


def _spur_edge_indices(
    route: Sequence[str],
    anchors: Collection[str],
    graph: RoadGraph,
    *,
    max_spur_length_m: float,
    window: int,
) -> set[int]:
    counts = Counter(_undirected(route[i], route[i + 1]) for i in range(len(route) - 1))
    removed: set[int] = set()
    for i in range(len(route) - 1):
        src, dst = route[i], route[i + 1]
        if counts[_undirected(src, dst)] != 2:
            continue
        if src in anchors or dst in anchors:
            continue
        length = _edge_length_m(graph, src, dst)
        if length is None or length > max_spur_length_m:
            continue
        if _has_mirror_nearby(route, i, window):
            removed.add(i)
    return removed


def _collapse(route: Sequence[str], removed: set[int]) -> list[str]:
    cleaned: list[str] = []
    i = 0
    while i < len(route):
        if i not in removed:
            if not cleaned or cleaned[-1] != route[i]:
                cleaned.append(route[i])
            i += 1
            continue
        spur_start = route[i]
        spur_end: str | None = None
        while i < len(route) - 1 and i in removed:
            i += 1
            spur_end = route[i]
        if spur_end is not None and cleaned and cleaned[-1] == spur_start and spur_end != spur_start:
            cleaned.append(spur_end)
        i += 1
    if cleaned and cleaned[0] != route[0]:
        cleaned.insert(0, route[0])
    if cleaned and route[-1] == route[0] and cleaned[-1] != route[0]:
        cleaned.append(route[0])
    return cleaned


def _bridge_gaps(cleaned: Sequence[str], graph: RoadGraph, cache: PathCache | None) -> list[str]:
    if not cleaned:
        return []
    out: list[str] = []
    for i in range(len(cleaned) - 1):
        src, dst = cleaned[i], cleaned[i + 1]
        out.append(src)
        if src not in graph or dst not in graph or graph.is_adjacent(src, dst):
            continue
        bridge = find_shortest_path(graph, src, dst, cache=cache)
        if bridge is not None and len(bridge.nodes) > 2:
            out.extend(bridge.nodes[1:-1])
    out.append(cleaned[-1])
    return out


def remove_spurs(
    route: Sequence[str],
    anchors: Collection[str],
    graph: RoadGraph,
    *,
    max_spur_length_m: float | None = None,
    window: int | None = None,
    cache: PathCache | None = None,
) -> list[str]:
    """Drop short out-and-back detours from a node route, never touching anchors.

    An edge qualifies when it is walked exactly twice, both of its endpoints
    are non-anchors, it is no longer than the spur limit, and the opposite
    traversal sits within ``window`` positions. Qualifying runs collapse to
    their boundary nodes and any resulting gaps are re-stitched with A*.
    Best effort and local; the result is not guaranteed minimal.
    """
    if len(route) < 3:
        return list(route)
    anchor_set = anchors if isinstance(anchors, (set, frozenset)) else set(anchors)
    removed = _spur_edge_indices(
        route,
        anchor_set,
        graph,
        max_spur_length_m=settings.spur_max_length_m if max_spur_length_m is None else max_spur_length_m,
        window=settings.spur_window if window is None else window,
    )
    if not removed:
        return list(route)
    final = _bridge_gaps(_collapse(route, removed), graph, cache)
    return final if final else list(route)
