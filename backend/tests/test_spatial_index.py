from __future__ import annotations

import random

from shape_router.road_graph import build_road_graph
from shape_router.spatial_index import (
    build_spatial_index,
    nearest_node,
    nearest_node_brute_force,
    search_ring_count,
)


def _random_graph(rng: random.Random, roads: int = 40):
    records = []
    for _ in range(roads):
        lat = 35.81 + rng.random() * 0.02
        lon = 127.13 + rng.random() * 0.02
        records.append(
            {
                "geometry": [
                    {"lat": lat, "lon": lon},
                    {"lat": lat + rng.uniform(-0.001, 0.001), "lon": lon + rng.uniform(-0.001, 0.001)},
                ]
            }
        )
    graph = build_road_graph(records)
    assert graph is not None
    return graph


def test_indexed_lookup_matches_brute_force() -> None:
    rng = random.Random(7)
    graph = _random_graph(rng)
    index = build_spatial_index(graph, grid_size_deg=0.005)
    assert index is not None
    for _ in range(50):
        lat = 35.81 + rng.random() * 0.02
        lon = 127.13 + rng.random() * 0.02
        assert nearest_node(graph, index, lat, lon) == nearest_node_brute_force(graph, lat, lon)


def test_every_node_lands_in_its_cell() -> None:
    graph = _random_graph(random.Random(3))
    index = build_spatial_index(graph, grid_size_deg=0.01)
    assert index is not None
    assert sum(len(keys) for keys in index.cells.values()) == len(graph)
    for cell, keys in index.cells.items():
        for key in keys:
            node = graph.nodes[key]
            assert index.cell_key(node.lat, node.lon) == cell


def test_query_beyond_search_radius_falls_back_to_full_scan() -> None:
    graph = _random_graph(random.Random(11))
    index = build_spatial_index(graph, grid_size_deg=0.01)
    far_lat, far_lon = 36.5, 128.0
    expected = nearest_node_brute_force(graph, far_lat, far_lon)
    assert nearest_node(graph, index, far_lat, far_lon, max_radius_deg=0.02) == expected


def test_missing_index_uses_brute_force_and_empty_graph_returns_none() -> None:
    graph = _random_graph(random.Random(5), roads=5)
    assert nearest_node(graph, None, 35.82, 127.14) == nearest_node_brute_force(graph, 35.82, 127.14)

    empty = build_road_graph([])
    assert empty is not None
    assert build_spatial_index(empty) is None
    assert nearest_node(empty, None, 35.82, 127.14) is None
    assert nearest_node(None, None, 35.82, 127.14) is None


def test_ring_count_rounds_float_noise() -> None:
    assert search_ring_count(0.05, 0.01) == 5
    assert search_ring_count(0.5, 0.01) == 50
    assert search_ring_count(0.015, 0.01) == 2
