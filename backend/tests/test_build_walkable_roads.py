from __future__ import annotations

import json
from pathlib import Path

import pytest

import scripts.build_walkable_roads as build_walkable_roads
from shape_router.loaders import load_road_records
from shape_router.road_graph import build_road_graph


def _feature(highway: str, coords: list[list[float]], **props: str) -> dict:
    return {
        "type": "Feature",
        "properties": {"highway": highway, **props},
        "geometry": {"type": "LineString", "coordinates": coords},
    }


def _write_source(path: Path, features: list[dict]) -> Path:
    path.write_text(json.dumps({"type": "FeatureCollection", "features": features}), encoding="utf-8")
    return path


def test_walkability_rules() -> None:
    assert build_walkable_roads._is_walkable({"highway": "footway"})
    assert build_walkable_roads._is_walkable({"highway": "Residential "})
    assert not build_walkable_roads._is_walkable({"highway": "motorway"})
    assert not build_walkable_roads._is_walkable({"highway": "residential", "foot": "no"})
    assert not build_walkable_roads._is_walkable({"highway": "service", "access": "private"})
    assert build_walkable_roads._is_walkable({"highway": "service", "access": "private", "foot": "yes"})


def test_split_runs_breaks_at_points_outside_bbox() -> None:
    bbox = (35.0, 36.0, 127.0, 128.0)
    points = [(35.1, 127.1), (35.2, 127.2), (40.0, 127.3), (35.3, 127.3), (35.4, 127.4), (35.5, 127.5)]
    runs = build_walkable_roads._split_runs(points, bbox)
    assert runs == [[(35.1, 127.1), (35.2, 127.2)], [(35.3, 127.3), (35.4, 127.4), (35.5, 127.5)]]
    assert build_walkable_roads._split_runs([(35.1, 127.1), (40.0, 127.1)], bbox) == []


def test_geojson_build_filters_and_weights_roads(tmp_path: Path) -> None:
    source = _write_source(
        tmp_path / "roads.geojson",
        [
            _feature("footway", [[127.14, 35.82], [127.141, 35.821]]),
            _feature("primary", [[127.15, 35.83], [127.151, 35.831], [127.152, 35.832]]),
            _feature("motorway", [[127.16, 35.84], [127.161, 35.841]]),
            _feature("residential", [[127.17, 35.85], [127.171, 35.851]], foot="no"),
            _feature("footway", [[126.0, 34.0], [126.1, 34.1]]),
        ],
    )
    output = tmp_path / "out" / "walkable.json"
    report = build_walkable_roads.build(source=source, output=output)
    assert report["roads"] == 2
    assert output.exists()

    roads = json.loads(output.read_text(encoding="utf-8"))["roads"]
    assert [r["highway"] for r in roads] == ["footway", "primary"]
    assert [r["weight"] for r in roads] == [1.0, 2.0]
    assert roads[0]["geometry"][0] == {"lat": 35.82, "lon": 127.14}

    meta = json.loads(output.with_suffix(".meta.json").read_text(encoding="utf-8"))
    assert meta["walkable_only"] is True
    assert meta["roads"] == 2
    assert meta["vertices"] == 5
    assert meta["highway_classes"] == {"footway": 1, "primary": 1}
    assert meta["generated_at_utc"].endswith("Z")


def test_all_roads_mode_keeps_motorways(tmp_path: Path) -> None:
    source = _write_source(
        tmp_path / "roads.geojson",
        [
            _feature("footway", [[127.14, 35.82], [127.141, 35.821]]),
            _feature("motorway", [[127.16, 35.84], [127.161, 35.841]]),
            _feature("bridleway", [[127.17, 35.85], [127.171, 35.851]]),
        ],
    )
    output = tmp_path / "all.json"
    report = build_walkable_roads.build(source=source, output=output, walkable_only=False)
    assert report["roads"] == 2


def test_built_file_loads_into_router_graph(tmp_path: Path) -> None:
    source = _write_source(
        tmp_path / "roads.geojson",
        [
            _feature("footway", [[127.14, 35.82], [127.141, 35.82]]),
            _feature("residential", [[127.141, 35.82], [127.141, 35.821]]),
        ],
    )
    output = tmp_path / "walkable.json"
    build_walkable_roads.build(source=source, output=output)
    graph = build_road_graph(load_road_records(output))
    assert graph is not None
    assert len(graph) == 3
    assert graph.edge_count == 2


def test_empty_extract_raises(tmp_path: Path) -> None:
    source = _write_source(tmp_path / "roads.geojson", [_feature("motorway", [[127.16, 35.84], [127.161, 35.841]])])
    with pytest.raises(RuntimeError):
        build_walkable_roads.build(source=source, output=tmp_path / "x.json")
    assert not (tmp_path / "x.json").exists()
