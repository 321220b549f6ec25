from __future__ import annotations

import argparse
import json
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import osmium

JEONJU_BBOX = (35.75, 35.90, 127.05, 127.25)  # lat_min, lat_max, lon_min, lon_max

# Road weight per highway class; the graph turns weight above 1.0 into a
# per-edge penalty so busy roads are avoided when a quieter one exists.
WALKABLE_HIGHWAY_WEIGHTS: dict[str, float] = {
    "footway": 1.0,
    "pedestrian": 1.0,
    "path": 1.0,
    "steps": 1.0,
    "living_street": 1.0,
    "residential": 1.0,
    "service": 1.0,
    "track": 1.0,
    "cycleway": 1.0,
    "unclassified": 1.0,
    "tertiary": 1.2,
    "tertiary_link": 1.2,
    "secondary": 1.5,
    "secondary_link": 1.5,
    "primary": 2.0,
    "primary_link": 2.0,
    "trunk": 3.0,
    "trunk_link": 3.0,
}
ALL_ROAD_HIGHWAYS = set(WALKABLE_HIGHWAY_WEIGHTS) | {"motorway", "motorway_link"}
BLOCKED_ACCESS = {"no", "private"}


def _in_bbox(lat: float, lon: float, bbox: tuple[float, float, float, float]) -> bool:
    lat_min, lat_max, lon_min, lon_max = bbox
    return lat_min <= lat <= lat_max and lon_min <= lon <= lon_max


def _is_walkable(tags: dict[str, str]) -> bool:
    highway = tags.get("highway", "").strip().lower()
    if highway not in WALKABLE_HIGHWAY_WEIGHTS:
        return False
    if tags.get("foot", "").strip().lower() in BLOCKED_ACCESS:
        return False
    if tags.get("access", "").strip().lower() in BLOCKED_ACCESS and tags.get("foot", "").strip().lower() != "yes":
        return False
    return True


def _road_weight(highway: str) -> float:
    return WALKABLE_HIGHWAY_WEIGHTS.get(highway, 2.0)


def _split_runs(
    points: list[tuple[float, float]],
    bbox: tuple[float, float, float, float],
) -> list[list[tuple[float, float]]]:
    # Points outside the box break the line instead of being bridged over.
    runs: list[list[tuple[float, float]]] = []
    current: list[tuple[float, float]] = []
    for lat, lon in points:
        if _in_bbox(lat, lon, bbox):
            current.append((lat, lon))
            continue
        if len(current) >= 2:
            runs.append(current)
        current = []
    if len(current) >= 2:
        runs.append(current)
    return runs


def _road_record(points: list[tuple[float, float]], highway: str) -> dict[str, Any]:
    return {
        "geometry": [{"lat": round(lat, 7), "lon": round(lon, 7)} for lat, lon in points],
        "weight": _road_weight(highway),
        "highway": highway,
    }


def _accepts(tags: dict[str, str], walkable_only: bool) -> bool:
    if walkable_only:
        return _is_walkable(tags)
    return tags.get("highway", "").strip().lower() in ALL_ROAD_HIGHWAYS


def _extract_from_geojson(
    *,
    source: Path,
    bbox: tuple[float, float, float, float],
    walkable_only: bool,
) -> list[dict[str, Any]]:
    payload = json.loads(source.read_text(encoding="utf-8"))
    features = payload.get("features", []) if isinstance(payload, dict) else []
    roads: list[dict[str, Any]] = []
    for feature in features:
        if not isinstance(feature, dict):
            continue
        geom = feature.get("geometry", {})
        props = feature.get("properties", {})
        if not isinstance(props, dict):
            props = {}
        if not isinstance(geom, dict) or str(geom.get("type", "")).lower() != "linestring":
            continue
        tags = {str(k): str(v) for k, v in props.items()}
        if not _accepts(tags, walkable_only):
            continue
        coords = geom.get("coordinates", [])
        if not isinstance(coords, list):
            continue
        points: list[tuple[float, float]] = []
        for coord in coords:
            if not isinstance(coord, (list, tuple)) or len(coord) < 2:
                continue
            points.append((float(coord[1]), float(coord[0])))
        highway = tags.get("highway", "").strip().lower()
        for run in _split_runs(points, bbox):
            roads.append(_road_record(run, highway))
    return roads


class _RoadHandler(osmium.SimpleHandler):  # type: ignore[misc]
    def __init__(self, *, bbox: tuple[float, float, float, float], walkable_only: bool, max_ways: int) -> None:
        super().__init__()
        self.bbox = bbox
        self.walkable_only = walkable_only
        self.max_ways = max_ways
        self.roads: list[dict[str, Any]] = []
        self.ways_seen = 0

    def way(self, w: Any) -> None:
        if self.max_ways > 0 and self.ways_seen >= self.max_ways:
            return
        tags = {str(k): str(v) for k, v in w.tags}
        if not _accepts(tags, self.walkable_only):
            return
        points: list[tuple[float, float]] = []
        for n in w.nodes:
            if not n.location.valid():
                continue
            points.append((float(n.lat), float(n.lon)))
        runs = _split_runs(points, self.bbox)
        if not runs:
            return
        self.ways_seen += 1
        highway = tags.get("highway", "").strip().lower()
        for run in runs:
            self.roads.append(_road_record(run, highway))


def _extract_from_osm(
    *,
    source: Path,
    bbox: tuple[float, float, float, float],
    walkable_only: bool,
    max_ways: int,
) -> list[dict[str, Any]]:
    handler = _RoadHandler(bbox=bbox, walkable_only=walkable_only, max_ways=max_ways)
    handler.apply_file(str(source), locations=True, idx="sparse_mem_array")
    return handler.roads


def build(
    *,
    source: Path,
    output: Path,
    bbox: tuple[float, float, float, float] = JEONJU_BBOX,
    walkable_only: bool = True,
    max_ways: int = 0,
) -> dict[str, Any]:
    if source.suffix.lower() in {".pbf", ".osm"}:
        roads = _extract_from_osm(source=source, bbox=bbox, walkable_only=walkable_only, max_ways=max_ways)
    else:
        roads = _extract_from_geojson(source=source, bbox=bbox, walkable_only=walkable_only)
    if not roads:
        raise RuntimeError("No roads were extracted from source input.")

    generated_at_utc = datetime.now(UTC).isoformat().replace("+00:00", "Z")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps({"roads": roads}, ensure_ascii=False), encoding="utf-8")
    classes = Counter(str(road["highway"]) for road in roads)
    meta_path = output.with_suffix(".meta.json")
    meta_path.write_text(
        json.dumps(
            {
                "source": str(source),
                "generated_at_utc": generated_at_utc,
                "walkable_only": walkable_only,
                "roads": len(roads),
                "vertices": sum(len(road["geometry"]) for road in roads),
                "highway_classes": dict(sorted(classes.items())),
                "bbox": {
                    "lat_min": bbox[0],
                    "lat_max": bbox[1],
                    "lon_min": bbox[2],
                    "lon_max": bbox[3],
                },
            },
            indent=2,
        ),
        encoding="utf-8",
    )
    return {
        "roads": len(roads),
        "source": str(source),
        "output": str(output),
        "meta": str(meta_path),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Build the road JSON used by the shape router from OSM or GeoJSON.")
    parser.add_argument(
        "--source",
        type=Path,
        required=True,
        help="Path to source file (.pbf/.osm or GeoJSON LineStrings).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("backend/data/jeonju_walkable_roads.json"),
        help="Output road JSON path.",
    )
    parser.add_argument("--lat-min", type=float, default=JEONJU_BBOX[0])
    parser.add_argument("--lat-max", type=float, default=JEONJU_BBOX[1])
    parser.add_argument("--lon-min", type=float, default=JEONJU_BBOX[2])
    parser.add_argument("--lon-max", type=float, default=JEONJU_BBOX[3])
    parser.add_argument(
        "--all-roads",
        action="store_true",
        help="Keep every road class instead of walkable ways only.",
    )
    parser.add_argument(
        "--max-ways",
        type=int,
        default=0,
        help="Optional cap on extracted OSM ways (0 means no cap).",
    )
    args = parser.parse_args()
    bbox = (args.lat_min, args.lat_max, args.lon_min, args.lon_max)
    report = build(
        source=args.source,
        output=args.output,
        bbox=bbox,
        walkable_only=not args.all_roads,
        max_ways=max(0, int(args.max_ways)),
    )
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
