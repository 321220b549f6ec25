from __future__ import annotations

import csv
import math
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import ijson

from .errors import RouteGenerationError
from .logging_utils import log_event
from .poi_mapping import POI
from .settings import settings

WALKABLE_ROADS_FILENAME = "jeonju_walkable_roads.json"
ALL_ROADS_FILENAME = "jeonju_roads.json"
POI_FILENAME = "Jeonju_POI_data.csv"


@dataclass(frozen=True)
class CategoryGroup:
    label: str
    categories: tuple[str, ...]


CATEGORY_GROUPS: dict[str, CategoryGroup] = {
    "all": CategoryGroup(
        label="All places",
        categories=("관광명소", "공원", "박물관", "도서관", "음식점", "카페", "국가유산"),
    ),
    "historical": CategoryGroup(label="Historical sites", categories=("관광명소", "국가유산")),
    "cultural": CategoryGroup(label="Cultural spaces", categories=("공원", "박물관", "도서관")),
    "food": CategoryGroup(label="Food and cafes", categories=("음식점", "카페")),
}


@dataclass(frozen=True)
class RoadDataset:
    path: Path
    roads: list[dict[str, Any]]
    walkable: bool


def _data_path(configured: str, filename: str) -> Path:
    if configured.strip():
        return Path(configured)
    return Path(settings.data_dir) / filename


def road_data_candidates() -> tuple[Path, Path]:
    return (
        _data_path(settings.road_data_path, WALKABLE_ROADS_FILENAME),
        _data_path(settings.road_data_fallback_path, ALL_ROADS_FILENAME),
    )


def poi_data_path() -> Path:
    return _data_path(settings.poi_data_path, POI_FILENAME)


def load_road_records(path: Path) -> list[dict[str, Any]]:
    """Stream ``roads.item`` out of a road JSON file.

    Individual records are returned as parsed; graph construction decides
    which ones are usable.
    """
    if not path.exists():
        raise RouteGenerationError(
            reason_code="road_data_unavailable",
            message=f"Road data file not found: {path}",
            details={"path": str(path)},
        )
    roads: list[dict[str, Any]] = []
    try:
        with path.open("rb") as fh:
            for raw_road in ijson.items(fh, "roads.item"):
                if isinstance(raw_road, dict):
                    roads.append(raw_road)
    except (ijson.JSONError, OSError) as exc:
        raise RouteGenerationError(
            reason_code="road_data_invalid",
            message=f"Road data file could not be parsed: {path}",
            details={"path": str(path), "error": str(exc)},
        ) from exc
    log_event("road_data_loaded", path=str(path), roads=len(roads))
    return roads


def load_road_dataset() -> RoadDataset:
    """Prefer the walkable-only roads; fall back to the full road file."""
    walkable_path, fallback_path = road_data_candidates()
    if walkable_path.exists():
        return RoadDataset(path=walkable_path, roads=load_road_records(walkable_path), walkable=True)
    log_event(
        "road_data_fallback",
        level="warning",
        missing=str(walkable_path),
        fallback=str(fallback_path),
    )
    return RoadDataset(path=fallback_path, roads=load_road_records(fallback_path), walkable=False)


def _parse_float(raw: str | None) -> float | None:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def load_poi_catalog(path: Path | None = None) -> list[POI]:
    csv_path = path or poi_data_path()
    if not csv_path.exists():
        log_event("poi_data_missing", level="warning", path=str(csv_path))
        return []
    pois: list[POI] = []
    skipped = 0
    with csv_path.open("r", encoding="utf-8-sig", newline="") as fh:
        reader = csv.reader(fh)
        header = next(reader, None)
        if header is None:
            log_event("poi_data_empty", level="warning", path=str(csv_path))
            return []
        for row in reader:
            if not row or not any(cell.strip() for cell in row):
                continue
            if len(row) < 4:
                skipped += 1
                continue
            name = row[0].strip()
            lat = _parse_float(row[1])
            lon = _parse_float(row[2])
            category = row[3].strip()
            if not name or not category or lat is None or lon is None:
                skipped += 1
                continue
            pois.append(POI(name=name, lat=lat, lon=lon, category=category))
    log_event(
        "poi_data_loaded",
        path=str(csv_path),
        pois=len(pois),
        skipped=skipped,
        categories=dict(Counter(p.category for p in pois)),
    )
    return pois


def filter_pois_by_group(pois: list[POI], group: str | None) -> list[POI]:
    key = str(group or "all").strip().lower()
    group_def = CATEGORY_GROUPS.get(key)
    if group_def is None:
        raise KeyError(key)
    allowed = set(group_def.categories)
    return [poi for poi in pois if poi.category in allowed]
