from __future__ import annotations

import math
from bisect import bisect_right
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from .geo_math import (
    METERS_PER_DEGREE,
    LatLon,
    centroid,
    local_meters_to_latlon,
    path_length_m,
    point_distance_m,
)
from .logging_utils import log_event
from .settings import settings

Template = tuple[LatLon, ...]


class ShapeKind(str, Enum):
    SQUARE = "square"
    TRIANGLE = "triangle"
    HEART = "heart"
    SLATE = "slate"
    HANOK = "hanok"
    BOOK = "book"
    DEFAULT = "default"


SHAPE_LABELS: dict[ShapeKind, str] = {
    ShapeKind.SQUARE: "Square",
    ShapeKind.TRIANGLE: "Triangle",
    ShapeKind.HEART: "Heart",
    ShapeKind.SLATE: "Slate run",
    ShapeKind.HANOK: "Hanok run",
    ShapeKind.BOOK: "Book run",
}


@dataclass(frozen=True)
class VariationConfig:
    rotations: tuple[int, ...]
    flips: tuple[int, ...]
    description: str


_EIGHT_WAY = (0, 45, 90, 135, 180, 225, 270, 315)

VARIATION_TABLE: dict[ShapeKind, VariationConfig] = {
    # A 90 degree turn maps a square onto itself.
    ShapeKind.SQUARE: VariationConfig(rotations=(0, 45), flips=(1,), description="2 rotations x 1 reflection"),
    ShapeKind.TRIANGLE: VariationConfig(rotations=_EIGHT_WAY, flips=(1,), description="8 rotations x 1 reflection"),
    ShapeKind.HEART: VariationConfig(rotations=_EIGHT_WAY, flips=(1,), description="8 rotations x 1 reflection"),
    ShapeKind.SLATE: VariationConfig(rotations=_EIGHT_WAY, flips=(1,), description="8 rotations x 1 reflection"),
    ShapeKind.HANOK: VariationConfig(rotations=_EIGHT_WAY, flips=(1,), description="8 rotations x 1 reflection"),
    ShapeKind.BOOK: VariationConfig(rotations=_EIGHT_WAY, flips=(1,), description="8 rotations x 1 reflection"),
    ShapeKind.DEFAULT: VariationConfig(rotations=_EIGHT_WAY, flips=(1,), description="8 rotations x 1 reflection"),
}


@dataclass(frozen=True)
class TemplateVariation:
    template: Template
    rotation_deg: int
    flip: int
    key: str


def parse_shape(identifier: str | ShapeKind | None) -> ShapeKind:
    if isinstance(identifier, ShapeKind):
        return identifier
    raw = str(identifier or "").strip().lower()
    try:
        return ShapeKind(raw)
    except ValueError:
        log_event("shape_unknown_using_default", level="warning", shape=raw)
        return ShapeKind.DEFAULT


def variation_config(kind: ShapeKind) -> VariationConfig:
    return VARIATION_TABLE.get(kind, VARIATION_TABLE[ShapeKind.DEFAULT])


def curvature_weight_for(kind: ShapeKind) -> float:
    # The book outline is mostly arcs, so sampling leans harder on curvature.
    if kind is ShapeKind.BOOK:
        return float(settings.resample_curvature_weight_book)
    return float(settings.resample_curvature_weight)


def is_closed(template: Sequence[LatLon]) -> bool:
    return len(template) >= 2 and tuple(template[0]) == tuple(template[-1])


def _finish(points: Sequence[LatLon]) -> Template:
    out: list[LatLon] = []
    for lat, lon in points:
        pt = (float(lat), float(lon))
        if not out or out[-1] != pt:
            out.append(pt)
    if out and out[0] != out[-1]:
        out.append(out[0])
    return tuple(out)


def _local(center_lat: float, center_lon: float, pts: Sequence[tuple[float, float]]) -> list[LatLon]:
    return [local_meters_to_latlon(center_lat, center_lon, x, y) for x, y in pts]


# --- shape generators --------------------------------------------------------


def square_template(center_lat: float, center_lon: float, length_m: float = 5000.0) -> Template:
    side = length_m / 4.0
    dlat = side / METERS_PER_DEGREE
    dlon = side / (METERS_PER_DEGREE * math.cos(math.radians(center_lat)))
    return _finish(
        [
            (center_lat - dlat, center_lon - dlon),
            (center_lat - dlat, center_lon + dlon),
            (center_lat + dlat, center_lon + dlon),
            (center_lat + dlat, center_lon - dlon),
        ]
    )


def triangle_template(center_lat: float, center_lon: float, length_m: float = 5000.0) -> Template:
    side = length_m / 3.0
    dlat = side / METERS_PER_DEGREE
    dlon = side / (METERS_PER_DEGREE * math.cos(math.radians(center_lat)))
    return _finish(
        [
            (center_lat + dlat * 1.5, center_lon),
            (center_lat - dlat * 0.75, center_lon - dlon * 1.3),
            (center_lat - dlat * 0.75, center_lon + dlon * 1.3),
        ]
    )


def heart_template(center_lat: float, center_lon: float, length_m: float = 5000.0, *, steps: int = 200) -> Template:
    # The parametric heart spans roughly 120 units of perimeter.
    scale = (length_m / METERS_PER_DEGREE) / (120.0 / 2.0)
    points: list[LatLon] = []
    for i in range(steps + 1):
        t = (i / steps) * 2.0 * math.pi
        x = 16.0 * math.sin(t) ** 3
        y = -(13.0 * math.cos(t) - 5.0 * math.cos(2 * t) - 2.0 * math.cos(3 * t) - math.cos(4 * t))
        points.append((center_lat + y * scale, center_lon + x * scale))
    return _finish(points)


def slate_template(center_lat: float, center_lon: float, length_m: float = 5000.0) -> Template:
    """Film clapperboard: a body rectangle with a slanted frame on top, drawn in one stroke."""
    w = length_m / 4.0
    h = length_m / 5.0
    frame_h = h * 0.33
    body_bottom, body_top = -h / 2.0, h / 2.0
    body_left, body_right = -w / 2.0, w / 2.0
    frame_bottom_left = body_top + h * 0.05
    frame_bottom_right = body_top + h * 0.15
    frame_top_left = frame_bottom_left + frame_h
    frame_top_right = frame_bottom_right + frame_h
    local = [
        (body_left, body_bottom),
        (body_right, body_bottom),
        (body_right, body_top),
        (body_left, body_top),
        (body_left, frame_bottom_left),
        (body_right, frame_bottom_right),
        (body_right, frame_top_right),
        (body_left, frame_top_left),
        (body_left, frame_bottom_left),
        (body_left, body_top),
        (body_left, body_bottom),
    ]
    return _finish(_local(center_lat, center_lon, local))


def hanok_template(center_lat: float, center_lon: float, length_m: float = 12_000.0) -> Template:
    """Traditional house: trapezoid outline then an inner loop through three pillars."""
    wb = length_m / 3.0
    wt = wb * 0.6
    h = length_m / 8.0
    bl, br = (-wb / 2.0, -h / 2.0), (wb / 2.0, -h / 2.0)
    tr, tl = (wt / 2.0, h / 2.0), (-wt / 2.0, h / 2.0)
    x1, x2, x3 = -wt * 0.25, 0.0, wt * 0.25
    local = [
        bl, br, tr, tl, bl,
        (x1, -h / 2.0), (x1, h / 2.0),
        (x2, h / 2.0), (x2, -h / 2.0),
        (x3, -h / 2.0), (x3, h / 2.0),
        tr, br, bl,
    ]
    return _finish(_local(center_lat, center_lon, local))


def _book_arc(start_x: float, end_x: float, base_y: float, depth: float, steps: int) -> list[tuple[float, float]]:
    arc: list[tuple[float, float]] = []
    for i in range(steps + 1):
        t = i / steps
        x = start_x + (end_x - start_x) * t
        arc.append((x, base_y - depth * math.sin(math.pi * t) ** 2))
    return arc


def book_template(center_lat: float, center_lon: float, length_m: float = 5000.0, *, steps: int = 50) -> Template:
    """Open book: two arched page edges on top, two below, joined by straight sides."""
    w = length_m / 3.2
    h = length_m / 4.8
    top, bottom = h / 2.0, -h / 2.0
    depth = h * 0.3
    local = [
        *_book_arc(-w / 2.0, 0.0, top, depth, steps),
        *_book_arc(0.0, w / 2.0, top, depth, steps),
        (w / 2.0, bottom),
        *_book_arc(w / 2.0, 0.0, bottom, depth, steps),
        *_book_arc(0.0, -w / 2.0, bottom, depth, steps),
        (-w / 2.0, top),
    ]
    return _finish(_local(center_lat, center_lon, local))


_GENERATORS = {
    ShapeKind.SQUARE: square_template,
    ShapeKind.TRIANGLE: triangle_template,
    ShapeKind.HEART: heart_template,
    ShapeKind.SLATE: slate_template,
    ShapeKind.HANOK: hanok_template,
    ShapeKind.BOOK: book_template,
}


def create_template(kind: ShapeKind, center_lat: float, center_lon: float, length_m: float) -> Template:
    generator = _GENERATORS.get(kind, square_template)
    return generator(center_lat, center_lon, length_m)


# --- transforms --------------------------------------------------------------


def resample_uniform(template: Sequence[LatLon], num_points: int = 120) -> Template:
    """Equal arc-length resampling of a closed template into ``num_points + 1`` points."""
    if len(template) < 2 or num_points < 1:
        return tuple(template)
    n = len(template)
    cumulative = [0.0]
    for i in range(n):
        cumulative.append(cumulative[-1] + point_distance_m(template[i], template[(i + 1) % n]))
    total = cumulative[-1]
    interval = total / num_points
    out: list[LatLon] = []
    for i in range(num_points):
        target = i * interval
        seg = min(max(0, bisect_right(cumulative, target) - 1), n - 1)
        seg_len = cumulative[seg + 1] - cumulative[seg]
        ratio = (target - cumulative[seg]) / seg_len if seg_len > 0 else 0.0
        p1 = template[seg]
        p2 = template[(seg + 1) % n]
        out.append((p1[0] + (p2[0] - p1[0]) * ratio, p1[1] + (p2[1] - p1[1]) * ratio))
    out.append(out[0])
    return tuple(out)


def _vertex_curvatures(template: Sequence[LatLon]) -> list[float]:
    n = len(template)
    curvatures: list[float] = []
    for i in range(n):
        p1 = template[(i - 1) % n]
        p2 = template[i]
        p3 = template[(i + 1) % n]
        v1 = (p2[0] - p1[0], p2[1] - p1[1])
        v2 = (p3[0] - p2[0], p3[1] - p2[1])
        len1 = math.hypot(*v1)
        len2 = math.hypot(*v2)
        if len1 <= 0.0 or len2 <= 0.0:
            curvatures.append(0.0)
            continue
        dot = ((v1[0] * v2[0]) + (v1[1] * v2[1])) / (len1 * len2)
        curvatures.append(math.acos(max(-1.0, min(1.0, dot))) / math.pi)
    return curvatures


def resample_adaptive(
    template: Sequence[LatLon],
    target_points: int = 40,
    curvature_weight: float = 2.0,
) -> Template:
    """Curvature-weighted resampling into ``target_points + 1`` closed points.

    Each segment's share of the sampling axis is its length scaled by
    ``1 + mean endpoint curvature * curvature_weight``, so bends receive more
    samples while positions still interpolate along true geometry.
    """
    if len(template) < 3:
        return resample_uniform(template, target_points)
    if target_points < 1:
        return tuple(template)
    n = len(template)
    curvatures = _vertex_curvatures(template)
    weighted: list[float] = []
    cumulative: list[float] = [0.0]
    for i in range(n):
        nxt = (i + 1) % n
        seg_len = point_distance_m(template[i], template[nxt])
        seg_weight = seg_len * (1.0 + ((curvatures[i] + curvatures[nxt]) / 2.0) * curvature_weight)
        weighted.append(seg_weight)
        cumulative.append(cumulative[-1] + seg_weight)
    step = cumulative[-1] / target_points
    out: list[LatLon] = []
    for i in range(target_points):
        target = i * step
        seg = min(max(0, bisect_right(cumulative, target) - 1), n - 1)
        ratio = (target - cumulative[seg]) / weighted[seg] if weighted[seg] > 0 else 0.0
        p1 = template[seg]
        p2 = template[(seg + 1) % n]
        out.append((p1[0] + (p2[0] - p1[0]) * ratio, p1[1] + (p2[1] - p1[1]) * ratio))
    out.append(out[0])
    return tuple(out)


def reorder(template: Sequence[LatLon], start_idx: int) -> Template:
    """Cut the closed loop at ``start_idx`` so it starts (and ends) there."""
    count = len(template) - 1
    if count < 1:
        return tuple(template)
    out = [template[(start_idx + i) % count] for i in range(count)]
    out.append(out[0])
    return tuple(out)


def rotate(template: Sequence[LatLon], center_lat: float, center_lon: float, angle_deg: float) -> Template:
    # Planar rotation on (lat, lon) offsets; acceptable at city scale.
    rad = math.radians(angle_deg)
    cos_a = math.cos(rad)
    sin_a = math.sin(rad)
    out: list[LatLon] = []
    for lat, lon in template:
        dlat = lat - center_lat
        dlon = lon - center_lon
        out.append((center_lat + dlat * cos_a - dlon * sin_a, center_lon + dlat * sin_a + dlon * cos_a))
    return tuple(out)


def reflect_horizontal(template: Sequence[LatLon], center_lon: float, flip: int) -> Template:
    return tuple((lat, center_lon + (lon - center_lon) * flip) for lat, lon in template)


def align_to_start(template: Sequence[LatLon], start_lat: float, start_lon: float) -> Template:
    if not template:
        return ()
    offset_lat = start_lat - template[0][0]
    offset_lon = start_lon - template[0][1]
    return tuple((lat + offset_lat, lon + offset_lon) for lat, lon in template)


def scale_to_length(template: Sequence[LatLon], target_length_m: float) -> Template:
    if len(template) < 2:
        return tuple(template)
    current = path_length_m(template)
    if current == 0.0:
        return tuple(template)
    factor = target_length_m / current
    c_lat, c_lon = centroid(template)
    return tuple((c_lat + (lat - c_lat) * factor, c_lon + (lon - c_lon) * factor) for lat, lon in template)


def template_hash(template: Sequence[LatLon]) -> str:
    """Signature invariant to translation and to rotation of the first segment."""
    if len(template) < 2:
        return ""
    lat0, lon0 = template[0]
    normalized = [(lat - lat0, lon - lon0) for lat, lon in template]
    angle = math.atan2(normalized[1][1], normalized[1][0])
    cos_a = math.cos(-angle)
    sin_a = math.sin(-angle)
    parts = []
    for lat, lon in normalized:
        # Adding 0.0 folds negative zero so equal shapes hash equally.
        x = round(lat * cos_a - lon * sin_a, 6) + 0.0
        y = round(lat * sin_a + lon * cos_a, 6) + 0.0
        parts.append(f"{x:.6f},{y:.6f}")
    return "|".join(parts)


def generate_variations(
    template: Sequence[LatLon],
    center_lat: float,
    center_lon: float,
    kind: ShapeKind = ShapeKind.DEFAULT,
) -> list[TemplateVariation]:
    """Every configured rotation crossed with every reflection flag.

    Symmetric duplicates are kept on purpose; the table already omits the
    obvious ones.
    """
    config = variation_config(kind)
    out: list[TemplateVariation] = []
    for rotation in config.rotations:
        for flip in config.flips:
            rotated = rotate(template, center_lat, center_lon, rotation)
            out.append(
                TemplateVariation(
                    template=reflect_horizontal(rotated, center_lon, flip),
                    rotation_deg=rotation,
                    flip=flip,
                    key=f"{rotation}_{flip}",
                )
            )
    log_event(
        "template_variations_generated",
        shape=kind.value,
        variations=len(out),
        description=config.description,
    )
    return out
