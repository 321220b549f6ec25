from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from .geo_math import (
    LatLon,
    angle_difference_rad,
    centroid,
    midpoint,
    planar_bearing_rad,
    point_distance_m,
)
from .settings import settings


@dataclass(frozen=True)
class SimilarityWeights:
    distance: float = 0.01
    direction: float = 0.54
    order: float = 0.10
    center: float = 0.35

    @classmethod
    def from_settings(cls) -> SimilarityWeights:
        return cls(
            distance=settings.similarity_weight_distance,
            direction=settings.similarity_weight_direction,
            order=settings.similarity_weight_order,
            center=settings.similarity_weight_center,
        )


@dataclass(frozen=True)
class SimilarityBreakdown:
    distance: float
    direction: float
    order: float
    center: float
    total: float


def _clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, value))


def _template_points(template: Sequence[LatLon]) -> list[LatLon]:
    points = [(float(p[0]), float(p[1])) for p in template]
    # Closed templates repeat the first point; score each vertex once.
    if len(points) >= 2 and points[0] == points[-1]:
        return points[:-1]
    return points


def _distance_score(points: Sequence[LatLon], route: Sequence[LatLon], max_distance_m: float) -> float:
    total = 0.0
    for tp in points:
        total += min(point_distance_m(tp, rp) for rp in route)
    avg = total / len(points)
    return _clamp_pct(100.0 * (1.0 - avg / max_distance_m))


def _direction_score(points: Sequence[LatLon], route: Sequence[LatLon]) -> float:
    if len(route) < 2:
        return 0.0
    route_mids = [midpoint(route[j], route[j + 1]) for j in range(len(route) - 1)]
    matched = 0.0
    count = 0
    for i in range(len(points) - 1):
        t1, t2 = points[i], points[i + 1]
        t_mid = midpoint(t1, t2)
        best_j = min(range(len(route_mids)), key=lambda j: point_distance_m(t_mid, route_mids[j]))
        diff = angle_difference_rad(
            planar_bearing_rad(t1, t2),
            planar_bearing_rad(route[best_j], route[best_j + 1]),
        )
        matched += 1.0 - (diff / math.pi)
        count += 1
    return (matched / count) * 100.0 if count else 0.0


def _order_score(points: Sequence[LatLon], route: Sequence[LatLon], regression_credit: float) -> float:
    score = 0.0
    count = 0
    last_idx = 0
    for tp in points:
        best_idx = -1
        best_dist = math.inf
        for j in range(last_idx, len(route)):
            dist = point_distance_m(tp, route[j])
            if dist < best_dist:
                best_dist = dist
                best_idx = j
        if best_idx < 0:
            continue
        score += 1.0 if best_idx >= last_idx else regression_credit
        last_idx = best_idx
        count += 1
    return (score / count) * 100.0 if count else 0.0


def _center_score(points: Sequence[LatLon], route: Sequence[LatLon], max_center_distance_m: float) -> float:
    dist = point_distance_m(centroid(points), centroid(route))
    return _clamp_pct(100.0 * (1.0 - dist / max_center_distance_m))


def similarity_breakdown(
    template: Sequence[LatLon],
    route: Sequence[LatLon],
    *,
    weights: SimilarityWeights | None = None,
) -> SimilarityBreakdown:
    """Score how closely a route traces a template, 0-100 (higher is closer).

    Four sub-scores are blended: mean nearest-point distance, per-edge bearing
    agreement, monotonic order of matches along the route, and centroid offset.
    Bearings treat (lat, lon) as planar, which holds for city-sized shapes.
    """
    points = _template_points(template)
    if not points or not route:
        return SimilarityBreakdown(distance=0.0, direction=0.0, order=0.0, center=0.0, total=0.0)
    w = weights or SimilarityWeights.from_settings()
    distance = _distance_score(points, route, settings.similarity_max_distance_m)
    direction = _direction_score(points, route)
    order = _order_score(points, route, settings.similarity_order_regression_credit)
    center = _center_score(points, route, settings.similarity_max_center_distance_m)
    total = (
        distance * w.distance
        + direction * w.direction
        + order * w.order
        + center * w.center
    )
    return SimilarityBreakdown(
        distance=distance,
        direction=direction,
        order=order,
        center=center,
        total=_clamp_pct(total),
    )


def similarity(
    template: Sequence[LatLon],
    route: Sequence[LatLon],
    *,
    weights: SimilarityWeights | None = None,
) -> float:
    return similarity_breakdown(template, route, weights=weights).total
