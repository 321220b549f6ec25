from __future__ import annotations

import math
from collections.abc import Sequence

EARTH_RADIUS_M = 6_371_000.0
# Flat-earth conversion used by the shape generators.
METERS_PER_DEGREE = 111_000.0

LatLon = tuple[float, float]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def point_distance_m(a: LatLon, b: LatLon) -> float:
    return haversine_m(a[0], a[1], b[0], b[1])


def path_length_m(points: Sequence[LatLon]) -> float:
    total = 0.0
    for idx in range(1, len(points)):
        total += point_distance_m(points[idx - 1], points[idx])
    return total


def centroid(points: Sequence[LatLon]) -> LatLon:
    if not points:
        raise ValueError("centroid of empty point set")
    lat = sum(p[0] for p in points) / len(points)
    lon = sum(p[1] for p in points) / len(points)
    return (lat, lon)


def midpoint(a: LatLon, b: LatLon) -> LatLon:
    return ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0)


def planar_bearing_rad(a: LatLon, b: LatLon) -> float:
    """Bearing of a->b treating (lat, lon) as a local Cartesian pair.

    Valid at city scale only; no geodesic correction is applied.
    """
    return math.atan2(b[1] - a[1], b[0] - a[0])


def angle_difference_rad(a: float, b: float) -> float:
    diff = abs(a - b)
    if diff > math.pi:
        diff = (2.0 * math.pi) - diff
    return diff


def local_meters_to_latlon(center_lat: float, center_lon: float, x_m: float, y_m: float) -> LatLon:
    """Offset a center by x meters east and y meters north."""
    lat_offset = y_m / METERS_PER_DEGREE
    lon_offset = x_m / (METERS_PER_DEGREE * math.cos(math.radians(center_lat)))
    return (center_lat + lat_offset, center_lon + lon_offset)


def dedupe_consecutive(items: Sequence[str]) -> list[str]:
    out: list[str] = []
    for item in items:
        if not out or out[-1] != item:
            out.append(item)
    return out
