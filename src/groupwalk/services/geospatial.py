"""Geospatial helper functions.

All functions are pure: no I/O, no randomness, inputs are never mutated.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from shapely.geometry import MultiPoint

from ..errors import EmptyInputError, InvalidLocationError
from ..models.domain import Location

EARTH_RADIUS_KM = 6371.0
_IMPROVEMENT_EPSILON_KM = 1e-12
# Buffer applied to degenerate hulls (one or two distinct points), ~50 m.
_DEGENERATE_HULL_BUFFER_DEG = 0.0005


@dataclass(frozen=True, slots=True)
class RouteLeg:
    from_index: int
    to_index: int
    distance_km: float
    bearing_deg: float
    walking_minutes: int


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the initial bearing from (lat1, lon1) to (lat2, lon2)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)
    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


def _require_valid(point: Location) -> Location:
    if not point.is_valid:
        raise InvalidLocationError(f"Invalid coordinates ({point.latitude}, {point.longitude})")
    return point


def distance_km(a: Location, b: Location) -> float:
    """Great-circle distance between two valid locations."""

    _require_valid(a)
    _require_valid(b)
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def bearing(origin: Location, target: Location) -> float:
    """Initial bearing in degrees within ``[0, 360)``."""

    _require_valid(origin)
    _require_valid(target)
    return bearing_degrees(origin.latitude, origin.longitude, target.latitude, target.longitude)


def centroid(points: Sequence[Location]) -> Location:
    """Geographic center computed by averaging 3D unit vectors.

    Stable across the antimeridian and near the poles, unlike a plain
    average of latitudes and longitudes.
    """

    if not points:
        raise EmptyInputError("Cannot calculate the center of an empty point set")
    for point in points:
        _require_valid(point)
    if len(points) == 1:
        return points[0]

    x = y = z = 0.0
    for point in points:
        lat = math.radians(point.latitude)
        lon = math.radians(point.longitude)
        x += math.cos(lat) * math.cos(lon)
        y += math.cos(lat) * math.sin(lon)
        z += math.sin(lat)

    total = len(points)
    x, y, z = x / total, y / total, z / total

    lon = math.atan2(y, x)
    hyp = math.sqrt(x * x + y * y)
    lat = math.atan2(z, hyp)
    return Location(latitude=math.degrees(lat), longitude=math.degrees(lon))


def covering_radius(center: Location, points: Sequence[Location]) -> float:
    """Maximum distance from ``center`` to any point; 0 for no points."""

    if not points:
        return 0.0
    return max(distance_km(center, point) for point in points)


def route_distance_km(route: Sequence[Location]) -> float:
    return sum(distance_km(route[i], route[i + 1]) for i in range(len(route) - 1))


def nearest_neighbor_order(points: Sequence[Location]) -> list[Location]:
    """Start at the first point, then repeatedly visit the closest unvisited one.

    Ties go to the point that appears first in the input.
    """

    if len(points) <= 2:
        return list(points)

    ordered = [points[0]]
    remaining = list(points[1:])
    while remaining:
        current = ordered[-1]
        nearest_index = min(range(len(remaining)), key=lambda idx: distance_km(current, remaining[idx]))
        ordered.append(remaining.pop(nearest_index))
    return ordered


def two_opt_improve(route: Sequence[Location]) -> list[Location]:
    """Refine an open route by reversing sub-segments that shorten it.

    The first stop stays fixed. Passes continue until no reversal strictly
    reduces the total distance, capped at ``len(route) ** 2`` passes.
    """

    best = list(route)
    count = len(best)
    if count < 3:
        return best

    for _ in range(count * count):
        improved = False
        for i in range(1, count - 1):
            for j in range(i + 1, count):
                prev_stop, first = best[i - 1], best[i]
                last = best[j]
                after_stop = best[j + 1] if j + 1 < count else None

                current = distance_km(prev_stop, first)
                candidate = distance_km(prev_stop, last)
                if after_stop is not None:
                    current += distance_km(last, after_stop)
                    candidate += distance_km(first, after_stop)

                if candidate < current - _IMPROVEMENT_EPSILON_KM:
                    best[i : j + 1] = best[i : j + 1][::-1]
                    improved = True
        if not improved:
            break
    return best


def optimize_route(points: Sequence[Location]) -> list[Location]:
    return two_opt_improve(nearest_neighbor_order(points))


def estimate_walking_minutes(distance: float, speed_kmh: float = 5.0) -> int:
    return math.ceil((distance / speed_kmh) * 60)


def route_legs(route: Sequence[Location], walking_speed_kmh: float = 5.0) -> list[RouteLeg]:
    legs: list[RouteLeg] = []
    for index in range(len(route) - 1):
        leg_distance = distance_km(route[index], route[index + 1])
        legs.append(
            RouteLeg(
                from_index=index,
                to_index=index + 1,
                distance_km=round(leg_distance, 3),
                bearing_deg=round(bearing(route[index], route[index + 1]), 1),
                walking_minutes=estimate_walking_minutes(leg_distance, walking_speed_kmh),
            )
        )
    return legs


def format_distance(distance: float) -> str:
    if distance < 1:
        return f"{round(distance * 1000)} m"
    return f"{distance:.1f} km"


def coverage_polygon(points: Sequence[Location]) -> list[tuple[float, float]]:
    """Closed (lat, lon) ring around the points, for map overlays."""

    valid = [(point.longitude, point.latitude) for point in points if point.is_valid]
    if not valid:
        return []
    hull = MultiPoint(valid).convex_hull
    if hull.geom_type != "Polygon":
        hull = hull.buffer(_DEGENERATE_HULL_BUFFER_DEG)
    return [(lat, lon) for lon, lat in hull.exterior.coords]
