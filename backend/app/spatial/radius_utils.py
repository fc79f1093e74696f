"""
radius_utils.py — Location-based radius filtering for SOS alerts.

Provides:
    - Haversine distance calculation between two (lat, lon) points
    - Bounding-box pre-filter for performance at scale
    - Radius filtering of any located items (nearest first)

Distances are in **kilometers** unless a name says otherwise.
Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where φ is latitude and λ longitude in radians and R ≈ 6,371 km.
Accurate to ~0.5%, plenty for "responders within N km".
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple, TypeVar

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius
METERS_PER_KM: float = 1_000.0


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points, in kilometers.

    Examples
    --------
    >>> haversine(Coordinate(13.0827, 80.2707), Coordinate(12.9716, 77.5946))
    290.2122

    >>> haversine(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))

    distance = EARTH_RADIUS_KM * c
    return round(distance, 4)


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before expensive Haversine)
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Lat/lon box that fully contains the circle (center, radius_km).

    Cheap enough to push into a SQL WHERE clause; exact distance is
    checked afterwards.

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees.

    Near the antimeridian the longitude range wraps instead of being
    clamped, so min_lon > max_lon means "lon >= min_lon or lon <= max_lon".
    A 50 km box around (0, 179.95) spans roughly 179.50 .. -179.60.
    """
    angular = radius_km / EARTH_RADIUS_KM

    min_lat = max(center.latitude - math.degrees(angular), -90.0)
    max_lat = min(center.latitude + math.degrees(angular), 90.0)

    # Longitude delta depends on latitude (shrinks toward poles)
    lat_rad = math.radians(center.latitude)
    if math.cos(lat_rad) > 1e-10:
        delta_lon = math.degrees(angular / math.cos(lat_rad))
    else:
        delta_lon = 180.0  # At the poles, all longitudes are "near"

    if delta_lon >= 180.0:
        return (min_lat, max_lat, -180.0, 180.0)

    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180.0:
        min_lon += 360.0
    if max_lon > 180.0:
        max_lon -= 360.0

    return (min_lat, max_lat, min_lon, max_lon)


def crosses_antimeridian(box: Tuple[float, float, float, float]) -> bool:
    return box[2] > box[3]


def inside_bbox(
    lat: float, lon: float,
    box: Tuple[float, float, float, float],
) -> bool:
    min_lat, max_lat, min_lon, max_lon = box
    if not min_lat <= lat <= max_lat:
        return False
    if crosses_antimeridian(box):
        return lon >= min_lon or lon <= max_lon
    return min_lon <= lon <= max_lon


# ---------------------------------------------------------------------------
# Radius filtering
# ---------------------------------------------------------------------------

def is_inside_radius(
    center: Coordinate,
    point: Coordinate,
    radius_km: float,
) -> Tuple[bool, float]:
    """
    Check whether a point falls within radius_km of center.

    Returns (inside, distance_km).

    >>> is_inside_radius(Coordinate(13.0827, 80.2707), Coordinate(13.10, 80.30), 5.0)
    (True, 3.7266)
    """
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")

    dist = haversine(center, point)
    return (dist <= radius_km, dist)


def filter_within_radius(
    center: Coordinate,
    items: Sequence[T],
    radius_km: float,
    locate: Callable[[T], Coordinate],
) -> List[T]:
    """
    Items whose location is within radius_km of center, nearest first.

    Bounding box first, then the precise Haversine check.
    """
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")

    box = bounding_box(center, radius_km)
    matched: List[Tuple[float, int, T]] = []

    for index, item in enumerate(items):
        point = locate(item)
        if not inside_bbox(point.latitude, point.longitude, box):
            continue
        inside, dist = is_inside_radius(center, point, radius_km)
        if inside:
            matched.append((dist, index, item))

    matched.sort(key=lambda m: (m[0], m[1]))
    return [item for _, _, item in matched]
