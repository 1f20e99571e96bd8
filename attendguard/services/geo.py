"""Great-circle distance and geofence evaluation."""
from __future__ import annotations

from dataclasses import dataclass
from math import atan2, cos, radians, sin, sqrt

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeofenceResult:
    distance_m: float
    radius_m: float
    within_range: bool

    @property
    def difference_m(self) -> float:
        """Signed distance past the fence edge (negative means inside)."""
        return self.distance_m - self.radius_m


def validate_coordinates(lat: float, lng: float) -> None:
    if not -90 <= lat <= 90:
        raise ValueError(f"Latitude out of range: {lat}")
    if not -180 <= lng <= 180:
        raise ValueError(f"Longitude out of range: {lng}")


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in meters on a spherical Earth."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    # Rounding can push a just past 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_M * atan2(sqrt(a), sqrt(1 - a))


def evaluate_geofence(
    center_lat: float,
    center_lng: float,
    lat: float,
    lng: float,
    radius_m: float,
) -> GeofenceResult:
    validate_coordinates(center_lat, center_lng)
    validate_coordinates(lat, lng)
    distance = haversine_m(center_lat, center_lng, lat, lng)
    return GeofenceResult(distance_m=distance, radius_m=float(radius_m), within_range=distance <= radius_m)
