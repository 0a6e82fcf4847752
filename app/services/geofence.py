"""
Geofence Validator

Pure geometry helpers used to corroborate a check-in location:
- Great-circle distance via the haversine formula
- Point-in-circle and point-in-polygon (even-odd ray casting) tests

Boundary policy: a point lying exactly on a polygon edge or vertex counts as
inside. It is detected explicitly before the ray cast so the result does not
depend on floating-point tie-breaks.
"""

import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from app.models.geofence import CircleGeofence, PolygonGeofence

EARTH_RADIUS_METERS = 6371000.0

# Tolerance (in degrees squared) for the on-edge test
_EDGE_EPSILON = 1e-12


class GeofenceError(ValueError):
    """Base class for geofence input errors."""


class InvalidCoordinateError(GeofenceError):
    """Raised when a latitude/longitude is non-numeric, non-finite or out of range."""


class InvalidGeofenceError(GeofenceError):
    """Raised when a geofence definition (radius, vertices) is unusable."""


@dataclass
class GeofenceCheck:
    """Outcome of checking a location against an event geofence."""
    is_inside: bool
    distance_meters: int
    allowed_radius: float
    geofence_type: str


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_coordinate(lat: Any, lng: Any) -> None:
    if not _is_number(lat) or not _is_number(lng):
        raise InvalidCoordinateError(f"Coordinates must be numbers, got lat={lat!r}, lng={lng!r}")
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidCoordinateError(f"Coordinates must be finite, got lat={lat!r}, lng={lng!r}")
    if not -90 <= lat <= 90:
        raise InvalidCoordinateError(f"Latitude {lat} outside [-90, 90]")
    if not -180 <= lng <= 180:
        raise InvalidCoordinateError(f"Longitude {lng} outside [-180, 180]")


def _vertex_coords(vertex: Any) -> Tuple[Any, Any]:
    """Accept (lat, lng) pairs, {"lat", "lng"} mappings or objects with lat/lng."""
    if isinstance(vertex, (tuple, list)):
        if len(vertex) != 2:
            raise InvalidGeofenceError(f"Vertex must be a (lat, lng) pair, got {vertex!r}")
        return vertex[0], vertex[1]
    if isinstance(vertex, dict):
        if "lat" not in vertex or "lng" not in vertex:
            raise InvalidGeofenceError(f"Vertex mapping needs 'lat' and 'lng', got {vertex!r}")
        return vertex["lat"], vertex["lng"]
    if hasattr(vertex, "lat") and hasattr(vertex, "lng"):
        return vertex.lat, vertex.lng
    raise InvalidGeofenceError(f"Unsupported vertex type: {type(vertex).__name__}")


def _normalize_vertices(vertices: Optional[Iterable[Any]]) -> List[Tuple[float, float]]:
    if vertices is None:
        raise InvalidGeofenceError("Polygon must have at least 3 vertices")
    points = [_vertex_coords(v) for v in vertices]
    if len(points) < 3:
        raise InvalidGeofenceError("Polygon must have at least 3 vertices")
    for lat, lng in points:
        _validate_coordinate(lat, lng)
    return points


def distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points using the haversine formula.

    Args:
        lat1, lng1: First point in decimal degrees
        lat2, lng2: Second point in decimal degrees

    Returns:
        Distance in meters

    Raises:
        InvalidCoordinateError: If any coordinate is invalid
    """
    _validate_coordinate(lat1, lng1)
    _validate_coordinate(lat2, lng2)

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    # Rounding can push a slightly outside [0, 1] for near-antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def in_circle(
    lat: float,
    lng: float,
    center_lat: float,
    center_lng: float,
    radius_meters: float
) -> bool:
    """
    Check whether a point lies within a circular geofence.

    Raises:
        InvalidCoordinateError: If the point or center is invalid
        InvalidGeofenceError: If the radius is not a positive number
    """
    _validate_coordinate(lat, lng)
    _validate_coordinate(center_lat, center_lng)
    if not _is_number(radius_meters) or not math.isfinite(radius_meters) or radius_meters <= 0:
        raise InvalidGeofenceError(f"Radius must be a positive number, got {radius_meters!r}")

    return distance(lat, lng, center_lat, center_lng) <= radius_meters


def _on_segment(x: float, y: float, x1: float, y1: float, x2: float, y2: float) -> bool:
    cross = (x - x1) * (y2 - y1) - (y - y1) * (x2 - x1)
    if abs(cross) > _EDGE_EPSILON:
        return False
    return min(x1, x2) <= x <= max(x1, x2) and min(y1, y2) <= y <= max(y1, y2)


def in_polygon(lat: float, lng: float, vertices: Iterable[Any]) -> bool:
    """
    Check whether a point lies within a polygon using the even-odd rule.

    Longitude is treated as x and latitude as y. Points on an edge or vertex
    are inside.

    Args:
        lat: Point latitude
        lng: Point longitude
        vertices: Ordered polygon vertices (at least 3)

    Returns:
        True if the point is inside or on the boundary

    Raises:
        InvalidCoordinateError: If the point or any vertex is invalid
        InvalidGeofenceError: If fewer than 3 vertices are given
    """
    _validate_coordinate(lat, lng)
    points = _normalize_vertices(vertices)

    x, y = lng, lat
    inside = False
    j = len(points) - 1
    for i in range(len(points)):
        yi, xi = points[i]
        yj, xj = points[j]

        if _on_segment(x, y, xi, yi, xj, yj):
            return True

        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i

    return inside


def distance_to_polygon(lat: float, lng: float, vertices: Iterable[Any]) -> float:
    """Distance in meters from a point to the nearest polygon vertex."""
    points = _normalize_vertices(vertices)
    return min(distance(lat, lng, v_lat, v_lng) for v_lat, v_lng in points)


def check_location(lat: float, lng: float, geofence) -> GeofenceCheck:
    """
    Evaluate a submitted location against an event geofence model.

    Circle: reports distance to the center. Polygon: 0 when inside, otherwise
    the distance to the nearest vertex.
    """
    if isinstance(geofence, CircleGeofence):
        meters = distance(lat, lng, geofence.center.lat, geofence.center.lng)
        inside = in_circle(lat, lng, geofence.center.lat, geofence.center.lng, geofence.radius_meters)
        return GeofenceCheck(
            is_inside=inside,
            distance_meters=round(meters),
            allowed_radius=geofence.radius_meters,
            geofence_type="circle",
        )

    if isinstance(geofence, PolygonGeofence):
        inside = in_polygon(lat, lng, geofence.vertices)
        meters = 0.0 if inside else distance_to_polygon(lat, lng, geofence.vertices)
        return GeofenceCheck(
            is_inside=inside,
            distance_meters=round(meters),
            allowed_radius=0,
            geofence_type="polygon",
        )

    raise InvalidGeofenceError(f"Unsupported geofence type: {type(geofence).__name__}")
