"""
Database Models and Schemas
"""

from app.models.checkin_record import CheckinRecord
from app.models.geofence import (
    Coordinate,
    CircleGeofence,
    PolygonGeofence,
    Geofence,
    EventConfig,
    MAX_GEOFENCE_RADIUS_METERS,
)

__all__ = [
    "CheckinRecord",
    "Coordinate",
    "CircleGeofence",
    "PolygonGeofence",
    "Geofence",
    "EventConfig",
    "MAX_GEOFENCE_RADIUS_METERS",
]
