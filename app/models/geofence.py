"""
Pydantic schemas for event geofences and event configuration
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

# Administrative cap for circular geofences
MAX_GEOFENCE_RADIUS_METERS = 10000.0


class Coordinate(BaseModel):
    """A WGS84 point in decimal degrees"""
    lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    lng: float = Field(..., ge=-180, le=180, allow_inf_nan=False)


class CircleGeofence(BaseModel):
    """Circular region around a center point"""
    type: Literal["circle"] = "circle"
    center: Coordinate
    radius_meters: float = Field(
        ...,
        gt=0,
        le=MAX_GEOFENCE_RADIUS_METERS,
        alias="radiusMeters",
        description="Allowed distance from center in meters"
    )

    model_config = {"populate_by_name": True}


class PolygonGeofence(BaseModel):
    """Simple polygon; edges implicitly close last -> first"""
    type: Literal["polygon"] = "polygon"
    vertices: List[Coordinate] = Field(..., min_length=3)


Geofence = Annotated[Union[CircleGeofence, PolygonGeofence], Field(discriminator="type")]


class EventConfig(BaseModel):
    """
    Event configuration as supplied by the event configuration provider.

    Only the fields the check-in flow needs: whether the event accepts
    check-ins and which region corroborates presence.
    """
    id: str
    name: Optional[str] = None
    is_active: bool = Field(True, alias="isActive")
    geofence: Optional[Geofence] = None

    model_config = {"populate_by_name": True}
