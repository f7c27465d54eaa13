from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Coordinate = tuple[float, float]
WaypointRole = Literal["start", "waypoint", "end"]
SegmentMode = Literal["route", "straight"]

# Accepted on input for the routed mode; the saved file format uses "route".
_SEGMENT_MODE_ALIASES: dict[str, str] = {"routed": "route", "road": "route", "line": "straight"}


def new_waypoint_id() -> str:
    return uuid.uuid4().hex


def validate_lon_lat(value: Coordinate) -> Coordinate:
    lon, lat = float(value[0]), float(value[1])
    if lon != lon or lat != lat:
        raise ValueError("Longitude and latitude must be valid numbers.")
    if not -180.0 <= lon <= 180.0:
        raise ValueError("Longitude must be between -180 and 180.")
    if not -90.0 <= lat <= 90.0:
        raise ValueError("Latitude must be between -90 and 90.")
    return (lon, lat)


class Waypoint(BaseModel):
    """A user-placed point. ``segment_mode`` governs the segment that ends here."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_waypoint_id)
    role: WaypointRole = "waypoint"
    coordinates: Coordinate
    segment_mode: SegmentMode | None = None

    @field_validator("coordinates")
    @classmethod
    def valid_coordinates(cls, v: Coordinate) -> Coordinate:
        return validate_lon_lat(v)

    @field_validator("segment_mode", mode="before")
    @classmethod
    def accept_mode_aliases(cls, v: object) -> object:
        if isinstance(v, str):
            key = v.strip().lower()
            return _SEGMENT_MODE_ALIASES.get(key, key)
        return v


class GeoJSONLineString(BaseModel):
    type: Literal["LineString"] = "LineString"
    coordinates: list[Coordinate]


class SegmentSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: int = Field(..., ge=1)
    from_: Coordinate = Field(..., alias="from")
    to: Coordinate
    mode: SegmentMode
    distance_m: float = Field(..., ge=0.0)
    duration_s: float = Field(..., ge=0.0)
    failed: bool = False
    error: str | None = None


class RouteProperties(BaseModel):
    distance_m: float = Field(..., ge=0.0)
    duration_s: float = Field(..., ge=0.0)
    profile: str = "walking"
    start: Coordinate
    end: Coordinate
    waypoints: list[Coordinate] = Field(default_factory=list)
    segments: list[SegmentSummary] = Field(default_factory=list)
    generated_at: str


class RouteFeature(BaseModel):
    """The composed route: one GeoJSON LineString feature."""

    type: Literal["Feature"] = "Feature"
    geometry: GeoJSONLineString
    properties: RouteProperties

    def to_geojson(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RouteElevations(BaseModel):
    start_m: int
    end_m: int


class RouteRequest(BaseModel):
    waypoints: list[Waypoint] = Field(..., min_length=1)


class RouteResponse(BaseModel):
    route: RouteFeature
    warnings: list[str] = Field(default_factory=list)
    status: str


class ElevationsRequest(BaseModel):
    route: RouteFeature


class CacheStatsResponse(BaseModel):
    size: int
    hits: int
    misses: int
    clears: int
    max_entries: int


class AccessTokenRequest(BaseModel):
    access_token: str = Field(..., min_length=1)
