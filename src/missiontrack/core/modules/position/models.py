"""Position models: append-only geographic fixes per mission and user."""

import math
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from missiontrack.core.db import GeoPoint, MongoModel
from missiontrack.errors import InvalidGeometryError, ValidationError
from missiontrack.utils import ensure_utc, now

MAX_BULK_FIXES = 200
MAX_FUTURE_SKEW_SECONDS = 60
DEFAULT_SNAPSHOT_RETENTION_SECONDS = 1800
MIN_SNAPSHOT_TRACE_LIMIT = 5000


def validate_coordinates(lon: object, lat: object) -> None:
    """Ensure lon/lat are finite numbers within WGS84 ranges."""
    for name, value, bound in (("longitude", lon, 180), ("latitude", lat, 90)):
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise InvalidGeometryError(f"Invalid {name}: expected a number")
        if not math.isfinite(value) or not -bound <= value <= bound:
            raise InvalidGeometryError(f"Invalid {name}: {value}")


class Fix(BaseModel):
    """A single position report as sent by a client."""

    lon: float
    lat: float
    speed: float | None = None
    heading: float | None = None
    accuracy: float | None = None
    timestamp: datetime | None = None  # Fix time; write time when absent

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime | None) -> datetime | None:
        return None if value is None else ensure_utc(value)


class Position(MongoModel):
    """Stored fix. Never updated after insert.

    Indexed on user_id, location (2dsphere), (mission_id, user_id, created_at).
    """

    mission_id: UUID
    user_id: str
    location: GeoPoint
    speed: float | None = None
    heading: float | None = None
    accuracy: float | None = None
    created_at: datetime = Field(default_factory=now)


class CurrentPosition(MongoModel):
    """Latest fix per (mission, user), overwritten on each write.

    Indexed on (mission_id, user_id) - unique, location (2dsphere).
    """

    mission_id: UUID
    user_id: str
    location: GeoPoint
    speed: float | None = None
    heading: float | None = None
    accuracy: float | None = None
    timestamp: datetime
    updated_at: datetime = Field(default_factory=now)


class TimeRange(BaseModel):
    """Half-open interval [start, end) on fix time."""

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def _utc_bounds(cls, value: datetime | None) -> datetime | None:
        return None if value is None else ensure_utc(value)

    def model_post_init(self, __context: object) -> None:
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValidationError("Time range end must not precede start")


class BoundingBox(BaseModel):
    """Axis-aligned box in lon/lat (flat, not great-circle edges); containment test.

    Boxes crossing the antimeridian are not supported.
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def model_post_init(self, __context: object) -> None:
        validate_coordinates(self.min_lon, self.min_lat)
        validate_coordinates(self.max_lon, self.max_lat)
        if self.min_lon >= self.max_lon or self.min_lat >= self.max_lat:
            raise InvalidGeometryError("Bounding box min corner must be below max corner")


class Circle(BaseModel):
    """Proximity area around a point."""

    lon: float
    lat: float
    radius_meters: float = Field(..., gt=0)

    def model_post_init(self, __context: object) -> None:
        validate_coordinates(self.lon, self.lat)


class TracePoint(BaseModel):
    lon: float
    lat: float
    t: datetime


class MissionSnapshot(BaseModel):
    """Current positions and recent traces for a mission, as shown on the map on join."""

    mission_id: UUID
    retention_seconds: int
    positions: dict[str, TracePoint] = Field(default_factory=dict)  # user_id -> latest fix
    traces: dict[str, list[TracePoint]] = Field(default_factory=dict)  # user_id -> fixes oldest first
