"""Pure functions for building MongoDB position queries."""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from missiontrack.core.modules.position.models import (
    DEFAULT_SNAPSHOT_RETENTION_SECONDS,
    MIN_SNAPSHOT_TRACE_LIMIT,
    BoundingBox,
    Circle,
    TimeRange,
)

EARTH_RADIUS_METERS = 6378100

SpatialBounds = BoundingBox | Circle


def retention_cutoff(reference: datetime, retention_seconds: int) -> datetime:
    """Oldest fix time still inside the retention window."""
    return reference - timedelta(seconds=max(0, retention_seconds))


def build_time_condition(time_range: TimeRange | None, cutoff: datetime | None) -> dict[str, datetime]:
    """Build a created_at condition from an optional range and retention cutoff.

    The lower bound is the later of the range start and the cutoff.
    """
    condition: dict[str, datetime] = {}
    lower = cutoff
    if time_range is not None and time_range.start is not None:
        lower = time_range.start if lower is None else max(lower, time_range.start)
    if lower is not None:
        condition["$gte"] = lower
    if time_range is not None and time_range.end is not None:
        condition["$lt"] = time_range.end
    return condition


def build_spatial_filter(bounds: SpatialBounds) -> dict[str, Any]:
    """Build the location part of a positions filter.

    Circles use $geoWithin/$centerSphere on the 2dsphere index. Boxes compare
    the stored [lon, lat] pair directly, so edges stay on constant lon/lat
    lines instead of following great circles.
    """
    if isinstance(bounds, Circle):
        radius = bounds.radius_meters / EARTH_RADIUS_METERS
        return {"location": {"$geoWithin": {"$centerSphere": [[bounds.lon, bounds.lat], radius]}}}

    return {
        "location.coordinates.0": {"$gte": bounds.min_lon, "$lte": bounds.max_lon},
        "location.coordinates.1": {"$gte": bounds.min_lat, "$lte": bounds.max_lat},
    }


def build_trace_query(
    mission_id: UUID,
    user_id: str | None = None,
    time_range: TimeRange | None = None,
    bounds: SpatialBounds | None = None,
    cutoff: datetime | None = None,
) -> dict[str, Any]:
    """Build the positions filter for a trace query.

    Key order follows the (mission_id, user_id, created_at) index.
    """
    query: dict[str, Any] = {"mission_id": mission_id}
    if user_id is not None:
        query["user_id"] = user_id

    time_condition = build_time_condition(time_range, cutoff)
    if time_condition:
        query["created_at"] = time_condition

    if bounds is not None:
        query.update(build_spatial_filter(bounds))
    return query


def build_trace_sort() -> list[tuple[str, int]]:
    return [("created_at", 1)]


def build_retention_query(mission_id: UUID, cutoff: datetime) -> dict[str, Any]:
    """Filter selecting positions strictly older than the cutoff."""
    return {"mission_id": mission_id, "created_at": {"$lt": cutoff}}


def snapshot_trace_limit(retention_seconds: int) -> int:
    return max(MIN_SNAPSHOT_TRACE_LIMIT, retention_seconds * 10)


def effective_snapshot_retention(mission_retention: int, requested: int | None) -> int:
    """Clamp a requested snapshot window to the mission retention."""
    window = DEFAULT_SNAPSHOT_RETENTION_SECONDS if requested is None else requested
    return max(0, min(mission_retention, window))
