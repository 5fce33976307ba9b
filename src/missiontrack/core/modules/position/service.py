from collections.abc import AsyncIterator, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from missiontrack.core.core import Service
from missiontrack.core.db import GeoPoint
from missiontrack.core.modules.mission.models import Mission
from missiontrack.core.modules.position import query_builder
from missiontrack.core.modules.position.models import (
    MAX_BULK_FIXES,
    MAX_FUTURE_SKEW_SECONDS,
    CurrentPosition,
    Fix,
    MissionSnapshot,
    Position,
    TimeRange,
    TracePoint,
    validate_coordinates,
)
from missiontrack.errors import MissionClosedError, ValidationError
from missiontrack.utils import now

logger = structlog.get_logger(__name__)


class PositionService(Service):
    """Append-only store of position fixes with time and spatial queries.

    Retention is not enforced on write; enforce_retention is driven by an
    external scheduler. Reads never return fixes older than the mission's
    retention window, so a pending purge is invisible to callers.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("positions")
        self._current = database.get_collection("positions_current")

    async def on_start(self) -> None:
        await self._collection.create_index([("user_id", 1)])
        await self._collection.create_index([("location", "2dsphere")])
        await self._collection.create_index([("mission_id", 1), ("user_id", 1), ("created_at", 1)])
        await self._current.create_index([("mission_id", 1), ("user_id", 1)], unique=True)
        await self._current.create_index([("location", "2dsphere")])

    async def record(self, mission_id: UUID, user_id: str, fix: Fix) -> Position:
        """Append one fix for a user in a mission."""
        _require_ids(mission_id, user_id)
        validate_coordinates(fix.lon, fix.lat)
        self._ensure_open(mission_id)

        position = _to_position(mission_id, user_id, fix)
        await self._collection.insert_one(position.to_mongo())
        await self._set_current(position)
        logger.debug("position_recorded", mission_id=mission_id, user_id=user_id, position_id=position.id)
        return position

    async def record_bulk(self, mission_id: UUID, user_id: str, fixes: Sequence[Fix]) -> list[Position]:
        """Append a batch of buffered fixes.

        Fixes already outside the retention window or too far in the future
        are skipped. Any malformed fix rejects the whole batch.
        """
        _require_ids(mission_id, user_id)
        if len(fixes) > MAX_BULK_FIXES:
            raise ValidationError(f"Too many fixes in one batch (max {MAX_BULK_FIXES})")
        for fix in fixes:
            validate_coordinates(fix.lon, fix.lat)
        mission = self._ensure_open(mission_id)
        if not fixes:
            return []

        reference = now()
        cutoff = query_builder.retention_cutoff(reference, mission.trace_retention_seconds)
        horizon = reference + timedelta(seconds=MAX_FUTURE_SKEW_SECONDS)

        positions = sorted(
            (_to_position(mission_id, user_id, fix, reference) for fix in fixes),
            key=lambda p: p.created_at,
        )
        accepted = [p for p in positions if cutoff <= p.created_at <= horizon]
        if accepted:
            await self._collection.insert_many([p.to_mongo() for p in accepted], ordered=False)
            await self._set_current(accepted[-1])

        logger.debug(
            "positions_recorded",
            mission_id=mission_id,
            user_id=user_id,
            received=len(fixes),
            inserted=len(accepted),
        )
        return accepted

    async def query_trace(
        self,
        mission_id: UUID,
        user_id: str | None = None,
        time_range: TimeRange | None = None,
        bounds: query_builder.SpatialBounds | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[Position]:
        """Stream positions of a mission in fix-time order.

        Args:
            mission_id: Mission to read
            user_id: Restrict to one reporter
            time_range: Optional [start, end) on fix time
            bounds: Optional bounding box or circle the fix must lie in
            limit: Optional maximum number of positions

        Yields:
            Positions ordered by created_at ascending, never older than the retention window
        """
        mission = self.core.services.mission.get_mission(mission_id)
        cutoff = query_builder.retention_cutoff(now(), mission.trace_retention_seconds)
        query = query_builder.build_trace_query(mission_id, user_id, time_range, bounds, cutoff)

        cursor = self._collection.find(query)
        for field, direction in query_builder.build_trace_sort():
            cursor = cursor.sort(field, direction)
        if limit is not None:
            cursor = cursor.limit(limit)

        try:
            async for doc in cursor:
                yield Position.model_validate(doc)
        finally:
            await cursor.close()

    async def get_trace(self, mission_id: UUID, user_id: str | None = None, **filters: Any) -> list[Position]:
        """Collect query_trace results into a list."""
        return [position async for position in self.query_trace(mission_id, user_id, **filters)]

    async def get_current_positions(self, mission_id: UUID) -> list[CurrentPosition]:
        """Latest known fix of each participant."""
        return await CurrentPosition.list_cursor(self._current.find({"mission_id": mission_id}))

    async def get_snapshot(self, mission_id: UUID, requested_retention_seconds: int | None = None) -> MissionSnapshot:
        """Current positions and recent traces, limited to a window no wider than the mission retention."""
        mission = self.core.services.mission.get_mission(mission_id)
        retention = query_builder.effective_snapshot_retention(
            mission.trace_retention_seconds, requested_retention_seconds
        )
        cutoff = query_builder.retention_cutoff(now(), retention)

        snapshot = MissionSnapshot(mission_id=mission_id, retention_seconds=retention)
        for current in await self.get_current_positions(mission_id):
            if current.timestamp >= cutoff:
                snapshot.positions[current.user_id] = TracePoint(
                    lon=current.location.lon, lat=current.location.lat, t=current.timestamp
                )

        cursor = (
            self._collection.find(query_builder.build_trace_query(mission_id, cutoff=cutoff))
            .sort([("user_id", 1), ("created_at", 1)])
            .limit(query_builder.snapshot_trace_limit(retention))
        )
        async for doc in cursor:
            position = Position.model_validate(doc)
            snapshot.traces.setdefault(position.user_id, []).append(
                TracePoint(lon=position.location.lon, lat=position.location.lat, t=position.created_at)
            )
        return snapshot

    async def enforce_retention(self, mission: Mission) -> int:
        """Purge positions older than the mission's retention window. Returns the deleted count."""
        cutoff = query_builder.retention_cutoff(now(), mission.trace_retention_seconds)
        result = await self._collection.delete_many(query_builder.build_retention_query(mission.id, cutoff))
        if result.deleted_count:
            logger.info("retention_enforced", mission_id=mission.id, deleted=result.deleted_count)
        return result.deleted_count

    async def enforce_all_retention(self) -> int:
        """Run enforce_retention over every mission, reloading retention policies first."""
        await self.core.services.mission.update_all_missions_cache()
        total = 0
        for mission in self.core.services.mission.get_all_missions():
            total += await self.enforce_retention(mission)
        return total

    async def delete_positions_by_mission(self, mission_id: UUID) -> int:
        """Delete all positions of a mission and return count of deleted positions."""
        await self._current.delete_many({"mission_id": mission_id})
        result = await self._collection.delete_many({"mission_id": mission_id})
        return result.deleted_count

    def _ensure_open(self, mission_id: UUID) -> Mission:
        mission = self.core.services.mission.get_mission(mission_id)
        if mission.is_closed:
            raise MissionClosedError(f"Mission '{mission_id}' is closed")
        return mission

    async def _set_current(self, position: Position) -> None:
        current = CurrentPosition(
            mission_id=position.mission_id,
            user_id=position.user_id,
            location=position.location,
            speed=position.speed,
            heading=position.heading,
            accuracy=position.accuracy,
            timestamp=position.created_at,
        )
        fields = current.to_mongo()
        current_id = fields.pop("_id")
        await self._current.update_one(
            {"mission_id": position.mission_id, "user_id": position.user_id},
            {"$set": fields, "$setOnInsert": {"_id": current_id}},
            upsert=True,
        )


def _require_ids(mission_id: UUID, user_id: str) -> None:
    if mission_id is None:
        raise ValidationError("Mission ID is required")
    if not user_id:
        raise ValidationError("User ID is required")


def _to_position(mission_id: UUID, user_id: str, fix: Fix, reference: datetime | None = None) -> Position:
    created_at = fix.timestamp or reference or now()
    return Position(
        mission_id=mission_id,
        user_id=user_id,
        location=GeoPoint.from_lon_lat(fix.lon, fix.lat),
        speed=fix.speed,
        heading=fix.heading,
        accuracy=fix.accuracy,
        created_at=created_at,
    )
