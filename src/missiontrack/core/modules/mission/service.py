from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from missiontrack.core.core import Service
from missiontrack.core.modules.mission.models import (
    DEFAULT_TRACE_RETENTION_SECONDS,
    STATUS_TRANSITIONS,
    MapStyle,
    Mission,
    MissionStatus,
)
from missiontrack.errors import NotFoundError, ValidationError
from missiontrack.utils import now

logger = structlog.get_logger(__name__)


class MissionService(Service):
    """Mission registry with in-memory cache.

    Owns status, map style and retention policy. The position service
    consults get_status and get_retention_seconds before writes and reads.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("missions")
        self._missions: dict[UUID, Mission] = {}

    async def on_start(self) -> None:
        await self._collection.create_index([("created_by", 1)])
        await self._collection.create_index([("status", 1)])
        await self.update_all_missions_cache()
        logger.debug("mission_service_started", mission_count=len(self._missions))

    async def update_all_missions_cache(self) -> None:
        """Reload all missions cache from database."""
        missions = await Mission.list_cursor(self._collection.find())
        self._missions = {mission.id: mission for mission in missions}

    async def update_mission_cache(self, mission_id: UUID) -> Mission:
        """Reload a specific mission cache from database."""
        mission = await self._collection.find_one({"_id": mission_id})
        if mission is None:
            raise NotFoundError(f"Mission '{mission_id}' not found")
        self._missions[mission_id] = Mission.model_validate(mission)
        return self._missions[mission_id]

    def get_mission(self, mission_id: UUID) -> Mission:
        if mission_id not in self._missions:
            raise NotFoundError(f"Mission '{mission_id}' not found")
        return self._missions[mission_id]

    def has_mission(self, mission_id: UUID) -> bool:
        return mission_id in self._missions

    def get_all_missions(self) -> list[Mission]:
        return list(self._missions.values())

    def get_missions_by_creator(self, user_id: str) -> list[Mission]:
        """Get all missions created by the user, newest first."""
        missions = [m for m in self._missions.values() if m.created_by == user_id]
        return sorted(missions, key=lambda m: m.created_at, reverse=True)

    def get_status(self, mission_id: UUID) -> MissionStatus:
        return self.get_mission(mission_id).status

    def get_retention_seconds(self, mission_id: UUID) -> int:
        return self.get_mission(mission_id).trace_retention_seconds

    async def create_mission(
        self,
        title: str,
        created_by: str,
        map_style: MapStyle = MapStyle.STREETS,
        trace_retention_seconds: int = DEFAULT_TRACE_RETENTION_SECONDS,
    ) -> Mission:
        """Create a draft mission owned by created_by."""
        title = title.strip()
        if not title:
            raise ValidationError("Mission title is required")
        if not created_by:
            raise ValidationError("Mission creator is required")
        _validate_retention(trace_retention_seconds)

        mission = Mission(
            title=title, created_by=created_by, map_style=map_style, trace_retention_seconds=trace_retention_seconds
        )
        res = await self._collection.insert_one(mission.to_mongo())
        logger.info("mission_created", mission_id=mission.id, created_by=created_by)
        return await self.update_mission_cache(res.inserted_id)

    async def update_status(self, mission_id: UUID, status: MissionStatus) -> Mission:
        """Move a mission along draft -> active -> closed."""
        current = self.get_status(mission_id)
        if status == current:
            return self.get_mission(mission_id)
        if status not in STATUS_TRANSITIONS[current]:
            raise ValidationError(f"Cannot change mission status from '{current}' to '{status}'")

        mission = await self._update(mission_id, {"status": status})
        logger.info("mission_status_changed", mission_id=mission_id, old_status=current, new_status=status)
        return mission

    async def update_map_style(self, mission_id: UUID, map_style: MapStyle) -> Mission:
        return await self._update(mission_id, {"map_style": map_style})

    async def update_retention(self, mission_id: UUID, trace_retention_seconds: int) -> Mission:
        _validate_retention(trace_retention_seconds)
        return await self._update(mission_id, {"trace_retention_seconds": trace_retention_seconds})

    async def update_title(self, mission_id: UUID, title: str) -> Mission:
        title = title.strip()
        if not title:
            raise ValidationError("Mission title is required")
        return await self._update(mission_id, {"title": title})

    async def delete_mission(self, mission_id: UUID) -> None:
        """Delete mission metadata. Positions must be removed by the caller first."""
        self.get_mission(mission_id)
        await self._collection.delete_one({"_id": mission_id})
        del self._missions[mission_id]

    async def _update(self, mission_id: UUID, fields: dict[str, Any]) -> Mission:
        self.get_mission(mission_id)
        await self._collection.update_one({"_id": mission_id}, {"$set": {**fields, "updated_at": now()}})
        return await self.update_mission_cache(mission_id)


def _validate_retention(seconds: int) -> None:
    if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
        raise ValidationError("Trace retention must be a non-negative number of seconds")
