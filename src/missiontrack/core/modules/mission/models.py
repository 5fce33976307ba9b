"""Mission models: shared tracking sessions."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from missiontrack.core.db import MongoModel
from missiontrack.utils import now

DEFAULT_TRACE_RETENTION_SECONDS = 3600


class MissionStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class MapStyle(StrEnum):
    STREETS = "streets"
    SATELLITE = "satellite"


# Allowed status changes; CLOSED is terminal
STATUS_TRANSITIONS: dict[MissionStatus, frozenset[MissionStatus]] = {
    MissionStatus.DRAFT: frozenset({MissionStatus.ACTIVE, MissionStatus.CLOSED}),
    MissionStatus.ACTIVE: frozenset({MissionStatus.CLOSED}),
    MissionStatus.CLOSED: frozenset(),
}


class Mission(MongoModel):
    """Tracking session grouping participants and their positions.

    Indexed on created_by and status.
    """

    title: str
    created_by: str  # User ID of the creator
    status: MissionStatus = MissionStatus.DRAFT
    map_style: MapStyle = MapStyle.STREETS
    trace_retention_seconds: int = Field(default=DEFAULT_TRACE_RETENTION_SECONDS, ge=0)
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)

    @property
    def is_closed(self) -> bool:
        return self.status == MissionStatus.CLOSED


class MissionView(BaseModel):
    """Mission metadata (API representation)."""

    id: UUID = Field(..., description="Mission ID")
    title: str = Field(..., description="Mission title")
    created_by: str = Field(..., description="User ID of the creator")
    status: MissionStatus = Field(..., description="Lifecycle status")
    map_style: MapStyle = Field(..., description="Base map style")
    trace_retention_seconds: int = Field(..., description="How long position history is kept")

    @classmethod
    def from_domain(cls, mission: Mission) -> "MissionView":
        """Create view model from domain model."""
        return cls(
            id=mission.id,
            title=mission.title,
            created_by=mission.created_by,
            status=mission.status,
            map_style=mission.map_style,
            trace_retention_seconds=mission.trace_retention_seconds,
        )
