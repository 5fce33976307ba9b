from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from pymongo.asynchronous.database import AsyncDatabase

from missiontrack.config import Config
from missiontrack.core.core import Core
from missiontrack.core.modules.mission.models import MapStyle, Mission, MissionStatus, MissionView
from missiontrack.core.modules.position.models import Fix, MissionSnapshot, Position, TimeRange
from missiontrack.core.modules.position.query_builder import SpatialBounds
from missiontrack.core.modules.token.models import TokenPair, TokenPayload
from missiontrack.errors import AccessDeniedError


class App:
    """Facade for all application operations, verifies the access token before delegating to Core."""

    def __init__(self, config: Config, database: AsyncDatabase[dict[str, Any]] | None = None) -> None:
        self._core = Core(config, database)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    # === Tokens ===
    def issue_tokens(self, user_id: str) -> TokenPair:
        """Issue a token pair for a user already authenticated by an external provider."""
        return self._core.tokens.issue_pair(user_id)

    def refresh_tokens(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair."""
        return self._core.tokens.rotate(refresh_token)

    def authenticate(self, access_token: str) -> TokenPayload:
        """Verify an access token and return its claims."""
        return self._core.tokens.verify_access(access_token)

    # === Missions ===
    async def create_mission(
        self,
        access_token: str,
        title: str,
        map_style: MapStyle = MapStyle.STREETS,
        trace_retention_seconds: int | None = None,
    ) -> MissionView:
        """Create a draft mission owned by the current user."""
        payload = self.authenticate(access_token)
        kwargs: dict[str, Any] = {"map_style": map_style}
        if trace_retention_seconds is not None:
            kwargs["trace_retention_seconds"] = trace_retention_seconds
        mission = await self._core.services.mission.create_mission(title, payload.subject, **kwargs)
        return MissionView.from_domain(mission)

    async def get_mission(self, access_token: str, mission_id: UUID) -> MissionView:
        self.authenticate(access_token)
        return MissionView.from_domain(self._core.services.mission.get_mission(mission_id))

    async def get_my_missions(self, access_token: str) -> list[MissionView]:
        """Get missions created by the current user."""
        payload = self.authenticate(access_token)
        missions = self._core.services.mission.get_missions_by_creator(payload.subject)
        return [MissionView.from_domain(m) for m in missions]

    async def update_mission_status(self, access_token: str, mission_id: UUID, status: MissionStatus) -> MissionView:
        """Change mission status (creator only)."""
        self._ensure_creator(access_token, mission_id)
        mission = await self._core.services.mission.update_status(mission_id, status)
        return MissionView.from_domain(mission)

    async def update_mission_map_style(self, access_token: str, mission_id: UUID, map_style: MapStyle) -> MissionView:
        """Change the base map style (creator only)."""
        self._ensure_creator(access_token, mission_id)
        mission = await self._core.services.mission.update_map_style(mission_id, map_style)
        return MissionView.from_domain(mission)

    async def update_mission_retention(self, access_token: str, mission_id: UUID, seconds: int) -> MissionView:
        """Change how long position history is kept (creator only)."""
        self._ensure_creator(access_token, mission_id)
        mission = await self._core.services.mission.update_retention(mission_id, seconds)
        return MissionView.from_domain(mission)

    async def delete_mission(self, access_token: str, mission_id: UUID) -> None:
        """Delete a mission and all its positions (creator only)."""
        self._ensure_creator(access_token, mission_id)
        await self._core.services.position.delete_positions_by_mission(mission_id)
        await self._core.services.mission.delete_mission(mission_id)

    # === Positions ===
    async def record_position(self, access_token: str, mission_id: UUID, fix: Fix) -> Position:
        """Record a fix reported by the current user."""
        payload = self.authenticate(access_token)
        return await self._core.services.position.record(mission_id, payload.subject, fix)

    async def record_positions(self, access_token: str, mission_id: UUID, fixes: Sequence[Fix]) -> list[Position]:
        """Record a batch of buffered fixes reported by the current user."""
        payload = self.authenticate(access_token)
        return await self._core.services.position.record_bulk(mission_id, payload.subject, fixes)

    async def get_trace(
        self,
        access_token: str,
        mission_id: UUID,
        user_id: str | None = None,
        time_range: TimeRange | None = None,
        bounds: SpatialBounds | None = None,
    ) -> list[Position]:
        """Get positions of a mission, optionally for one user, time range or area."""
        self.authenticate(access_token)
        return await self._core.services.position.get_trace(
            mission_id, user_id, time_range=time_range, bounds=bounds
        )

    async def get_snapshot(
        self, access_token: str, mission_id: UUID, retention_seconds: int | None = None
    ) -> MissionSnapshot:
        """Get current positions and recent traces for map display."""
        self.authenticate(access_token)
        return await self._core.services.position.get_snapshot(mission_id, retention_seconds)

    # === Maintenance ===
    async def enforce_retention(self) -> int:
        """Purge expired positions of every mission. Invoked by the retention runner."""
        return await self._core.services.position.enforce_all_retention()

    # === Private helpers ===
    def _ensure_creator(self, access_token: str, mission_id: UUID) -> Mission:
        payload = self.authenticate(access_token)
        mission = self._core.services.mission.get_mission(mission_id)
        if mission.created_by != payload.subject:
            raise AccessDeniedError(f"Access denied: user '{payload.subject}' did not create mission '{mission_id}'")
        return mission
