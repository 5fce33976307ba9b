"""Tests for the App facade: token checks in front of mission and position operations."""

import pytest
import pytest_asyncio

from missiontrack.app import App
from missiontrack.core.modules.mission.models import MapStyle, MissionStatus
from missiontrack.core.modules.position.models import Fix
from missiontrack.errors import AccessDeniedError, AuthenticationError, InvalidSignatureError, MissionClosedError


@pytest_asyncio.fixture
async def app(config, fake_database):
    app = App(config, fake_database)
    async with app.lifespan():
        yield app


@pytest.fixture
def owner_token(app):
    return app.issue_tokens("user-owner").access_token


@pytest.fixture
def member_token(app):
    return app.issue_tokens("user-member").access_token


class TestTokens:
    @pytest.mark.asyncio
    async def test_authenticate(self, app):
        pair = app.issue_tokens("user-1")
        assert app.authenticate(pair.access_token).subject == "user-1"

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_an_access_token(self, app):
        pair = app.issue_tokens("user-1")
        with pytest.raises(InvalidSignatureError):
            app.authenticate(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_tokens(self, app):
        pair = app.issue_tokens("user-1")
        rotated = app.refresh_tokens(pair.refresh_token)
        assert app.authenticate(rotated.access_token).subject == "user-1"


class TestMissions:
    @pytest.mark.asyncio
    async def test_create_uses_token_subject(self, app, owner_token):
        view = await app.create_mission(owner_token, "Patrol", MapStyle.SATELLITE, 900)
        assert view.created_by == "user-owner"
        assert view.map_style == MapStyle.SATELLITE
        assert view.trace_retention_seconds == 900

    @pytest.mark.asyncio
    async def test_create_requires_valid_token(self, app):
        with pytest.raises(AuthenticationError):
            await app.create_mission("bogus", "Patrol")

    @pytest.mark.asyncio
    async def test_only_creator_updates(self, app, owner_token, member_token):
        view = await app.create_mission(owner_token, "Patrol")
        with pytest.raises(AccessDeniedError):
            await app.update_mission_status(member_token, view.id, MissionStatus.ACTIVE)
        updated = await app.update_mission_status(owner_token, view.id, MissionStatus.ACTIVE)
        assert updated.status == MissionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_my_missions(self, app, owner_token, member_token):
        await app.create_mission(owner_token, "Patrol")
        assert len(await app.get_my_missions(owner_token)) == 1
        assert await app.get_my_missions(member_token) == []


class TestPositions:
    @pytest.mark.asyncio
    async def test_record_and_trace(self, app, owner_token, member_token):
        mission_id = (await app.create_mission(owner_token, "Patrol")).id
        position = await app.record_position(member_token, mission_id, Fix(lon=2.3522, lat=48.8566))
        assert position.user_id == "user-member"

        trace = await app.get_trace(owner_token, mission_id, user_id="user-member")
        assert [p.id for p in trace] == [position.id]

        snapshot = await app.get_snapshot(owner_token, mission_id)
        assert "user-member" in snapshot.positions

    @pytest.mark.asyncio
    async def test_closed_mission(self, app, owner_token, member_token):
        mission_id = (await app.create_mission(owner_token, "Patrol")).id
        await app.update_mission_status(owner_token, mission_id, MissionStatus.CLOSED)
        with pytest.raises(MissionClosedError):
            await app.record_position(member_token, mission_id, Fix(lon=0, lat=0))

    @pytest.mark.asyncio
    async def test_record_requires_access_token(self, app, owner_token):
        mission_id = (await app.create_mission(owner_token, "Patrol")).id
        refresh = app.issue_tokens("user-member").refresh_token
        with pytest.raises(AuthenticationError):
            await app.record_position(refresh, mission_id, Fix(lon=0, lat=0))

    @pytest.mark.asyncio
    async def test_delete_mission_removes_positions(self, app, owner_token, fake_database):
        mission_id = (await app.create_mission(owner_token, "Patrol")).id
        await app.record_positions(owner_token, mission_id, [Fix(lon=0, lat=0)])
        await app.delete_mission(owner_token, mission_id)
        assert fake_database.get_collection("positions").docs == []
        assert fake_database.get_collection("missions").docs == []
