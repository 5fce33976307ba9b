"""Shared pytest fixtures and an in-memory stand-in for async MongoDB collections."""

import copy
import math
from collections.abc import AsyncGenerator
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from missiontrack.config import Config
from missiontrack.core.core import Core
from missiontrack.core.modules.mission.models import MissionStatus
from missiontrack.core.modules.token.service import TokenSecrets, TokenService

ACCESS_SECRET = "test-access-secret-0123456789abcdef"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"


def _haversine_radians(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * math.asin(math.sqrt(a))


def _geo_within(value: Any, area: dict[str, Any]) -> bool:
    if "$centerSphere" not in area:
        raise NotImplementedError(list(area))
    lon, lat = value["coordinates"]
    (clon, clat), radius = area["$centerSphere"]
    return _haversine_radians(lon, lat, clon, clat) <= radius


def _matches_condition(value: Any, condition: Any) -> bool:
    if not (isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition)):
        return value == condition
    for op, arg in condition.items():
        if op == "$gte" and not (value is not None and value >= arg):
            return False
        if op == "$gt" and not (value is not None and value > arg):
            return False
        if op == "$lte" and not (value is not None and value <= arg):
            return False
        if op == "$lt" and not (value is not None and value < arg):
            return False
        if op == "$in" and value not in arg:
            return False
        if op == "$ne" and value == arg:
            return False
        if op == "$geoWithin" and not _geo_within(value, arg):
            return False
        if op not in {"$gte", "$gt", "$lte", "$lt", "$in", "$ne", "$geoWithin"}:
            raise NotImplementedError(op)
    return True


def _resolve(doc: dict[str, Any], path: str) -> Any:
    """Follow a dotted path; numeric parts index into arrays."""
    value: Any = doc
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list | tuple) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def matches(doc: dict[str, Any], query: dict[str, Any] | None) -> bool:
    return all(_matches_condition(_resolve(doc, key), cond) for key, cond in (query or {}).items())


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self._docs = docs
        self._sort: list[tuple[str, int]] = []
        self._limit: int | None = None
        self._iter: Any = None
        self.closed = False

    def sort(self, key: str | list[tuple[str, int]], direction: int = 1) -> "FakeCursor":
        self._sort.extend(key if isinstance(key, list) else [(key, direction)])
        return self

    def limit(self, limit: int) -> "FakeCursor":
        self._limit = limit
        return self

    def _results(self) -> list[dict[str, Any]]:
        docs = list(self._docs)
        for key, direction in reversed(self._sort):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        if self._limit:
            docs = docs[: self._limit]
        return [copy.deepcopy(d) for d in docs]

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        return self._results()

    def __aiter__(self) -> "FakeCursor":
        self._iter = iter(self._results())
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration from None

    async def close(self) -> None:
        self.closed = True


class FakeCollection:
    """Subset of AsyncCollection used by the services."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.docs: list[dict[str, Any]] = []
        self.indexes: list[tuple[list[tuple[str, Any]], dict[str, Any]]] = []

    async def create_index(self, keys: list[tuple[str, Any]], **kwargs: Any) -> str:
        self.indexes.append((keys, kwargs))
        return "_".join(f"{k}_{v}" for k, v in keys)

    async def insert_one(self, doc: dict[str, Any]) -> SimpleNamespace:
        if any(d["_id"] == doc["_id"] for d in self.docs):
            raise ValueError("duplicate _id")
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def insert_many(self, docs: list[dict[str, Any]], ordered: bool = True) -> SimpleNamespace:
        for doc in docs:
            await self.insert_one(doc)
        return SimpleNamespace(inserted_ids=[d["_id"] for d in docs])

    def find(self, query: dict[str, Any] | None = None) -> FakeCursor:
        return FakeCursor([d for d in self.docs if matches(d, query)])

    async def find_one(self, query: dict[str, Any] | None = None) -> dict[str, Any] | None:
        doc = next((d for d in self.docs if matches(d, query)), None)
        return copy.deepcopy(doc)

    async def count_documents(self, query: dict[str, Any]) -> int:
        return sum(1 for d in self.docs if matches(d, query))

    async def update_one(self, query: dict[str, Any], update: dict[str, Any], upsert: bool = False) -> SimpleNamespace:
        doc = next((d for d in self.docs if matches(d, query)), None)
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, upserted_id=None)
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(copy.deepcopy(update.get("$setOnInsert", {})))
            doc.update(copy.deepcopy(update.get("$set", {})))
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, upserted_id=doc["_id"])
        doc.update(copy.deepcopy(update.get("$set", {})))
        return SimpleNamespace(matched_count=1, upserted_id=None)

    async def delete_one(self, query: dict[str, Any]) -> SimpleNamespace:
        for i, d in enumerate(self.docs):
            if matches(d, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query: dict[str, Any]) -> SimpleNamespace:
        kept = [d for d in self.docs if not matches(d, query)]
        deleted = len(self.docs) - len(kept)
        self.docs = kept
        return SimpleNamespace(deleted_count=deleted)


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}

    def get_collection(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection(name))


@pytest.fixture
def config() -> Config:
    return Config(
        jwt_access_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
        database_url="mongodb://localhost:27017/missiontrack_test",
        _env_file=None,
    )


@pytest.fixture
def token_secrets() -> TokenSecrets:
    return TokenSecrets(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def token_service(token_secrets) -> TokenService:
    return TokenService(token_secrets)


@pytest.fixture
def fake_database() -> FakeDatabase:
    return FakeDatabase()


@pytest_asyncio.fixture
async def core(config, fake_database) -> AsyncGenerator[Core]:
    """Started Core backed by the in-memory database."""
    core = Core(config, fake_database)
    async with core.lifespan():
        yield core


@pytest_asyncio.fixture
async def mission(core):
    """Active mission with default retention."""
    mission = await core.services.mission.create_mission("Search sector B", "user-owner")
    return await core.services.mission.update_status(mission.id, MissionStatus.ACTIVE)
