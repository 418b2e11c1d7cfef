"""
Shared fixtures for querycache tests.
"""

from typing import Any, Dict, List, Optional

import pytest

from querycache import InMemoryStore, QueryCache, QueryCacheSettings, Resource
from querycache.errors import StoreUnavailableError
from querycache.executor import EngineQuery


USER_ROWS = [
    {"id": 1, "name": "Alice", "status": "active"},
    {"id": 2, "name": "Bob", "status": "active"},
]


class RecordingEngine:
    """Query engine stub that returns canned rows and records every call."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.rows = USER_ROWS if rows is None else rows
        self.error = error
        self.calls: List[tuple] = []

    async def fetch_many(self, resource: Resource, query: EngineQuery) -> List[Dict[str, Any]]:
        self.calls.append(("fetch_many", resource.name, query))
        if self.error:
            raise self.error
        return [dict(row) for row in self.rows]

    async def fetch_one(self, resource: Resource, query: EngineQuery) -> List[Dict[str, Any]]:
        self.calls.append(("fetch_one", resource.name, query))
        if self.error:
            raise self.error
        return [dict(row) for row in self.rows[:1]]


class FlakyStore(InMemoryStore):
    """In-memory store whose individual operations can be made to fail."""

    def __init__(self):
        super().__init__()
        self.failing: set = set()
        self.fail_keys: set = set()

    def _check(self, operation: str, key: str):
        if operation in self.failing or key in self.fail_keys:
            raise StoreUnavailableError("connection refused", details={"operation": operation, "key": key})

    async def get(self, key):
        self._check("get", key)
        return await super().get(key)

    async def set(self, key, value):
        self._check("set", key)
        await super().set(key, value)

    async def set_with_expiry(self, key, value, ttl_seconds):
        self._check("set_with_expiry", key)
        await super().set_with_expiry(key, value, ttl_seconds)

    async def increment(self, key):
        self._check("increment", key)
        return await super().increment(key)

    async def set_if_absent(self, key, value):
        self._check("set_if_absent", key)
        return await super().set_if_absent(key, value)


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return QueryCacheSettings(_env_file=None)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def engine():
    return RecordingEngine()


@pytest.fixture
def user_resource():
    return Resource(
        name="User",
        table="users",
        virtual_fields={
            "totalViews": "SELECT COUNT(*) FROM views v WHERE v.user_id = users.id",
            "totalPosts": "SELECT COUNT(*) FROM posts p WHERE p.user_id = users.id",
        },
    )


@pytest.fixture
def cache(store, engine, settings):
    return QueryCache(store, engine, settings)
