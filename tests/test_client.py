"""
End-to-end tests of QueryCache with an in-memory store.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from structlog.testing import capture_logs

from querycache import QueryCache, QueryCacheSettings, RedisStore, Resource
from querycache.errors import ConfigurationError, PreconditionError, QueryEngineError

from tests.conftest import USER_ROWS, RecordingEngine


class TestQueryCache:
    """Test cases for QueryCache."""

    def test_requires_store(self, engine, settings):
        with pytest.raises(PreconditionError):
            QueryCache(None, engine, settings)

    def test_from_settings_uses_redis(self, engine):
        settings = QueryCacheSettings(_env_file=None, redis_url="redis://cache:6379/2", socket_timeout=1.5)
        cache = QueryCache.from_settings(engine, settings)

        assert isinstance(cache.store, RedisStore)
        assert cache.store.redis_url == "redis://cache:6379/2"
        assert cache.store.socket_timeout == 1.5

    def test_prefixes_come_from_settings(self, store, engine):
        settings = QueryCacheSettings(_env_file=None, namespace_prefix="app:ns:", key_prefix="app:qc:")
        cache = QueryCache(store, engine, settings)

        assert cache.versions.namespace_prefix == "app:ns:"
        assert cache.executor.keys.key_prefix == "app:qc:"

    @pytest.mark.asyncio
    async def test_start_and_stop_delegate(self, engine, settings):
        store = MagicMock()
        store.start = AsyncMock()
        store.stop = AsyncMock()
        engine.start = AsyncMock()
        engine.stop = AsyncMock()
        cache = QueryCache(store, engine, settings)

        await cache.start()
        await cache.stop()

        store.start.assert_awaited_once()
        store.stop.assert_awaited_once()
        engine.start.assert_awaited_once()
        engine.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalidate_only_client_without_engine(self, store, settings):
        cache = QueryCache(store, None, settings)

        assert await cache.invalidate("User") == {"User": 1}
        assert await cache.get_version("User") == 1


class TestCachingScenarios:
    """Scenario tests for read-through caching and invalidation."""

    def _users_query(self, cache, user_resource):
        return (
            cache.query(user_resource)
            .select(["id", "name"])
            .filter({"status": "active"})
            .cache_for(60)
        )

    @pytest.mark.asyncio
    async def test_cache_invalidate_cycle(self, cache, engine, user_resource):
        """Miss, hit, invalidate, miss again."""
        assert await cache.get_version("User") == 1

        first = await self._users_query(cache, user_resource).fetch_many()
        assert first == USER_ROWS
        assert len(engine.calls) == 1

        second = await self._users_query(cache, user_resource).fetch_many()
        assert second == first
        assert len(engine.calls) == 1

        await cache.invalidate("User", [])
        assert await cache.get_version("User") == 2

        third = await self._users_query(cache, user_resource).fetch_many()
        assert third == USER_ROWS
        assert len(engine.calls) == 2

    @pytest.mark.asyncio
    async def test_same_builder_reexecuted_hits(self, cache, engine, user_resource):
        qb = self._users_query(cache, user_resource)

        assert await qb.fetch_many() == await qb.fetch_many()
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_dependent_invalidation(self, cache, engine):
        post = Resource("Post")

        await cache.query(post).cache_for(60).fetch_many()
        await cache.invalidate("User", ["Post"])
        await cache.query(post).cache_for(60).fetch_many()

        assert len(engine.calls) == 2

    @pytest.mark.asyncio
    async def test_uncached_query_always_hits_engine(self, cache, engine, store, user_resource):
        await cache.query(user_resource).fetch_many()
        await cache.query(user_resource).fetch_many()

        assert len(engine.calls) == 2
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_fetch_one(self, cache, engine, user_resource):
        row = await cache.query(user_resource).filter({"id": 1}).cache_for(60).fetch_one()
        again = await cache.query(user_resource).filter({"id": 1}).cache_for(60).fetch_one()

        assert row == again == USER_ROWS[0]
        assert [call[0] for call in engine.calls] == ["fetch_one"]

    @pytest.mark.asyncio
    async def test_fetch_one_without_match(self, store, settings, user_resource):
        cache = QueryCache(store, RecordingEngine(rows=[]), settings)
        assert await cache.query(user_resource).fetch_one() is None

    @pytest.mark.asyncio
    async def test_fetch_overrides(self, cache, engine, user_resource):
        await cache.query(user_resource).fetch_many(limit=1, sort=[("id", "DESC")])

        query = engine.calls[0][2]
        assert query.limit == 1
        assert query.sort[0].field == "id"

    @pytest.mark.asyncio
    async def test_unknown_override_rejected_before_io(self, cache, engine, user_resource):
        with pytest.raises(ConfigurationError):
            await cache.query(user_resource).fetch_many(where={"id": 1})
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_store_outage_still_returns_rows(self, cache, store, engine, user_resource):
        store.failing = {"get", "set", "set_with_expiry", "increment", "set_if_absent"}

        rows = await self._users_query(cache, user_resource).fetch_many()

        assert rows == USER_ROWS
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_engine_error_not_cached(self, store, settings, user_resource):
        engine = RecordingEngine(error=QueryEngineError("timeout"))
        cache = QueryCache(store, engine, settings)

        with pytest.raises(QueryEngineError):
            await self._users_query(cache, user_resource).fetch_many()

        engine.error = None
        assert await self._users_query(cache, user_resource).fetch_many() == USER_ROWS
        assert len(engine.calls) == 2

    @pytest.mark.asyncio
    async def test_virtual_fields_reach_engine(self, cache, engine, user_resource):
        await cache.query(user_resource).select(["id", "name", "totalViews"]).fetch_many()

        query = engine.calls[0][2]
        assert query.projected_fields == ("id", "name")
        assert query.virtual_fields == {"totalViews": user_resource.virtual_fields["totalViews"]}

    @pytest.mark.asyncio
    async def test_global_logging_from_settings(self, store, engine, user_resource):
        settings = QueryCacheSettings(_env_file=None, logging_enabled=True)
        cache = QueryCache(store, engine, settings)

        with capture_logs() as logs:
            await self._users_query(cache, user_resource).fetch_many()

        assert [log["event"] for log in logs if log["log_level"] == "info"] == ["Cache miss", "Cache write"]
