"""
QueryCache: the explicitly constructed entry point.

One client bundles a key-value store, a query engine, settings and metrics.
Builders receive the client at construction, so several independent
configurations can coexist in one process.
"""

from typing import Dict, Iterable, Optional

from .builder import QueryBuilder
from .config import QueryCacheSettings, get_settings
from .errors import PreconditionError
from .executor import CacheAsideExecutor, QueryEngine
from .invalidation import InvalidationCoordinator
from .logging import get_logger
from .metrics import CacheMetrics
from .resources import Resource
from .store.base import KeyValueStore
from .store.redis_store import RedisStore


class QueryCache:
    """Factory for cached query builders and the invalidation entry point."""

    def __init__(
        self,
        store: Optional[KeyValueStore],
        engine: Optional[QueryEngine],
        settings: Optional[QueryCacheSettings] = None,
        *,
        metrics: Optional[CacheMetrics] = None,
    ):
        if store is None:
            raise PreconditionError("Key-value store not set. Pass a store to QueryCache().")

        self.settings = settings or get_settings()
        self.store = store
        self.engine = engine
        self.metrics = metrics
        self.logger = get_logger("querycache.client")

        self.executor = CacheAsideExecutor(
            store,
            engine,
            namespace_prefix=self.settings.namespace_prefix,
            key_prefix=self.settings.key_prefix,
            logging_enabled=self.settings.logging_enabled,
            metrics=metrics,
        )
        self.versions = self.executor.versions
        self.invalidator = InvalidationCoordinator(
            self.versions,
            logging_enabled=self.settings.logging_enabled,
            metrics=metrics,
        )

    @classmethod
    def from_settings(
        cls,
        engine: QueryEngine,
        settings: Optional[QueryCacheSettings] = None,
        *,
        metrics: Optional[CacheMetrics] = None,
    ) -> "QueryCache":
        """Build a client backed by Redis at settings.redis_url."""
        settings = settings or get_settings()
        store = RedisStore(settings.redis_url, socket_timeout=settings.socket_timeout)
        return cls(store, engine, settings, metrics=metrics)

    async def start(self):
        """Start the store and engine if they have a lifecycle."""
        for component in (self.store, self.engine):
            start = getattr(component, "start", None)
            if start is not None:
                await start()
        self.logger.info("Query cache started")

    async def stop(self):
        """Stop the engine and store if they have a lifecycle."""
        for component in (self.engine, self.store):
            stop = getattr(component, "stop", None)
            if stop is not None:
                await stop()
        self.logger.info("Query cache stopped")

    def query(self, resource: Resource) -> QueryBuilder:
        """Start a new query against resource."""
        return QueryBuilder(resource, self)

    async def invalidate(
        self,
        resource_name: str,
        dependents: Iterable[str] = (),
        log: Optional[bool] = None,
    ) -> Dict[str, int]:
        """Invalidate every cached query of resource_name and its dependents."""
        return await self.invalidator.invalidate(resource_name, dependents, log=log)

    async def get_version(self, resource_name: str) -> int:
        return await self.versions.get_version(resource_name)
