"""
Cache-aside execution of read queries.

check cache -> execute on miss -> populate cache. The store is an
optimization only: any store failure degrades to a direct query engine call,
while query engine failures always reach the caller untouched.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from .codec import decode_rows, encode_rows
from .descriptor import QueryDescriptor, RelationSpec, SortSpec
from .errors import ConfigurationError, PreconditionError, StoreUnavailableError
from .keys import DEFAULT_KEY_PREFIX, CacheKeyDeriver
from .logging import bind_query_context, get_logger
from .metrics import CacheMetrics
from .namespace import DEFAULT_NAMESPACE_PREFIX, NamespaceVersionStore
from .resources import Resource
from .store.base import KeyValueStore

Row = Dict[str, Any]


class Operation(str, Enum):
    """Read operation kinds."""
    FETCH_MANY = "fetch_many"
    FETCH_ONE = "fetch_one"


@dataclass(frozen=True)
class EngineQuery:
    """What the query engine receives for one read."""
    filters: Mapping[str, Any] = field(default_factory=dict)
    projected_fields: Optional[Tuple[str, ...]] = None
    virtual_fields: Mapping[str, Any] = field(default_factory=dict)
    relations: Tuple[RelationSpec, ...] = ()
    sort: Tuple[SortSpec, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None

    @classmethod
    def from_descriptor(cls, descriptor: QueryDescriptor) -> "EngineQuery":
        return cls(
            filters=dict(descriptor.filters),
            projected_fields=descriptor.projected_fields,
            virtual_fields=descriptor.virtual_fields,
            relations=descriptor.relations,
            sort=descriptor.sort,
            limit=descriptor.limit,
            offset=descriptor.offset,
        )


class QueryEngine(Protocol):
    """The relational executor behind the cache; both calls return ordered rows."""

    async def fetch_many(self, resource: Resource, query: EngineQuery) -> List[Row]:
        ...

    async def fetch_one(self, resource: Resource, query: EngineQuery) -> List[Row]:
        ...


class CacheAsideExecutor:
    """Runs reads against the query engine, caching results when a TTL is given."""

    def __init__(
        self,
        store: Optional[KeyValueStore],
        engine: Optional[QueryEngine],
        *,
        namespace_prefix: str = DEFAULT_NAMESPACE_PREFIX,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        logging_enabled: bool = False,
        metrics: Optional[CacheMetrics] = None,
    ):
        if store is None:
            raise PreconditionError("Key-value store not configured")

        self.store = store
        self.engine = engine
        self.versions = NamespaceVersionStore(store, namespace_prefix)
        self.keys = CacheKeyDeriver(self.versions, key_prefix)
        self.logging_enabled = logging_enabled
        self.metrics = metrics
        self.logger = get_logger("querycache.executor")

    async def execute_read(
        self,
        operation: Operation,
        resource: Resource,
        descriptor: QueryDescriptor,
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        ttl: Optional[int] = None,
        log: Optional[bool] = None,
    ) -> List[Row]:
        """
        Execute a read, going through the cache when ttl is set.

        A cache hit is returned as stored, without touching the query engine.
        Freshness comes only from the namespace version embedded in the key.

        Args:
            operation: Operation.FETCH_MANY or Operation.FETCH_ONE
            resource: Resource being queried
            descriptor: Query shape; overrides replace its top-level fields
            overrides: Per-execution replacements, e.g. {"limit": 5}
            ttl: Cache lifetime in seconds; None bypasses the cache entirely
            log: Per-call logging flag; None defers to the global flag

        Returns:
            Ordered list of rows (at most one for FETCH_ONE)
        """
        try:
            operation = Operation(operation)
        except ValueError as e:
            raise ConfigurationError("Unknown read operation", details={"operation": operation}) from e
        query = descriptor.merged(overrides)

        if ttl is None:
            return await self._run_engine(operation, resource, query)
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl < 1:
            raise ConfigurationError("ttl must be a positive integer", details={"ttl": ttl})

        should_log = self.logging_enabled if log is None else log

        with bind_query_context():
            try:
                key = await self.keys.derive_key(resource.name, operation.value, query)
            except StoreUnavailableError as e:
                self._store_failed("derive_key", resource, e)
                return await self._run_engine(operation, resource, query)

            cached = await self._read(key, resource)
            if cached is not None:
                if should_log:
                    self.logger.info("Cache hit", resource=resource.name, key=key, operation=operation.value)
                if self.metrics:
                    self.metrics.record_hit(resource.name)
                return cached

            if should_log:
                self.logger.info("Cache miss", resource=resource.name, key=key, operation=operation.value)
            if self.metrics:
                self.metrics.record_miss(resource.name)

            rows = await self._run_engine(operation, resource, query)
            try:
                payload = encode_rows(rows)
            except (TypeError, ValueError) as e:
                self.logger.warning("Result not serializable, skipping cache write", resource=resource.name, error=str(e))
                return rows

            await self._write(key, payload, ttl, resource, should_log)
            # hand back what a later hit will return
            return decode_rows(payload)

    async def _run_engine(self, operation: Operation, resource: Resource, query: QueryDescriptor) -> List[Row]:
        if self.engine is None:
            raise PreconditionError("Query engine not configured")
        engine_query = EngineQuery.from_descriptor(query)
        call = self.engine.fetch_one if operation is Operation.FETCH_ONE else self.engine.fetch_many

        if self.metrics:
            with self.metrics.measure_engine(resource.name, operation.value):
                result = await call(resource, engine_query)
        else:
            result = await call(resource, engine_query)

        return [] if result is None else list(result)

    async def _read(self, key: str, resource: Resource) -> Optional[List[Row]]:
        """Return cached rows, or None on miss, store failure or a corrupt entry."""
        try:
            raw = await self.store.get(key)
        except StoreUnavailableError as e:
            self._store_failed("get", resource, e)
            return None

        if raw is None:
            return None

        try:
            rows = decode_rows(raw)
        except (TypeError, ValueError) as e:
            self.logger.warning("Discarding undecodable cache entry", resource=resource.name, key=key, error=str(e))
            return None
        if not isinstance(rows, list):
            self.logger.warning("Discarding malformed cache entry", resource=resource.name, key=key)
            return None
        return rows

    async def _write(self, key: str, payload: bytes, ttl: int, resource: Resource, should_log: bool) -> None:
        """Populate the cache; failures are reported and swallowed."""
        try:
            await self.store.set_with_expiry(key, payload, ttl)
        except StoreUnavailableError as e:
            self._store_failed("set_with_expiry", resource, e)
            return

        if should_log:
            self.logger.info("Cache write", resource=resource.name, key=key, ttl=ttl)
        if self.metrics:
            self.metrics.record_write(resource.name)

    def _store_failed(self, operation: str, resource: Resource, error: StoreUnavailableError) -> None:
        self.logger.warning(
            "Cache store unavailable, degrading to direct query",
            resource=resource.name,
            operation=operation,
            error=error.message,
        )
        if self.metrics:
            self.metrics.record_store_error(operation)
