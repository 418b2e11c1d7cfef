"""
Fluent query building with read-through result caching.

Cache keys embed a per-resource namespace version held in the key-value
store; invalidating a resource bumps that version so older entries are no
longer reachable and age out on their TTL.
"""

from .builder import QueryBuilder
from .client import QueryCache
from .config import QueryCacheSettings, get_settings
from .descriptor import QueryDescriptor, RelationSpec, SortDirection, SortSpec, VirtualProjection
from .errors import (
    ConfigurationError,
    PreconditionError,
    QueryCacheError,
    QueryEngineError,
    StoreUnavailableError,
)
from .executor import CacheAsideExecutor, EngineQuery, Operation, QueryEngine
from .invalidation import InvalidationCoordinator
from .keys import CacheKeyDeriver, compute_digest
from .metrics import CacheMetrics
from .namespace import NamespaceVersionStore
from .resources import Resource
from .store import InMemoryStore, KeyValueStore, RedisStore

__all__ = [
    "CacheAsideExecutor",
    "CacheKeyDeriver",
    "CacheMetrics",
    "ConfigurationError",
    "EngineQuery",
    "InMemoryStore",
    "InvalidationCoordinator",
    "KeyValueStore",
    "NamespaceVersionStore",
    "Operation",
    "PreconditionError",
    "QueryBuilder",
    "QueryCache",
    "QueryCacheError",
    "QueryCacheSettings",
    "QueryDescriptor",
    "QueryEngine",
    "QueryEngineError",
    "RedisStore",
    "RelationSpec",
    "Resource",
    "SortDirection",
    "SortSpec",
    "StoreUnavailableError",
    "VirtualProjection",
    "compute_digest",
    "get_settings",
]
