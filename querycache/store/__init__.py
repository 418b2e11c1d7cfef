"""
Key-value store adapters.

Both cache entries and namespace version counters live in a store. Every
adapter raises StoreUnavailableError for connectivity problems so that the
executor can degrade to direct query execution.
"""

from .base import KeyValueStore
from .memory import InMemoryStore
from .redis_store import RedisStore

__all__ = ["KeyValueStore", "InMemoryStore", "RedisStore"]
