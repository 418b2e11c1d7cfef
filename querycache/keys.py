"""
Cache key derivation.

A key is the SHA-256 of the canonical JSON of
{resource, namespace version, operation, query descriptor}. JSON objects are
serialized with sorted keys, so the key depends only on the descriptor's
final state and never on Python's per-process hash seed.
"""

import hashlib
import json

from .descriptor import QueryDescriptor
from .namespace import NamespaceVersionStore

DEFAULT_KEY_PREFIX = "qc:"


def compute_digest(resource_name: str, version: int, operation: str, descriptor: QueryDescriptor) -> str:
    key_data = {
        "resource": resource_name,
        "version": version,
        "operation": getattr(operation, "value", operation),
        "query": descriptor.canonical(),
    }
    payload = json.dumps(key_data, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(payload.encode("ascii")).hexdigest()


class CacheKeyDeriver:
    """Derives version-scoped cache keys for read queries."""

    def __init__(self, versions: NamespaceVersionStore, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.versions = versions
        self.key_prefix = key_prefix

    async def derive_key(self, resource_name: str, operation: str, descriptor: QueryDescriptor) -> str:
        version = await self.versions.get_version(resource_name)
        return f"{self.key_prefix}{compute_digest(resource_name, version, operation, descriptor)}"
