"""
Per-resource namespace versions for O(1) cache invalidation.

Every cache key embeds the version of its resource at the time the key was
derived. Bumping the version moves the resource to a fresh key space: old
entries are never looked up again and expire on their own TTL.

Version key format: {namespace_prefix}{resource_name}, e.g. "ns:User".
Values are stored as decimal ASCII.
"""

from typing import Optional

from .errors import ConfigurationError, StoreUnavailableError
from .logging import get_logger
from .store.base import KeyValueStore

DEFAULT_NAMESPACE_PREFIX = "ns:"


class NamespaceVersionStore:
    """
    Reads and bumps namespace versions held in a key-value store.

    Initialization of an unseen resource goes through the store's
    set_if_absent. With RedisStore that is SET NX and concurrent first
    readers agree on version 1 without a race. Stores that lack an atomic
    set-if-absent fall back to get-then-set; two racers may then both write
    version 1, which is harmless because they write the same value.
    """

    def __init__(self, store: KeyValueStore, namespace_prefix: str = DEFAULT_NAMESPACE_PREFIX):
        self.store = store
        self.namespace_prefix = namespace_prefix
        self.logger = get_logger("querycache.namespace")

    def version_key(self, resource_name: str) -> str:
        self._validate_resource_name(resource_name)
        return f"{self.namespace_prefix}{resource_name}"

    async def get_version(self, resource_name: str) -> int:
        """
        Get the current version for a resource, initializing it to 1.

        Raises:
            ConfigurationError: If resource_name is empty or not a string
            StoreUnavailableError: If the store fails or holds a non-integer
        """
        key = self.version_key(resource_name)

        raw = await self.store.get(key)
        if raw is None:
            created = await self.store.set_if_absent(key, b"1")
            # Another reader may have initialized (or bumped) it first
            raw = await self.store.get(key)
            if raw is None:
                raw = b"1"
                await self.store.set(key, raw)
            self.logger.debug(
                "Namespace version initialized",
                resource=resource_name,
                version=self._parse(key, raw),
                created=created,
            )

        return self._parse(key, raw)

    async def bump_version(self, resource_name: str) -> int:
        """
        Increment the version for a resource and return the new value.

        An absent version counts as 0, so the first bump of an unseen
        resource yields 1.
        """
        key = self.version_key(resource_name)
        new_version = await self.store.increment(key)
        self.logger.debug("Namespace version bumped", resource=resource_name, version=new_version)
        return new_version

    @staticmethod
    def _parse(key: str, raw: Optional[bytes]) -> int:
        try:
            version = int(raw)
        except (TypeError, ValueError) as exc:
            raise StoreUnavailableError(
                "Namespace version is not an integer",
                details={"key": key, "value": repr(raw)},
            ) from exc
        return version

    @staticmethod
    def _validate_resource_name(resource_name: str) -> None:
        if not isinstance(resource_name, str):
            raise ConfigurationError(
                f"resource_name must be a string, got {type(resource_name).__name__}"
            )
        if not resource_name:
            raise ConfigurationError("resource_name cannot be empty")
