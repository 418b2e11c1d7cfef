"""
Key-value store interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..errors import StoreUnavailableError


class KeyValueStore(ABC):
    """Minimal async get/set/expire/increment contract."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None when the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Store a value without expiry."""

    @abstractmethod
    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Store a value that expires after ttl_seconds."""

    async def increment(self, key: str) -> int:
        """
        Increment an integer counter, treating an absent key as 0.

        Not atomic: concurrent callers can lose updates. Adapters backed by a
        store with an atomic increment override this.
        """
        raw = await self.get(key)
        current = _parse_int(key, raw) if raw is not None else 0
        new_value = current + 1
        await self.set(key, str(new_value).encode("ascii"))
        return new_value

    async def set_if_absent(self, key: str, value: bytes) -> bool:
        """
        Store value only if key is absent; return True when written.

        Not atomic: two concurrent callers may both write. Adapters backed by
        a store with SET NX semantics override this.
        """
        if await self.get(key) is not None:
            return False
        await self.set(key, value)
        return True

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        return True


def _parse_int(key: str, raw: bytes) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise StoreUnavailableError(
            "Stored counter is not an integer",
            details={"key": key, "value": repr(raw)},
        ) from exc
