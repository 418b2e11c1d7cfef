"""
In-process key-value store.

Used by tests and single-process deployments. Entries written with an expiry
are dropped lazily on the next read after they expire.
"""

import asyncio
import time
from typing import Dict, Optional, Tuple

from .base import KeyValueStore, _parse_int


class InMemoryStore(KeyValueStore):
    """Dictionary-backed store with atomic increment and set-if-absent."""

    def __init__(self):
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            return self._get_unlocked(key)

    async def set(self, key: str, value: bytes) -> None:
        async with self._lock:
            self._data[key] = (value, None)

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        async with self._lock:
            self._data[key] = (value, time.monotonic() + ttl_seconds)

    async def increment(self, key: str) -> int:
        async with self._lock:
            raw = self._get_unlocked(key)
            new_value = (_parse_int(key, raw) if raw is not None else 0) + 1
            self._data[key] = (str(new_value).encode("ascii"), None)
            return new_value

    async def set_if_absent(self, key: str, value: bytes) -> bool:
        async with self._lock:
            if self._get_unlocked(key) is not None:
                return False
            self._data[key] = (value, None)
            return True

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until key expires, or None for no expiry or absent key."""
        entry = self._data.get(key)
        if entry is None or entry[1] is None:
            return None
        return max(0.0, entry[1] - time.monotonic())

    def keys(self) -> list:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()

    def _get_unlocked(self, key: str) -> Optional[bytes]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return value
