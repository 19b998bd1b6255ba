"""In-memory coordination store for tests and single-process runs."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

from .base import BaseCoordinationStore


class InMemoryCoordinationStore(BaseCoordinationStore):
    """Dictionary-backed store with lazy TTL expiry.

    ``clock`` returns seconds and defaults to :func:`time.monotonic`; tests
    substitute a manual clock to simulate expiry.
    """

    def __init__(
        self, prefix: str = "mentionops", clock: Optional[Callable[[], float]] = None
    ) -> None:
        self.prefix = prefix
        self._clock = clock or time.monotonic
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    def _live(self, full_key: str) -> Optional[str]:
        entry = self._entries.get(full_key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[full_key]
            return None
        return value

    def _expiry(self, ttl_ms: int) -> float:
        return self._clock() + ttl_ms / 1000

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        full_key = self._key(key)
        async with self._lock:
            if self._live(full_key) is not None:
                return False
            self._entries[full_key] = (value, self._expiry(ttl_ms))
            return True

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._live(self._key(key))

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(self._key(key), None)

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        full_key = self._key(key)
        async with self._lock:
            if self._live(full_key) != expected:
                return False
            del self._entries[full_key]
            return True

    async def expire_if_equals(self, key: str, expected: str, ttl_ms: int) -> bool:
        full_key = self._key(key)
        async with self._lock:
            if self._live(full_key) != expected:
                return False
            self._entries[full_key] = (expected, self._expiry(ttl_ms))
            return True
