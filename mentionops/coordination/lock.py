"""Lease-based distributed mutual exclusion."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from ..utils import retry
from .base import BaseCoordinationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LOCK_TTL_MS = 30_000
DEFAULT_RETRY_INTERVAL_MS = 200
DEFAULT_MAX_ATTEMPTS = 20
DEFAULT_GROWTH = 1.5


def thread_scope(tenant_id: str, thread_id: str) -> str:
    return f"thread:{tenant_id}:{thread_id}"


def record_scope(object_type: str, record_id: str) -> str:
    return f"record:{object_type}:{record_id}"


@dataclass
class LockResult(Generic[T]):
    """Outcome of :meth:`DistributedLock.with_exclusive`."""

    ok: bool
    value: Optional[T] = None


class Lease:
    """A held lock, identified by the random token written at acquisition."""

    def __init__(
        self, store: BaseCoordinationStore, key: str, token: str, ttl_ms: int
    ) -> None:
        self._store = store
        self.key = key
        self.token = token
        self.ttl_ms = ttl_ms

    async def renew(self, ttl_ms: Optional[int] = None) -> bool:
        """Extend the lease; ``False`` once another holder owns the key."""
        return await self._store.expire_if_equals(
            self.key, self.token, ttl_ms or self.ttl_ms
        )

    async def release(self) -> bool:
        """Delete the lease only if this holder's token is still stored."""
        released = await self._store.delete_if_equals(self.key, self.token)
        if not released:
            logger.warning(f"Lease {self.key} expired before release; left untouched")
        return released


class DistributedLock:
    """Serialize work on a resource key across independent workers."""

    def __init__(
        self,
        store: BaseCoordinationStore,
        ttl_ms: int = DEFAULT_LOCK_TTL_MS,
        retry_interval_ms: int = DEFAULT_RETRY_INTERVAL_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        growth: float = DEFAULT_GROWTH,
        renew_interval_ms: Optional[int] = None,
    ) -> None:
        self._store = store
        self.ttl_ms = ttl_ms
        self.retry_interval_ms = retry_interval_ms
        self.max_attempts = max_attempts
        self.growth = growth
        # defaults to a third of the lease TTL
        self.renew_interval_ms = renew_interval_ms

    @staticmethod
    def _key(resource_key: str) -> str:
        return f"lock:{resource_key}"

    async def _keep_alive(self, lease: Lease) -> None:
        """Renew ``lease`` until cancelled or until another holder owns it."""
        interval_ms = self.renew_interval_ms or max(lease.ttl_ms // 3, 1)
        while True:
            await asyncio.sleep(interval_ms / 1000)
            if not await lease.renew():
                logger.warning(f"Lease {lease.key} lost while its holder was still running")
                return

    async def acquire(self, resource_key: str, ttl_ms: Optional[int] = None) -> Optional[Lease]:
        """Single acquisition attempt."""
        ttl_ms = ttl_ms or self.ttl_ms
        key = self._key(resource_key)
        token = str(uuid.uuid4())
        if await self._store.set_if_absent(key, token, ttl_ms):
            return Lease(self._store, key, token, ttl_ms)
        return None

    async def with_exclusive(
        self,
        resource_key: str,
        body: Callable[[], Awaitable[T]],
        ttl_ms: Optional[int] = None,
        retry_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        growth: Optional[float] = None,
    ) -> LockResult[T]:
        """Run ``body`` while holding the lease on ``resource_key``.

        Acquisition is retried with exponential backoff; when every attempt
        fails ``LockResult(ok=False)`` is returned and ``body`` never runs.
        The lease is renewed in the background while ``body`` runs.
        Exceptions raised by ``body`` propagate after the lease is released.
        """
        interval = retry_interval_ms if retry_interval_ms is not None else self.retry_interval_ms
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        growth = growth if growth is not None else self.growth

        for attempt in range(attempts):
            lease = await self.acquire(resource_key, ttl_ms)
            if lease is not None:
                logger.debug(f"Acquired lock {resource_key} on attempt {attempt + 1}")
                renewer = asyncio.create_task(self._keep_alive(lease))
                try:
                    value = await body()
                    return LockResult(ok=True, value=value)
                finally:
                    renewer.cancel()
                    await asyncio.gather(renewer, return_exceptions=True)
                    await lease.release()

            if attempt + 1 < attempts:
                await retry.sleep_backoff(attempt, interval=interval / 1000, growth=growth)

        logger.info(f"Lock {resource_key} unavailable after {attempts} attempts")
        return LockResult(ok=False)


__all__ = [
    "DistributedLock",
    "Lease",
    "LockResult",
    "record_scope",
    "thread_scope",
]
