"""Admission control against duplicate event delivery."""

from __future__ import annotations

import logging

from .base import BaseCoordinationStore

logger = logging.getLogger(__name__)

DEFAULT_ADMISSION_TTL_SECONDS = 60 * 60 * 24


def idempotency_key(tenant_id: str, source_event_id: str, event_ts: str) -> str:
    """Key unique per physical delivery, even under upstream retry."""
    return f"{tenant_id}:{source_event_id}:{event_ts}"


class AdmissionControl:
    """Reserve event keys so each delivery is processed at most once.

    A reservation that is never released (worker crash) expires after
    ``ttl_seconds``; until then duplicates are dropped rather than executed
    twice.
    """

    def __init__(
        self,
        store: BaseCoordinationStore,
        ttl_seconds: int = DEFAULT_ADMISSION_TTL_SECONDS,
    ) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(key: str) -> str:
        return f"idempotency:{key}"

    async def admit(self, key: str) -> bool:
        """Return ``True`` the first time ``key`` is seen while unreserved."""
        admitted = await self._store.set_if_absent(
            self._key(key), "1", self.ttl_seconds * 1000
        )
        if not admitted:
            logger.info(f"Duplicate delivery suppressed for key={key}")
        return admitted

    async def release(self, key: str) -> None:
        """Clear the reservation once processing finished."""
        await self._store.delete(self._key(key))
        logger.debug(f"Released admission key={key}")
