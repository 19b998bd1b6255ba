"""Coordination store factory and primitives."""

from __future__ import annotations

import os
from typing import Optional

from ..config import MentionOpsConfig, load_config
from .admission import AdmissionControl, idempotency_key
from .base import BaseCoordinationStore
from .inmemory import InMemoryCoordinationStore
from .lock import DistributedLock, Lease, LockResult, record_scope, thread_scope


def get_coordination_store(
    backend: Optional[str] = None, config: Optional[MentionOpsConfig] = None
) -> BaseCoordinationStore:
    """Factory function to get the configured coordination store."""

    config = config or load_config()
    coordination = config.coordination
    backend = (
        backend
        or os.getenv("MENTIONOPS_COORDINATION")
        or coordination.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryCoordinationStore(prefix=coordination.prefix)
    elif backend == "redis":
        from .redis import RedisCoordinationStore

        redis_conf = coordination.redis
        return RedisCoordinationStore(
            url=redis_conf.url,
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            prefix=coordination.prefix,
        )
    else:
        raise ValueError(f"Unsupported coordination backend: {backend}")


def build_admission(
    store: BaseCoordinationStore, config: Optional[MentionOpsConfig] = None
) -> AdmissionControl:
    config = config or load_config()
    return AdmissionControl(store, ttl_seconds=config.coordination.admission_ttl_seconds)


def build_lock(
    store: BaseCoordinationStore, config: Optional[MentionOpsConfig] = None
) -> DistributedLock:
    config = config or load_config()
    coordination = config.coordination
    return DistributedLock(
        store,
        ttl_ms=coordination.lock_ttl_ms,
        retry_interval_ms=coordination.lock_retry_ms,
        max_attempts=coordination.lock_max_attempts,
        growth=coordination.lock_growth,
        renew_interval_ms=coordination.lock_renew_ms,
    )


__all__ = [
    "AdmissionControl",
    "BaseCoordinationStore",
    "DistributedLock",
    "InMemoryCoordinationStore",
    "Lease",
    "LockResult",
    "build_admission",
    "build_lock",
    "get_coordination_store",
    "idempotency_key",
    "record_scope",
    "thread_scope",
]
