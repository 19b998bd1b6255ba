"""Durable step ledger for mentionops jobs."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..config import MentionOpsConfig, load_config
from .inmemory import InMemoryStepLedger
from .models import JobRecord, StepRecord, ToolCallRecord
from .repository import StepLedger

logger = logging.getLogger(__name__)

_ledger_instance: StepLedger | None = None


def get_ledger(
    database_url: Optional[str] = None, config: Optional[MentionOpsConfig] = None
) -> StepLedger:
    """Factory function to obtain the step ledger.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``MENTIONOPS_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, a volatile in-memory ledger is returned.
    """

    global _ledger_instance
    if _ledger_instance is not None and database_url is None and config is None:
        return _ledger_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("MENTIONOPS_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        logger.warning(
            "No database configured; step ledger falls back to volatile memory"
        )
        _ledger_instance = InMemoryStepLedger()
        return _ledger_instance

    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresStepLedger

        _ledger_instance = PostgresStepLedger(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _ledger_instance


__all__ = [
    "InMemoryStepLedger",
    "JobRecord",
    "StepLedger",
    "StepRecord",
    "ToolCallRecord",
    "get_ledger",
]
