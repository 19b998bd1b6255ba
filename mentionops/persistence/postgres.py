"""PostgreSQL implementation of the step ledger."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import asyncpg

from ..errors import IllegalTransition, LedgerError
from .models import (
    JobRecord,
    JobStatus,
    StepRecord,
    ToolCallRecord,
    allowed_sources,
)
from .repository import StepLedger

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        channel_id TEXT NOT NULL,
        thread_id TEXT NOT NULL,
        source_event_id TEXT NOT NULL,
        status TEXT NOT NULL,
        last_error TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS jobs_event_idx
        ON jobs (tenant_id, source_event_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS steps (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL REFERENCES jobs(id),
        step_type TEXT NOT NULL,
        status TEXT NOT NULL,
        sequence INTEGER NOT NULL,
        state JSONB,
        result JSONB,
        error TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS steps_job_idx
        ON steps (job_id, sequence)
    """,
    """
    CREATE TABLE IF NOT EXISTS tool_calls (
        id TEXT PRIMARY KEY,
        step_id TEXT NOT NULL REFERENCES steps(id),
        tool_name TEXT NOT NULL,
        payload JSONB,
        response JSONB,
        status TEXT NOT NULL,
        error TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


class PostgresStepLedger(StepLedger):
    """Persist the step ledger using PostgreSQL.

    The schema is provisioned lazily on the first connection.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        await conn.set_type_codec(
            "jsonb", encoder=_dumps, decoder=json.loads, schema="pg_catalog"
        )
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        async with conn.transaction():
            for statement in _SCHEMA:
                await conn.execute(statement)
        logger.info("Step ledger schema ensured")

    # ------------------------------------------------------------------
    async def create_job(self, record: JobRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO jobs (id, tenant_id, channel_id, thread_id, source_event_id,
                                  status, last_error, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (id) DO NOTHING
                """,
                record.id,
                record.tenant_id,
                record.channel_id,
                record.thread_id,
                record.source_event_id,
                record.status,
                record.last_error,
                record.created_at,
                record.updated_at,
            )
        finally:
            await conn.close()

    async def update_job_status(
        self, job_id: str, status: JobStatus, last_error: Optional[str] = None
    ) -> None:
        conn = await self._connect()
        try:
            outcome = await conn.execute(
                """
                UPDATE jobs
                SET status = $1, last_error = $2, updated_at = now()
                WHERE id = $3 AND status = ANY($4::text[])
                """,
                status,
                last_error,
                job_id,
                allowed_sources(status),
            )
            if outcome.endswith(" 0"):
                current = await conn.fetchval("SELECT status FROM jobs WHERE id = $1", job_id)
                if current is None:
                    raise LedgerError(f"Unknown job {job_id}")
                raise IllegalTransition(
                    f"Job {job_id} cannot move from {current} to {status}"
                )
        finally:
            await conn.close()

    async def append_step(self, record: StepRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO steps (id, job_id, step_type, status, sequence, state, result, error)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (id) DO UPDATE SET
                    status = excluded.status,
                    sequence = excluded.sequence,
                    state = excluded.state,
                    result = excluded.result,
                    error = excluded.error,
                    updated_at = now()
                """,
                record.id,
                record.job_id,
                record.step_type,
                record.status,
                record.sequence,
                record.state,
                record.result,
                record.error,
            )
        except asyncpg.ForeignKeyViolationError as exc:
            raise LedgerError(
                f"Step {record.id} references unknown job {record.job_id}"
            ) from exc
        finally:
            await conn.close()

    async def append_tool_call(self, record: ToolCallRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO tool_calls (id, step_id, tool_name, payload, response, status, error, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (id) DO UPDATE SET
                    response = excluded.response,
                    status = excluded.status,
                    error = excluded.error
                """,
                record.id,
                record.step_id,
                record.tool_name,
                record.payload,
                record.response,
                record.status,
                record.error,
                record.created_at,
            )
        except asyncpg.ForeignKeyViolationError as exc:
            raise LedgerError(
                f"Tool call {record.id} references unknown step {record.step_id}"
            ) from exc
        finally:
            await conn.close()

    async def latest_step(self, job_id: str) -> Optional[StepRecord]:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM steps WHERE job_id = $1 ORDER BY sequence DESC LIMIT 1",
                job_id,
            )
        finally:
            await conn.close()
        return StepRecord(**dict(row)) if row else None

    async def load_job(self, job_id: str) -> Optional[JobRecord]:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT * FROM jobs WHERE id = $1", job_id)
        finally:
            await conn.close()
        return JobRecord(**dict(row)) if row else None

    async def list_steps(self, job_id: str) -> list[StepRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM steps WHERE job_id = $1 ORDER BY sequence", job_id
            )
        finally:
            await conn.close()
        return [StepRecord(**dict(r)) for r in rows]

    async def list_tool_calls(self, step_id: str) -> list[ToolCallRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM tool_calls WHERE step_id = $1 ORDER BY created_at", step_id
            )
        finally:
            await conn.close()
        return [ToolCallRecord(**dict(r)) for r in rows]
