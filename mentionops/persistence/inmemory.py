"""In-memory implementation of the step ledger."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..errors import IllegalTransition, LedgerError
from .models import (
    JobRecord,
    JobStatus,
    StepRecord,
    ToolCallRecord,
    can_transition,
    utcnow,
)
from .repository import StepLedger

logger = logging.getLogger(__name__)


class InMemoryStepLedger(StepLedger):
    """Store jobs, steps and tool calls in local memory.

    Used for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, JobRecord] = {}
        self._steps: Dict[str, StepRecord] = {}
        self._tool_calls: Dict[str, ToolCallRecord] = {}

    # ------------------------------------------------------------------
    async def create_job(self, record: JobRecord) -> None:
        if record.id in self._jobs:
            logger.debug(f"Job {record.id} already exists; create ignored")
            return
        self._jobs[record.id] = record.model_copy(deep=True)

    async def update_job_status(
        self, job_id: str, status: JobStatus, last_error: Optional[str] = None
    ) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            raise LedgerError(f"Unknown job {job_id}")
        if not can_transition(job.status, status):
            raise IllegalTransition(f"Job {job_id} cannot move from {job.status} to {status}")
        job.status = status
        job.last_error = last_error
        job.updated_at = utcnow()

    async def append_step(self, record: StepRecord) -> None:
        if record.job_id not in self._jobs:
            raise LedgerError(f"Step {record.id} references unknown job {record.job_id}")
        existing = self._steps.get(record.id)
        now = utcnow()
        self._steps[record.id] = record.model_copy(
            update={
                "created_at": existing.created_at if existing else now,
                "updated_at": now,
            },
            deep=True,
        )

    async def append_tool_call(self, record: ToolCallRecord) -> None:
        if record.step_id not in self._steps:
            raise LedgerError(
                f"Tool call {record.id} references unknown step {record.step_id}"
            )
        self._tool_calls[record.id] = record.model_copy(deep=True)

    async def latest_step(self, job_id: str) -> Optional[StepRecord]:
        steps = await self.list_steps(job_id)
        return steps[-1] if steps else None

    async def load_job(self, job_id: str) -> Optional[JobRecord]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    async def list_steps(self, job_id: str) -> list[StepRecord]:
        steps = [s for s in self._steps.values() if s.job_id == job_id]
        return sorted(steps, key=lambda s: s.sequence)

    async def list_tool_calls(self, step_id: str) -> list[ToolCallRecord]:
        calls = [c for c in self._tool_calls.values() if c.step_id == step_id]
        return sorted(calls, key=lambda c: c.created_at)
