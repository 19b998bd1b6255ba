"""Ledger abstraction for job and step persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import JobRecord, JobStatus, StepRecord, ToolCallRecord


class StepLedger(Protocol):
    """Protocol for step ledger backends.

    The ledger is append/upsert-only: nothing is ever deleted.
    """

    async def create_job(self, record: JobRecord) -> None:
        """Persist a new job. Re-creating an existing id is a no-op."""

    async def update_job_status(
        self, job_id: str, status: JobStatus, last_error: Optional[str] = None
    ) -> None:
        """Move a job forward; raises ``IllegalTransition`` otherwise."""

    async def append_step(self, record: StepRecord) -> None:
        """Insert or replace the step with ``record.id``."""

    async def append_tool_call(self, record: ToolCallRecord) -> None:
        """Insert or replace the tool call with ``record.id``."""

    async def latest_step(self, job_id: str) -> Optional[StepRecord]:
        """Return the step with the highest sequence number."""

    async def load_job(self, job_id: str) -> Optional[JobRecord]:
        """Retrieve the job by id."""

    async def list_steps(self, job_id: str) -> list[StepRecord]:
        """Return all steps of a job ordered by sequence."""

    async def list_tool_calls(self, step_id: str) -> list[ToolCallRecord]:
        """Return tool calls recorded for a step."""
