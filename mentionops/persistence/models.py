"""Data models for the durable step ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

JobStatus = Literal["pending", "running", "awaiting_confirmation", "completed", "failed"]
StepStatus = Literal["pending", "running", "succeeded", "failed"]
ToolCallStatus = Literal["succeeded", "failed"]

# Forward-only; completed and failed are terminal.
JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "failed"}),
    "running": frozenset({"awaiting_confirmation", "completed", "failed"}),
    "awaiting_confirmation": frozenset({"failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: str, target: str) -> bool:
    return target in JOB_TRANSITIONS.get(current, frozenset())


def allowed_sources(target: str) -> list[str]:
    """Statuses from which ``target`` may be entered."""
    return sorted(s for s, nexts in JOB_TRANSITIONS.items() if target in nexts)


class JobRecord(BaseModel):
    """One top-level request's lifecycle."""

    id: str
    tenant_id: str
    channel_id: str
    thread_id: str
    source_event_id: str
    status: JobStatus = "pending"
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StepRecord(BaseModel):
    """Record of an individual step execution."""

    id: str
    job_id: str
    step_type: str
    status: StepStatus
    sequence: int
    state: Any = None
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ToolCallRecord(BaseModel):
    """Recorded invocation of a downstream channel."""

    id: str
    step_id: str
    tool_name: str
    payload: Any = None
    response: Any = None
    status: ToolCallStatus = "succeeded"
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
