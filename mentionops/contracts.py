"""Core data contracts exchanged between workflow components."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

Action = Literal["read", "create", "update", "upsert", "delete", "report"]
ObjectType = Literal["contact", "company", "deal", "ticket", "custom"]
FilterOp = Literal["eq", "contains", "in", "gt", "lt"]

MUTATING_ACTIONS = frozenset({"create", "update", "upsert", "delete"})
DEFAULT_CONFIRMATION_THRESHOLD = 50


class _WireModel(BaseModel):
    """Accepts the planner's camelCase keys as well as snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IntentFilter(_WireModel):
    field: str
    op: FilterOp
    value: Union[str, int, float, List[str]]


class ToolBudget(_WireModel):
    """Per-intent consumption ceilings, one per channel category."""

    max_zap_calls: int = Field(default=2, ge=0)
    max_hs_reads: int = Field(default=100, ge=0)
    max_hs_writes: int = Field(default=50, ge=0)


class Intent(_WireModel):
    """Structured representation of the action a user asked for."""

    action: Action
    target: ObjectType = Field(
        validation_alias=AliasChoices("object", "target"), serialization_alias="object"
    )
    filters: List[IntentFilter] = Field(default_factory=list)
    fields: Dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=50, gt=0, le=500)
    confirm_required: bool = False
    channel_hint: str = Field(
        default="auto",
        validation_alias=AliasChoices("channelHint", "toolHint", "channel_hint"),
        serialization_alias="channelHint",
    )
    tool_budget: ToolBudget = Field(default_factory=ToolBudget)

    @property
    def mutates(self) -> bool:
        return self.action in MUTATING_ACTIONS

    @property
    def record_id(self) -> Optional[str]:
        """Identifier of the single record targeted by the intent, if any."""
        raw = self.fields.get("id", self.fields.get("recordId"))
        if raw is None or str(raw).strip() == "":
            return None
        return str(raw)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def enforce_confirmation(
    intent: Intent, threshold: int = DEFAULT_CONFIRMATION_THRESHOLD
) -> Intent:
    """Force confirmation for mutations touching ``threshold`` or more records."""
    if intent.mutates and intent.limit >= threshold and not intent.confirm_required:
        logger.info(
            f"Confirmation enforced for {intent.action} {intent.target} limit={intent.limit}"
        )
        return intent.model_copy(update={"confirm_required": True})
    return intent


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str


class JobMeta(BaseModel):
    """Identity of the job the orchestrator is about to create."""

    job_id: str
    tenant_id: str
    channel_id: str
    thread_id: str
    request_id: Optional[str] = None


class EventMeta(BaseModel):
    """Identity of the inbound event that triggered the job."""

    source_event_id: str
    event_ts: str
    user_id: Optional[str] = None
    text: str = ""


class ValidationOutcome(BaseModel):
    ok: bool
    errors: List[str] = Field(default_factory=list)
    resolved_tool: Optional[str] = None
    candidates: List[str] = Field(default_factory=list)


class WorkflowResult(BaseModel):
    """Outcome returned to the conversational surface."""

    status: Literal["completed", "action_required", "failed"]
    text: str
    job_id: Optional[str] = None
    intent: Optional[Intent] = None
    issues: List[str] = Field(default_factory=list)
    raw_result: Any = None
    channel: Optional[str] = None
    tool_name: Optional[str] = None
