"""Per-job workflow state machine.

A job runs the steps ``intent -> validate -> [confirm] -> plan -> execute ->
record -> review`` strictly in order. Every step is persisted twice through
the step ledger: once as ``running`` and once with its terminal status, so a
job's history is complete and ordered even when it fails midway.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence

from pydantic_core import to_jsonable_python

from .collaborators import Executor, Planner, TextGenerator, Validator, coerce_intent
from .contracts import (
    DEFAULT_CONFIRMATION_THRESHOLD,
    ConversationMessage,
    EventMeta,
    Intent,
    JobMeta,
    ValidationOutcome,
    WorkflowResult,
    enforce_confirmation,
)
from .coordination.lock import DistributedLock, record_scope
from .errors import BudgetExceeded, ExecutorError, MentionOpsError, RecordLocked
from .formatting import format_surface_text
from .persistence.models import JobRecord, JobStatus, StepRecord, ToolCallRecord
from .persistence.repository import StepLedger
from .policy import BudgetDenied, ChannelPolicy, ChannelSpec

logger = logging.getLogger(__name__)

GENERIC_FAILURE_TEXT = (
    "Something went wrong while processing your request. "
    "Please try again or contact an administrator."
)
CLARIFY_PROMPT = (
    "Summarize these validation problems for the user. Keep it concise and "
    "say what information is required."
)
CONFIRM_PROMPT = (
    "Prepare a confirmation prompt for this operation. Be direct that approval "
    "is required for large updates. Do not mention tokens or internal policy."
)
BUDGET_PROMPT = (
    "Explain this execution budget constraint to the user and offer concrete "
    "next actions in under three sentences."
)
REVIEW_PROMPT = (
    "Summarize the automation result for the user. Include concrete record "
    "identifiers when available."
)

CONTROL_FIELDS = ("toolName", "zapierTool", "args", "payload")
RECORD_LOCKED_ACTIONS = frozenset({"update", "upsert", "delete"})
RESULT_PREVIEW_CHARS = 3500


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value, by_alias=True, fallback=str)


def build_arguments(intent: Intent) -> Dict[str, Any]:
    """Normalize intent fields, filters and limit into channel arguments."""
    fields = dict(intent.fields)
    base = fields.get("args") or fields.get("payload") or {}
    rest = {k: v for k, v in fields.items() if k not in CONTROL_FIELDS}
    arguments: Dict[str, Any] = {**rest, **(base if isinstance(base, Mapping) else {})}
    if intent.filters and "filters" not in arguments:
        arguments["filters"] = [f.model_dump(mode="json") for f in intent.filters]
    if intent.action == "read" and "limit" not in arguments:
        arguments["limit"] = intent.limit
    return arguments


def clarification_issues(outcome: ValidationOutcome) -> str:
    if outcome.errors:
        return "More information is needed:\n- " + "\n- ".join(outcome.errors)
    if outcome.candidates:
        return (
            "These tools are available:\n- "
            + "\n- ".join(outcome.candidates)
            + "\nPlease say which one to use."
        )
    return "No runnable tool could be identified. Please describe the tool or operation in more detail."


@dataclass
class StepOutcome:
    step_id: str
    sequence: int
    result: Any


class _JobRun:
    """Mutable per-job bookkeeping; never shared between jobs."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self.sequence = 0
        self.finalized = False

    def next_sequence(self) -> int:
        self.sequence += 1
        return self.sequence


class WorkflowOrchestrator:
    """Sequences planning, validation, confirmation, execution and review."""

    def __init__(
        self,
        ledger: StepLedger,
        planner: Planner,
        validator: Validator,
        executors: Mapping[str, Executor],
        text_generator: TextGenerator,
        policy: Optional[ChannelPolicy] = None,
        lock: Optional[DistributedLock] = None,
        confirmation_threshold: int = DEFAULT_CONFIRMATION_THRESHOLD,
        record_lock_attempts: int = 3,
    ) -> None:
        self._ledger = ledger
        self._planner = planner
        self._validator = validator
        self._executors = dict(executors)
        self._text = text_generator
        self._policy = policy or ChannelPolicy()
        self._lock = lock
        self.confirmation_threshold = confirmation_threshold
        self.record_lock_attempts = record_lock_attempts

    # ------------------------------------------------------------------
    async def _run_step(
        self,
        run: _JobRun,
        step_type: str,
        state: Any,
        body: Callable[[], Awaitable[Any]],
    ) -> StepOutcome:
        step_id = str(uuid.uuid4())
        sequence = run.next_sequence()
        state = _jsonable(state)

        def record(status: str, result: Any = None, error: Optional[str] = None) -> StepRecord:
            return StepRecord(
                id=step_id,
                job_id=run.job_id,
                step_type=step_type,
                status=status,
                sequence=sequence,
                state=state,
                result=result,
                error=error,
            )

        await self._ledger.append_step(record("running"))
        try:
            result = await body()
        except Exception as exc:
            await self._ledger.append_step(record("failed", error=str(exc) or type(exc).__name__))
            logger.info(f"Step {step_type}#{sequence} failed for job_id={run.job_id}: {exc}")
            raise
        await self._ledger.append_step(record("succeeded", result=_jsonable(result)))
        logger.debug(f"Step {step_type}#{sequence} succeeded for job_id={run.job_id}")
        return StepOutcome(step_id=step_id, sequence=sequence, result=result)

    async def _finalize(
        self, run: _JobRun, status: JobStatus, error: Optional[str] = None
    ) -> None:
        # set before the write so a failing write is not retried as a second update
        run.finalized = True
        await self._ledger.update_job_status(run.job_id, status, error)
        logger.info(f"Job {run.job_id} finalized as {status}")

    async def _generate(self, prompt: str, context: Mapping[str, Any]) -> str:
        return format_surface_text(await self._text.generate(prompt, context))

    # ------------------------------------------------------------------
    async def run_workflow(
        self,
        job_meta: JobMeta,
        conversation: Sequence[ConversationMessage],
        event_meta: EventMeta,
    ) -> WorkflowResult:
        """Create the job and drive it to a terminal or waiting state."""
        run = _JobRun(job_meta.job_id)
        await self._ledger.create_job(
            JobRecord(
                id=job_meta.job_id,
                tenant_id=job_meta.tenant_id,
                channel_id=job_meta.channel_id,
                thread_id=job_meta.thread_id,
                source_event_id=event_meta.source_event_id,
                status="running",
            )
        )
        try:
            return await self._drive(run, conversation)
        except Exception as exc:
            code = exc.code if isinstance(exc, MentionOpsError) else "internal_error"
            logger.exception(f"Workflow failed for job_id={run.job_id} ({code})")
            if not run.finalized:
                await self._finalize(run, "failed", str(exc) or type(exc).__name__)
            return WorkflowResult(
                status="failed",
                text=GENERIC_FAILURE_TEXT,
                job_id=run.job_id,
                issues=[code],
            )

    async def _drive(
        self, run: _JobRun, conversation: Sequence[ConversationMessage]
    ) -> WorkflowResult:
        history = list(conversation)

        async def plan_intent() -> Intent:
            raw = await self._planner.plan(history)
            return enforce_confirmation(coerce_intent(raw), self.confirmation_threshold)

        intent: Intent = (
            await self._run_step(run, "intent", {"messages": history}, plan_intent)
        ).result

        outcome: ValidationOutcome = (
            await self._run_step(
                run,
                "validate",
                {"intent": intent},
                lambda: self._validator.validate(intent),
            )
        ).result

        if not outcome.ok or not outcome.resolved_tool:
            await self._finalize(
                run,
                "awaiting_confirmation" if intent.confirm_required else "failed",
                "; ".join(outcome.errors) or "no tool resolved",
            )
            text = await self._generate(
                CLARIFY_PROMPT, {"issues": clarification_issues(outcome)}
            )
            return WorkflowResult(
                status="action_required",
                text=text,
                job_id=run.job_id,
                intent=intent,
                issues=outcome.errors,
            )

        tool_name = outcome.resolved_tool
        if not intent.fields.get("toolName"):
            intent = intent.model_copy(
                update={"fields": {**intent.fields, "toolName": tool_name}}
            )

        if intent.confirm_required:
            prompt = (
                await self._run_step(
                    run,
                    "confirm",
                    {"intent": intent},
                    lambda: self._generate(CONFIRM_PROMPT, {"intent": intent.to_wire()}),
                )
            ).result
            await self._finalize(run, "awaiting_confirmation")
            return WorkflowResult(
                status="action_required",
                text=prompt,
                job_id=run.job_id,
                intent=intent,
                tool_name=tool_name,
            )

        async def plan_channel() -> ChannelSpec:
            decision = self._policy.resolve(intent)
            if isinstance(decision, BudgetDenied):
                raise BudgetExceeded(decision.reason)
            return decision.channel

        try:
            channel: ChannelSpec = (
                await self._run_step(run, "plan", {"intent": intent}, plan_channel)
            ).result
        except BudgetExceeded as exc:
            await self._finalize(run, "failed", str(exc))
            text = await self._generate(BUDGET_PROMPT, {"reason": str(exc)})
            return WorkflowResult(
                status="action_required",
                text=text,
                job_id=run.job_id,
                intent=intent,
                issues=[str(exc)],
            )

        arguments = build_arguments(intent)
        execution = await self._run_step(
            run,
            "execute",
            {
                "intent": intent,
                "channel": channel.name,
                "tool_name": tool_name,
                "arguments": arguments,
            },
            lambda: self._execute(channel, intent, tool_name, arguments),
        )
        raw_result = execution.result

        async def record_call() -> str:
            call_id = str(uuid.uuid4())
            await self._ledger.append_tool_call(
                ToolCallRecord(
                    id=call_id,
                    step_id=execution.step_id,
                    tool_name=tool_name,
                    payload=_jsonable(arguments),
                    response=_jsonable(raw_result),
                    status="succeeded",
                )
            )
            return call_id

        await self._run_step(
            run,
            "record",
            {"tool_name": tool_name, "execute_step_id": execution.step_id},
            record_call,
        )

        preview = json.dumps(_jsonable(raw_result), ensure_ascii=False)[:RESULT_PREVIEW_CHARS]
        summary = (
            await self._run_step(
                run,
                "review",
                {"intent": intent, "channel": channel.name, "tool_name": tool_name},
                lambda: self._generate(
                    REVIEW_PROMPT,
                    {
                        "intent": intent.to_wire(),
                        "result": preview,
                        "tool_name": tool_name,
                        "channel": channel.name,
                    },
                ),
            )
        ).result

        await self._finalize(run, "completed")
        return WorkflowResult(
            status="completed",
            text=summary,
            job_id=run.job_id,
            intent=intent,
            raw_result=raw_result,
            channel=channel.name,
            tool_name=tool_name,
        )

    async def _execute(
        self,
        channel: ChannelSpec,
        intent: Intent,
        tool_name: str,
        arguments: Dict[str, Any],
    ) -> Any:
        executor = self._executors.get(channel.name)
        if executor is None:
            raise ExecutorError(f"No executor registered for channel {channel.name}")

        async def call() -> Any:
            try:
                return await executor.execute(intent, tool_name, arguments)
            except MentionOpsError:
                raise
            except Exception as exc:
                raise ExecutorError(f"{channel.name} failed: {exc}") from exc

        record_id = intent.record_id
        if (
            self._lock is None
            or not channel.record_lock
            or intent.action not in RECORD_LOCKED_ACTIONS
            or record_id is None
        ):
            return await call()

        scope = record_scope(intent.target, record_id)
        locked = await self._lock.with_exclusive(
            scope, call, max_attempts=self.record_lock_attempts
        )
        if not locked.ok:
            raise RecordLocked(f"Record {intent.target}/{record_id} is locked by another job")
        return locked.value
