"""Workflow orchestrator tests."""

import uuid

import pytest
from conftest import FakeExecutor, FakePlanner, FakeTextGenerator, FakeValidator, make_intent

from mentionops.contracts import ConversationMessage, EventMeta, JobMeta, ValidationOutcome
from mentionops.coordination import record_scope
from mentionops.errors import SchemaViolation
from mentionops.orchestrator import GENERIC_FAILURE_TEXT, WorkflowOrchestrator, build_arguments
from mentionops.persistence import InMemoryStepLedger



class CountingLedger(InMemoryStepLedger):
    def __init__(self):
        super().__init__()
        self.status_updates = []

    async def update_job_status(self, job_id, status, last_error=None):
        self.status_updates.append((job_id, status))
        await super().update_job_status(job_id, status, last_error)


def _build(ledger, planner_output, validator=None, executor=None, text=None, lock=None):
    executor = executor or FakeExecutor()
    orchestrator = WorkflowOrchestrator(
        ledger=ledger,
        planner=FakePlanner(planner_output),
        validator=validator or FakeValidator(),
        executors={"direct": executor, "gateway": executor},
        text_generator=text or FakeTextGenerator(),
        lock=lock,
    )
    return orchestrator, executor


async def _run(orchestrator, text="list 3 open deals"):
    job_id = str(uuid.uuid4())
    result = await orchestrator.run_workflow(
        JobMeta(job_id=job_id, tenant_id="T1", channel_id="C1", thread_id="171.1"),
        [ConversationMessage(role="user", content=text)],
        EventMeta(source_event_id="Ev1", event_ts="171.2", text=text),
    )
    return job_id, result


async def _tool_calls(ledger, job_id):
    calls = []
    for step in await ledger.list_steps(job_id):
        calls.extend(await ledger.list_tool_calls(step.id))
    return calls


def _assert_contiguous(steps):
    assert [s.sequence for s in steps] == list(range(1, len(steps) + 1))


@pytest.mark.asyncio
async def test_read_request_completes_with_one_tool_call():
    ledger = CountingLedger()
    planner_output = {
        "action": "read",
        "object": "deal",
        "filters": [{"field": "dealstage", "op": "eq", "value": "open"}],
        "limit": 3,
        "confirmRequired": False,
    }
    orchestrator, executor = _build(ledger, planner_output)

    job_id, result = await _run(orchestrator)

    assert result.status == "completed"
    assert result.text == "Here is a *summary*"
    assert result.channel == "direct"
    assert result.tool_name == "hubspot_find_deals"
    assert result.intent.confirm_required is False
    assert len(executor.calls) == 1
    _, tool_name, arguments = executor.calls[0]
    assert tool_name == "hubspot_find_deals"
    assert arguments["limit"] == 3
    assert arguments["filters"][0]["field"] == "dealstage"

    steps = await ledger.list_steps(job_id)
    assert [s.step_type for s in steps] == ["intent", "validate", "plan", "execute", "record", "review"]
    assert all(s.status == "succeeded" for s in steps)
    _assert_contiguous(steps)

    calls = await _tool_calls(ledger, job_id)
    assert len(calls) == 1
    assert calls[0].step_id == steps[3].id
    assert calls[0].payload == arguments
    assert calls[0].response == executor.result

    job = await ledger.load_job(job_id)
    assert job.status == "completed"
    assert ledger.status_updates == [(job_id, "completed")]


@pytest.mark.asyncio
async def test_large_mutation_waits_for_confirmation():
    ledger = CountingLedger()
    orchestrator, executor = _build(
        ledger, {"action": "update", "object": "deal", "limit": 100, "fields": {"dealstage": "won"}}
    )

    job_id, result = await _run(orchestrator, "close all 100 deals")

    assert result.status == "action_required"
    assert result.intent.confirm_required is True
    assert executor.calls == []
    assert await _tool_calls(ledger, job_id) == []
    steps = await ledger.list_steps(job_id)
    assert [s.step_type for s in steps] == ["intent", "validate", "confirm"]
    job = await ledger.load_job(job_id)
    assert job.status == "awaiting_confirmation"
    assert ledger.status_updates == [(job_id, "awaiting_confirmation")]


@pytest.mark.asyncio
async def test_exhausted_budget_fails_job_without_tool_call():
    ledger = CountingLedger()
    text = FakeTextGenerator("Budget reached")
    orchestrator, executor = _build(
        ledger,
        {"action": "report", "object": "deal", "limit": 10, "toolBudget": {"maxZapCalls": 0}},
        text=text,
    )

    job_id, result = await _run(orchestrator, "export a pipeline report")

    assert result.status == "action_required"
    assert result.issues and "budget" in result.issues[0].lower()
    assert executor.calls == []
    steps = await ledger.list_steps(job_id)
    assert [(s.step_type, s.status) for s in steps] == [
        ("intent", "succeeded"),
        ("validate", "succeeded"),
        ("plan", "failed"),
    ]
    assert await _tool_calls(ledger, job_id) == []
    job = await ledger.load_job(job_id)
    assert job.status == "failed"
    assert ledger.status_updates == [(job_id, "failed")]


@pytest.mark.asyncio
async def test_validation_errors_request_clarification():
    ledger = CountingLedger()
    text = FakeTextGenerator("Which stage?")
    validator = FakeValidator(ValidationOutcome(ok=False, errors=["Unknown property stage"]))
    orchestrator, executor = _build(
        ledger, {"action": "create", "object": "deal", "limit": 1}, validator=validator, text=text
    )

    job_id, result = await _run(orchestrator)

    assert result.status == "action_required"
    assert result.issues == ["Unknown property stage"]
    assert "Unknown property stage" in text.prompts[0][1]["issues"]
    assert executor.calls == []
    job = await ledger.load_job(job_id)
    assert job.status == "failed"
    assert job.last_error == "Unknown property stage"


@pytest.mark.asyncio
async def test_unresolved_tool_lists_candidates_and_waits_when_confirming():
    ledger = CountingLedger()
    text = FakeTextGenerator()
    validator = FakeValidator(ValidationOutcome(ok=False, candidates=["hubspot_update_deal"]))
    orchestrator, _ = _build(
        ledger, {"action": "delete", "object": "deal", "limit": 60}, validator=validator, text=text
    )

    job_id, result = await _run(orchestrator)

    assert result.status == "action_required"
    assert "hubspot_update_deal" in text.prompts[0][1]["issues"]
    assert (await ledger.load_job(job_id)).status == "awaiting_confirmation"


@pytest.mark.asyncio
async def test_schema_violation_fails_job_with_safe_message():
    ledger = CountingLedger()
    orchestrator, _ = _build(ledger, {"action": "launch", "object": "rocket"})

    job_id, result = await _run(orchestrator)

    assert result.status == "failed"
    assert result.text == GENERIC_FAILURE_TEXT
    assert result.issues == ["schema_violation"]
    steps = await ledger.list_steps(job_id)
    assert [(s.step_type, s.status) for s in steps] == [("intent", "failed")]
    assert steps[0].error
    job = await ledger.load_job(job_id)
    assert job.status == "failed"
    assert job.last_error


@pytest.mark.asyncio
async def test_planner_exception_is_recorded():
    ledger = CountingLedger()
    orchestrator, _ = _build(ledger, SchemaViolation("not json"))
    job_id, result = await _run(orchestrator)
    assert result.issues == ["schema_violation"]
    assert (await ledger.latest_step(job_id)).error == "not json"


@pytest.mark.asyncio
async def test_executor_failure_fails_job():
    ledger = CountingLedger()
    executor = FakeExecutor(error=ConnectionError("downstream secret detail"))
    orchestrator, _ = _build(ledger, {"action": "read", "object": "deal", "limit": 3}, executor=executor)

    job_id, result = await _run(orchestrator)

    assert result.status == "failed"
    assert result.issues == ["executor_error"]
    assert "secret" not in result.text
    steps = await ledger.list_steps(job_id)
    assert steps[-1].step_type == "execute"
    assert steps[-1].status == "failed"
    assert "downstream secret detail" in steps[-1].error
    _assert_contiguous(steps)
    assert await _tool_calls(ledger, job_id) == []
    assert ledger.status_updates == [(job_id, "failed")]


@pytest.mark.asyncio
async def test_locked_record_aborts_execution(lock):
    ledger = CountingLedger()
    held = await lock.acquire(record_scope("deal", "7"))
    assert held is not None
    orchestrator, executor = _build(
        ledger,
        {"action": "delete", "object": "deal", "limit": 1, "fields": {"id": "7"}},
        lock=lock,
    )

    job_id, result = await _run(orchestrator)

    assert result.status == "failed"
    assert result.issues == ["record_locked"]
    assert executor.calls == []
    assert (await ledger.latest_step(job_id)).step_type == "execute"


@pytest.mark.asyncio
async def test_single_record_write_runs_under_record_lock(lock, store):
    ledger = CountingLedger()
    seen = {}

    class LockCheckingExecutor(FakeExecutor):
        async def execute(self, intent, tool_name, arguments):
            seen["lock"] = await store.get("lock:record:deal:7")
            return await super().execute(intent, tool_name, arguments)

    orchestrator, executor = _build(
        ledger,
        {"action": "update", "object": "deal", "limit": 1, "fields": {"id": "7", "amount": 10}},
        executor=LockCheckingExecutor(),
        lock=lock,
    )

    job_id, result = await _run(orchestrator)

    assert result.status == "completed"
    assert seen["lock"] is not None
    assert await store.get("lock:record:deal:7") is None


@pytest.mark.asyncio
async def test_missing_executor_for_channel():
    ledger = CountingLedger()
    orchestrator = WorkflowOrchestrator(
        ledger=ledger,
        planner=FakePlanner({"action": "read", "object": "deal", "limit": 3}),
        validator=FakeValidator(),
        executors={},
        text_generator=FakeTextGenerator(),
    )
    _, result = await _run(orchestrator)
    assert result.issues == ["executor_error"]


@pytest.mark.asyncio
async def test_text_generator_failure_after_budget_denial_keeps_single_update():
    ledger = CountingLedger()

    class BrokenText(FakeTextGenerator):
        async def generate(self, prompt, context):
            raise RuntimeError("llm down")

    orchestrator, _ = _build(
        ledger,
        {"action": "report", "object": "deal", "toolBudget": {"maxZapCalls": 0}},
        text=BrokenText(),
    )
    job_id, result = await _run(orchestrator)
    assert result.status == "failed"
    assert result.issues == ["internal_error"]
    assert ledger.status_updates == [(job_id, "failed")]


def test_build_arguments_strips_control_fields():
    intent = make_intent(
        action="update",
        fields={"toolName": "t", "zapierTool": "z", "amount": 5, "args": {"id": "9"}},
        filters=[{"field": "x", "op": "eq", "value": 1}],
    )
    assert build_arguments(intent) == {
        "amount": 5,
        "id": "9",
        "filters": [{"field": "x", "op": "eq", "value": 1}],
    }
