from __future__ import annotations

from typing import Any, Mapping, Sequence

import pytest

from mentionops.collaborators import coerce_intent
from mentionops.contracts import ConversationMessage, Intent, ValidationOutcome
from mentionops.coordination import DistributedLock, InMemoryCoordinationStore
from mentionops.persistence import InMemoryStepLedger


class ManualClock:
    """Clock for the in-memory store that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePlanner:
    def __init__(self, output: Any) -> None:
        self.output = output
        self.histories: list[Sequence[ConversationMessage]] = []

    async def plan(self, history):
        self.histories.append(history)
        if isinstance(self.output, Exception):
            raise self.output
        return self.output


class FakeValidator:
    def __init__(self, outcome: ValidationOutcome | None = None) -> None:
        self.outcome = outcome or ValidationOutcome(ok=True, resolved_tool="hubspot_find_deals")
        self.seen: list[Intent] = []

    async def validate(self, intent: Intent) -> ValidationOutcome:
        self.seen.append(intent)
        return self.outcome


class FakeExecutor:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result if result is not None else {"results": [{"id": "1"}]}
        self.error = error
        self.calls: list[tuple[Intent, str, dict]] = []

    async def execute(self, intent, tool_name, arguments):
        self.calls.append((intent, tool_name, arguments))
        if self.error is not None:
            raise self.error
        return self.result


class FakeTextGenerator:
    def __init__(self, text: str = "Here is a **summary**") -> None:
        self.text = text
        self.prompts: list[tuple[str, Mapping[str, Any]]] = []

    async def generate(self, prompt, context):
        self.prompts.append((prompt, context))
        return self.text


class RecordingResponder:
    def __init__(self) -> None:
        self.posts: list[dict[str, Any]] = []

    async def post(self, channel_id, thread_id, text, blocks=None):
        self.posts.append(
            {"channel": channel_id, "thread": thread_id, "text": text, "blocks": blocks}
        )


def make_intent(**overrides: Any) -> Intent:
    data: dict[str, Any] = {"action": "read", "object": "deal", "limit": 3}
    data.update(overrides)
    return coerce_intent(data)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock) -> InMemoryCoordinationStore:
    return InMemoryCoordinationStore(prefix="test", clock=clock)


@pytest.fixture
def lock(store) -> DistributedLock:
    return DistributedLock(store, ttl_ms=30_000, retry_interval_ms=1, max_attempts=3, growth=1.5)


@pytest.fixture
def ledger() -> InMemoryStepLedger:
    return InMemoryStepLedger()
