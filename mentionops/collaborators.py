"""Contracts for the external capabilities the orchestrator calls out to.

The planner and text generator are opaque LLM capabilities; ``AgentPlanner``
and ``AgentTextGenerator`` back them with pydantic-ai agents. Validators and
executors wrap the concrete downstream integration.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Protocol, Sequence

from pydantic import ValidationError
from pydantic_ai import Agent
from pydantic_ai.exceptions import UnexpectedModelBehavior

from .contracts import ConversationMessage, Intent, ValidationOutcome
from .errors import SchemaViolation

logger = logging.getLogger(__name__)

INTENT_SYSTEM_PROMPT = (
    "You are an intent extraction controller for a chat operations bot that "
    "manages CRM records through automation tools. Only output data matching "
    "the provided schema. Populate fields.toolName with the tool to run when "
    "the user names one. Never fabricate property names; rely on known fields "
    "or ask the user for clarification."
)

RESPONSE_SYSTEM_PROMPT = (
    "You write short replies for chat users. Use short paragraphs or simple "
    "bullet points and never mention internal policies or tokens."
)


class Planner(Protocol):
    async def plan(self, history: Sequence[ConversationMessage]) -> Intent | Mapping[str, Any]:
        """Turn conversation history into an intent."""


class Validator(Protocol):
    async def validate(self, intent: Intent) -> ValidationOutcome:
        """Check an intent against the integration's schema and tooling."""


class Executor(Protocol):
    async def execute(
        self, intent: Intent, tool_name: str, arguments: dict[str, Any]
    ) -> Any:
        """Invoke the downstream channel and return its raw result."""


class TextGenerator(Protocol):
    async def generate(self, prompt: str, context: Mapping[str, Any]) -> str:
        """Produce user-facing text for ``prompt`` given ``context``."""


def coerce_intent(raw: Any) -> Intent:
    """Validate planner output as an :class:`Intent`."""
    if isinstance(raw, Intent):
        return raw
    if not isinstance(raw, Mapping):
        raise SchemaViolation(f"Planner returned {type(raw).__name__}, expected an object")
    try:
        return Intent.model_validate(dict(raw))
    except ValidationError as exc:
        raise SchemaViolation(f"Planner output failed schema validation: {exc}") from exc


def channel_hint_instruction(channel_hints: Sequence[str]) -> str:
    return (
        f"Set channelHint to one of: {', '.join(channel_hints)}. Use auto unless "
        "the user explicitly asks for a specific execution channel."
    )


def render_transcript(history: Sequence[ConversationMessage]) -> str:
    return "\n".join(f"{m.role}: {m.content}" for m in history)


class AgentPlanner:
    """Planner backed by a pydantic-ai agent with structured Intent output."""

    def __init__(
        self,
        model: Any = None,
        agent: Optional[Agent] = None,
        system_prompt: str = INTENT_SYSTEM_PROMPT,
        channel_hints: Optional[Sequence[str]] = None,
    ) -> None:
        if agent is None and model is None:
            raise ValueError("AgentPlanner requires a model or an agent")
        if channel_hints:
            system_prompt = f"{system_prompt}\n\n{channel_hint_instruction(channel_hints)}"
        self.system_prompt = system_prompt
        self.agent = agent or Agent(
            model,
            output_type=Intent,
            system_prompt=system_prompt,
            defer_model_check=True,
        )

    async def plan(self, history: Sequence[ConversationMessage]) -> Intent:
        try:
            result = await self.agent.run(render_transcript(history))
        except UnexpectedModelBehavior as exc:
            raise SchemaViolation(f"Planner produced no valid intent: {exc}") from exc
        return coerce_intent(result.output)


class AgentTextGenerator:
    """Text generator backed by a pydantic-ai agent."""

    def __init__(
        self,
        model: Any = None,
        agent: Optional[Agent] = None,
        system_prompt: str = RESPONSE_SYSTEM_PROMPT,
    ) -> None:
        if agent is None and model is None:
            raise ValueError("AgentTextGenerator requires a model or an agent")
        self.agent = agent or Agent(
            model,
            output_type=str,
            system_prompt=system_prompt,
            defer_model_check=True,
        )

    async def generate(self, prompt: str, context: Mapping[str, Any]) -> str:
        user_prompt = prompt
        if context:
            user_prompt = f"{prompt}\n\n{json.dumps(dict(context), default=str, ensure_ascii=False)}"
        result = await self.agent.run(user_prompt)
        logger.debug(f"Generated {len(result.output)} characters of reply text")
        return result.output
