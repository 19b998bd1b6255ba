"""Process-start wiring of long-lived clients."""

from __future__ import annotations

from typing import Mapping, Optional

from .collaborators import AgentPlanner, AgentTextGenerator, Executor, Planner, TextGenerator, Validator
from .config import MentionOpsConfig, load_config
from .coordination import build_admission, build_lock, get_coordination_store
from .handler import ConversationSource, MentionHandler, Responder
from .orchestrator import WorkflowOrchestrator
from .persistence import get_ledger
from .policy import ChannelPolicy


def build_handler(
    validator: Validator,
    executors: Mapping[str, Executor],
    responder: Responder,
    conversations: Optional[ConversationSource] = None,
    planner: Optional[Planner] = None,
    text_generator: Optional[TextGenerator] = None,
    bot_user_id: Optional[str] = None,
    config: Optional[MentionOpsConfig] = None,
) -> MentionHandler:
    """Build a handler from configuration.

    Call once per process and reuse the result; the planner, store and
    ledger clients it holds are meant to be shared.
    """
    config = config or load_config()
    store = get_coordination_store(config=config)
    lock = build_lock(store, config)
    policy = ChannelPolicy(config.workflow.channels)
    orchestrator = WorkflowOrchestrator(
        ledger=get_ledger(config=config),
        planner=planner
        or AgentPlanner(config.ai.intent_model, channel_hints=policy.hint_names()),
        validator=validator,
        executors=executors,
        text_generator=text_generator or AgentTextGenerator(config.ai.response_model),
        policy=policy,
        lock=lock,
        confirmation_threshold=config.workflow.confirmation_threshold,
    )
    return MentionHandler(
        orchestrator,
        admission=build_admission(store, config),
        lock=lock,
        responder=responder,
        conversations=conversations,
        bot_user_id=bot_user_id,
    )
