"""Entry point for inbound mention events.

Wraps the orchestrator in admission control and the per-thread lock, and
posts the outcome back to the conversation.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Literal, Optional, Protocol, Sequence

from pydantic import BaseModel

from .contracts import ConversationMessage, EventMeta, JobMeta, WorkflowResult
from .coordination.admission import AdmissionControl, idempotency_key
from .coordination.lock import DistributedLock, thread_scope
from .formatting import build_result_blocks
from .orchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)

BUSY_TEXT = "Another request in this thread is still running. Please try again shortly."
ERROR_TEXT = "Sorry, something went wrong. Please try again in a little while."


class MentionEvent(BaseModel):
    """Inbound mention, already verified by the conversational surface."""

    tenant_id: str
    event_id: str
    channel_id: str
    ts: str
    thread_ts: Optional[str] = None
    event_ts: Optional[str] = None
    user_id: Optional[str] = None
    bot_id: Optional[str] = None
    text: str = ""

    @property
    def thread_id(self) -> str:
        return self.thread_ts or self.ts

    @property
    def delivery_ts(self) -> str:
        return self.event_ts or self.ts


class HandlerOutcome(BaseModel):
    status: Literal["processed", "duplicate", "busy", "ignored", "error"]
    job_id: Optional[str] = None
    result: Optional[WorkflowResult] = None


class Responder(Protocol):
    async def post(
        self,
        channel_id: str,
        thread_id: str,
        text: str,
        blocks: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        """Post a reply into the conversation thread."""


class ConversationSource(Protocol):
    async def fetch(self, channel_id: str, thread_id: str) -> Sequence[ConversationMessage]:
        """Return the thread's history, oldest first."""


def strip_mention(text: str, bot_user_id: Optional[str]) -> str:
    if not text or not bot_user_id:
        return (text or "").strip()
    return re.sub(rf"<@{re.escape(bot_user_id)}>", "", text).strip()


class MentionHandler:
    """Admission check, thread lock, workflow run and reply for one event."""

    def __init__(
        self,
        orchestrator: WorkflowOrchestrator,
        admission: AdmissionControl,
        lock: DistributedLock,
        responder: Responder,
        conversations: Optional[ConversationSource] = None,
        bot_user_id: Optional[str] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._admission = admission
        self._lock = lock
        self._responder = responder
        self._conversations = conversations
        self.bot_user_id = bot_user_id

    async def _history(self, event: MentionEvent) -> list[ConversationMessage]:
        if self._conversations is not None:
            return list(await self._conversations.fetch(event.channel_id, event.thread_id))
        return [ConversationMessage(role="user", content=strip_mention(event.text, self.bot_user_id))]

    async def handle(self, event: MentionEvent) -> HandlerOutcome:
        if event.bot_id:
            logger.debug(f"Ignoring bot-authored event {event.event_id}")
            return HandlerOutcome(status="ignored")

        key = idempotency_key(event.tenant_id, event.event_id, event.delivery_ts)
        if not await self._admission.admit(key):
            return HandlerOutcome(status="duplicate")

        job_id = str(uuid.uuid4())
        try:

            async def run() -> WorkflowResult:
                logger.debug(f"Thread lock held for job_id={job_id}")
                history = await self._history(event)
                result = await self._orchestrator.run_workflow(
                    JobMeta(
                        job_id=job_id,
                        tenant_id=event.tenant_id,
                        channel_id=event.channel_id,
                        thread_id=event.thread_id,
                        request_id=str(uuid.uuid4()),
                    ),
                    history,
                    EventMeta(
                        source_event_id=event.event_id,
                        event_ts=event.delivery_ts,
                        user_id=event.user_id,
                        text=event.text,
                    ),
                )
                await self._responder.post(
                    event.channel_id,
                    event.thread_id,
                    result.text,
                    blocks=build_result_blocks(result),
                )
                return result

            locked = await self._lock.with_exclusive(
                thread_scope(event.tenant_id, event.thread_id), run
            )
            if not locked.ok:
                logger.info(f"Thread {event.thread_id} busy; event {event.event_id} deferred")
                await self._responder.post(event.channel_id, event.thread_id, BUSY_TEXT)
                return HandlerOutcome(status="busy")

            logger.info(f"Job {job_id} finished with status {locked.value.status}")
            return HandlerOutcome(status="processed", job_id=job_id, result=locked.value)
        except Exception:
            logger.exception(f"Error while handling event {event.event_id}")
            await self._responder.post(event.channel_id, event.thread_id, ERROR_TEXT)
            return HandlerOutcome(status="error", job_id=job_id)
        finally:
            await self._admission.release(key)
