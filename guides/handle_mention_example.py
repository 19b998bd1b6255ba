"""Handle a chat mention end to end with in-memory backends.

Runs without Redis, Postgres or model credentials: the planner and reply
writer are pydantic-ai agents on ``TestModel``, and the executor returns a
canned CRM search result.
"""

import asyncio

from pydantic_ai.models.test import TestModel

from mentionops import (
    AgentPlanner,
    AgentTextGenerator,
    MentionEvent,
    StaticToolCatalog,
    ToolCatalogValidator,
    build_handler,
)
from mentionops.config import MentionOpsConfig
from mentionops.persistence import get_ledger


class CannedExecutor:
    """Pretends to call the CRM and returns two deals."""

    async def execute(self, intent, tool_name, arguments):
        print(f"🔧 {tool_name} called with {arguments}")
        return {"results": [{"id": "101", "name": "Acme renewal"}, {"id": "102", "name": "Globex"}]}


class PrintResponder:
    async def post(self, channel_id, thread_id, text, blocks=None):
        print(f"💬 [{channel_id}/{thread_id}] {text}")


async def main():
    config = MentionOpsConfig()
    catalog = StaticToolCatalog(["hubspot_find_deals", "hubspot_update_deal"])

    handler = build_handler(
        validator=ToolCatalogValidator(catalog, preferred_keyword="hubspot"),
        executors={"direct": CannedExecutor(), "gateway": CannedExecutor()},
        responder=PrintResponder(),
        planner=AgentPlanner(
            TestModel(custom_output_args={"action": "read", "object": "deal", "limit": 2})
        ),
        text_generator=AgentTextGenerator(
            TestModel(custom_output_text="Found **2 deals**: Acme renewal and Globex.")
        ),
        bot_user_id="UBOT",
        config=config,
    )

    event = MentionEvent(
        tenant_id="T1",
        event_id="Ev1",
        channel_id="C1",
        ts="1717000000.000100",
        user_id="U1",
        text="<@UBOT> show me two open deals",
    )
    outcome = await handler.handle(event)
    print(f"✅ {outcome.status} (job {outcome.job_id})")

    # Replaying the same delivery while it is in flight would be skipped;
    # once finished the history is available from the ledger.
    ledger = get_ledger()
    for step in await ledger.list_steps(outcome.job_id):
        print(f"  {step.sequence}. {step.step_type}: {step.status}")


if __name__ == "__main__":
    asyncio.run(main())
