"""mentionops: durable orchestration for chat-triggered automation."""

from .bootstrap import build_handler
from .collaborators import AgentPlanner, AgentTextGenerator
from .contracts import ConversationMessage, EventMeta, Intent, JobMeta, WorkflowResult
from .coordination import AdmissionControl, DistributedLock, get_coordination_store
from .handler import MentionEvent, MentionHandler
from .orchestrator import WorkflowOrchestrator
from .persistence import get_ledger
from .policy import ChannelPolicy, ChannelSpec
from .validation import StaticToolCatalog, ToolCatalogValidator

__version__ = "0.1.0"
__all__ = [
    "AdmissionControl",
    "AgentPlanner",
    "AgentTextGenerator",
    "ChannelPolicy",
    "ChannelSpec",
    "ConversationMessage",
    "DistributedLock",
    "EventMeta",
    "Intent",
    "JobMeta",
    "MentionEvent",
    "MentionHandler",
    "StaticToolCatalog",
    "ToolCatalogValidator",
    "WorkflowOrchestrator",
    "WorkflowResult",
    "build_handler",
    "get_coordination_store",
    "get_ledger",
]
