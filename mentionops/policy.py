"""Budgeted execution channel selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .contracts import Action, Intent, ToolBudget
from .errors import BudgetExceeded

logger = logging.getLogger(__name__)

BudgetField = Literal["max_zap_calls", "max_hs_reads", "max_hs_writes"]
READ_ACTIONS = frozenset({"read", "report"})


class ChannelSpec(BaseModel):
    """Declarative description of one downstream execution path.

    ``priority`` orders channels by latency; lower values are preferred when
    several channels could serve an intent.
    """

    name: str
    priority: int = 0
    actions: List[Action] = Field(
        default_factory=lambda: ["read", "create", "update", "upsert", "delete", "report"]
    )
    max_records: Optional[int] = None
    read_budget: BudgetField
    write_budget: BudgetField
    cost: Literal["call", "record"] = "call"
    record_lock: bool = False
    aliases: List[str] = Field(default_factory=list)

    def supports(self, intent: Intent) -> bool:
        if intent.action not in self.actions:
            return False
        if (
            self.max_records is not None
            and intent.action in READ_ACTIONS
            and intent.limit > self.max_records
        ):
            return False
        return True

    def budget_field(self, intent: Intent) -> BudgetField:
        return self.read_budget if intent.action in READ_ACTIONS else self.write_budget

    def required_units(self, intent: Intent) -> int:
        if self.cost == "call":
            return 1
        # writes address a single record; reads consume one unit per record
        return intent.limit if intent.action in READ_ACTIONS else 1

    def remaining(self, budget: ToolBudget, intent: Intent) -> int:
        return getattr(budget, self.budget_field(intent))

    def affordable(self, intent: Intent) -> bool:
        return self.remaining(intent.tool_budget, intent) >= self.required_units(intent)


def default_channels() -> list[ChannelSpec]:
    """Low-latency direct API plus the automation gateway."""
    return [
        ChannelSpec(
            name="direct",
            priority=0,
            actions=["read", "create", "update", "upsert", "delete"],
            max_records=20,
            read_budget="max_hs_reads",
            write_budget="max_hs_writes",
            cost="record",
            record_lock=True,
            aliases=["sdk"],
        ),
        ChannelSpec(
            name="gateway",
            priority=10,
            read_budget="max_zap_calls",
            write_budget="max_zap_calls",
            cost="call",
            aliases=["zapier"],
        ),
    ]


@dataclass(frozen=True)
class ChannelSelected:
    channel: ChannelSpec


@dataclass(frozen=True)
class BudgetDenied:
    reason: str


ChannelDecision = Union[ChannelSelected, BudgetDenied]


class ChannelPolicy:
    """Chooses an execution channel for an intent within its budget."""

    def __init__(self, channels: Iterable[ChannelSpec] | None = None) -> None:
        specs = list(channels) if channels is not None else default_channels()
        if not specs:
            raise ValueError("ChannelPolicy requires at least one channel")
        self._channels: Sequence[ChannelSpec] = sorted(specs, key=lambda c: c.priority)

    @property
    def channels(self) -> Sequence[ChannelSpec]:
        return self._channels

    def get(self, name: str) -> Optional[ChannelSpec]:
        """Look up a channel by name or by one of its hint aliases."""
        name = name.lower()
        for channel in self._channels:
            if name == channel.name.lower() or name in (a.lower() for a in channel.aliases):
                return channel
        return None

    def hint_names(self) -> list[str]:
        return ["auto", *(c.name for c in self._channels)]

    def resolve(self, intent: Intent) -> ChannelDecision:
        hint = (intent.channel_hint or "auto").lower()
        if hint != "auto":
            hinted = self.get(hint)
            if hinted is None:
                logger.warning(f"Ignoring unknown channel hint {hint!r}")
            elif hinted.supports(intent) and hinted.affordable(intent):
                return ChannelSelected(hinted)
            else:
                logger.info(f"Channel hint {hint!r} cannot serve intent; selecting automatically")

        supporting = [c for c in self._channels if c.supports(intent)]
        for channel in supporting:
            if channel.affordable(intent):
                logger.debug(f"Selected channel {channel.name} for {intent.action} {intent.target}")
                return ChannelSelected(channel)

        if not supporting:
            return BudgetDenied(
                f"No execution channel supports {intent.action} {intent.target} "
                f"with limit {intent.limit}."
            )
        exhausted = ", ".join(
            f"{c.name} ({c.budget_field(intent)}={c.remaining(intent.tool_budget, intent)}, "
            f"needs {c.required_units(intent)})"
            for c in supporting
        )
        return BudgetDenied(f"Execution budget exhausted for every channel: {exhausted}.")

    def select_channel(self, intent: Intent) -> ChannelSpec:
        """Return the channel for ``intent`` or raise :class:`BudgetExceeded`."""
        decision = self.resolve(intent)
        if isinstance(decision, BudgetDenied):
            raise BudgetExceeded(decision.reason)
        return decision.channel
