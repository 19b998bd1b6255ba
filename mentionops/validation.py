"""Intent validation against a catalog of downstream tools."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Protocol

from pydantic import BaseModel

from .contracts import Intent, ValidationOutcome

logger = logging.getLogger(__name__)

CONTROL_FIELDS = frozenset({"toolName", "zapierTool", "args", "payload", "id", "recordId"})
MAX_CANDIDATES = 5

ACTION_KEYWORDS: Dict[str, List[str]] = {
    "read": ["get", "find", "list", "search", "lookup", "retrieve"],
    "create": ["create", "add", "new", "insert"],
    "update": ["update", "edit", "modify", "set", "patch"],
    "upsert": ["upsert", "create", "update", "sync"],
    "delete": ["delete", "remove", "archive"],
    "report": ["report", "summary", "analytics", "export"],
}

OBJECT_KEYWORDS: Dict[str, List[str]] = {
    "contact": ["contact", "person", "lead"],
    "company": ["company", "organization", "account"],
    "deal": ["deal", "opportunity", "pipeline"],
    "ticket": ["ticket", "case", "issue"],
    "custom": ["custom", "object"],
}


class ToolDescriptor(BaseModel):
    name: str
    description: str = ""


class PropertyDescriptor(BaseModel):
    """A known property of an integration object type."""

    name: str
    type: Literal["string", "number", "bool", "datetime", "enumeration"] = "string"
    required: bool = False


class ToolCatalog(Protocol):
    async def list_tools(self) -> List[ToolDescriptor]:
        """Return every tool the integration exposes."""


class StaticToolCatalog:
    """Catalog over a fixed tool list."""

    def __init__(self, tools: Iterable[ToolDescriptor | str]) -> None:
        self._tools = [
            t if isinstance(t, ToolDescriptor) else ToolDescriptor(name=t) for t in tools
        ]

    async def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tools)


def score_tool(tool: ToolDescriptor, intent: Intent, preferred_keyword: Optional[str] = None) -> int:
    """Rank how well ``tool`` matches ``intent`` by keyword overlap."""
    name = tool.name.lower()
    text = f"{name} {tool.description.lower()}"
    score = 0
    if preferred_keyword and preferred_keyword.lower() in text:
        score += 4
    if any(k in text for k in OBJECT_KEYWORDS.get(intent.target, [])):
        score += 3
    if any(k in text for k in ACTION_KEYWORDS.get(intent.action, [])):
        score += 3
    if intent.action == "read" and "search" in text:
        score += 1
    if intent.action == "update" and "property" in text:
        score += 1
    return score


def check_properties(intent: Intent, properties: List[PropertyDescriptor]) -> List[str]:
    """Check intent fields against the object's known properties."""
    errors: List[str] = []
    known = {p.name: p for p in properties}
    values = {k: v for k, v in intent.fields.items() if k not in CONTROL_FIELDS}

    if intent.action != "read":
        for prop in properties:
            if prop.required and prop.name not in values:
                errors.append(f"Missing required property {prop.name}")

    for key, value in values.items():
        prop = known.get(key)
        if prop is None:
            errors.append(f"Unknown property {key}")
            continue
        if value is None:
            errors.append(f"Property {key} cannot be null")
            continue
        if prop.type == "number" and (
            isinstance(value, bool) or not isinstance(value, (int, float))
        ):
            errors.append(f"Property {key} must be a number")
        elif prop.type == "string" and not isinstance(value, str):
            errors.append(f"Property {key} must be a string")
    return errors


class ToolCatalogValidator:
    """Resolve the tool for an intent and check its fields.

    An explicit ``fields.toolName`` (or ``zapierTool``) must exist in the
    catalog; otherwise the best keyword match is chosen. When ``properties``
    holds a schema for the intent's object type, fields are checked against
    it as well.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        properties: Optional[Mapping[str, List[PropertyDescriptor]]] = None,
        preferred_keyword: Optional[str] = None,
    ) -> None:
        self._catalog = catalog
        self._properties = dict(properties or {})
        self._preferred_keyword = preferred_keyword

    async def validate(self, intent: Intent) -> ValidationOutcome:
        tools = await self._catalog.list_tools()
        errors: List[str] = []
        explicit = str(
            intent.fields.get("toolName") or intent.fields.get("zapierTool") or ""
        ).strip()

        resolved: Optional[str] = None
        if explicit:
            if any(t.name == explicit for t in tools):
                resolved = explicit
            else:
                errors.append(f"Requested tool '{explicit}' was not found")
        else:
            best: Optional[ToolDescriptor] = None
            best_score = 0
            for tool in tools:
                score = score_tool(tool, intent, self._preferred_keyword)
                if score > best_score:
                    best, best_score = tool, score
            if best is not None:
                resolved = best.name

        if intent.target in self._properties:
            errors.extend(check_properties(intent, self._properties[intent.target]))

        candidates: List[str] = []
        if resolved is None:
            keyword = (self._preferred_keyword or "").lower()
            candidates = [t.name for t in tools if keyword in t.name.lower()][:MAX_CANDIDATES]
            logger.info(f"No tool resolved for {intent.action} {intent.target}")

        return ValidationOutcome(
            ok=not errors and resolved is not None,
            errors=errors,
            resolved_tool=resolved,
            candidates=candidates,
        )
