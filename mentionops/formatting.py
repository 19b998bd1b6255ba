"""Markup rewriting for the chat surface."""

from __future__ import annotations

import re
from typing import Any

from .contracts import WorkflowResult

_LINK = re.compile(r"\[(.*?)\]\((.*?)\)")


def format_surface_text(text: str) -> str:
    """Translate markdown links and bold into the surface's mrkdwn syntax."""
    return _LINK.sub(r"<\2|\1>", text).replace("**", "*")


def build_result_blocks(result: WorkflowResult) -> list[dict[str, Any]]:
    """Render a workflow result as a section plus an intent context line."""
    blocks: list[dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": result.text}}
    ]
    if result.intent is not None:
        blocks.append(
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Intent: `{result.intent.action} {result.intent.target}` ({result.status})",
                    }
                ],
            }
        )
    return blocks
