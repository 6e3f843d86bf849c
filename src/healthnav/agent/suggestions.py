"""Follow-up question suggestions generated after the answer is delivered."""

from __future__ import annotations

from typing import Any

from healthnav.config import settings
from healthnav.llm import SUGGESTIONS_PROMPT, ModelRole, generate_json

SYSTEM_SUGGESTIONS = "You help patients continue a conversation about their health records."


def format_chat_history(messages: list[dict[str, Any]]) -> str:
    return "\n".join(
        f"{m['role']}: {m.get('content', '')}"
        for m in messages
        if m.get("role") in {"user", "assistant"} and m.get("content")
    )


def suggestions_from_conversation(messages: list[dict[str, Any]], count: int | None = None) -> list[str]:
    count = count or settings.max_suggestions
    result = generate_json(
        SUGGESTIONS_PROMPT.format(chat_history=format_chat_history(messages), count=count),
        SYSTEM_SUGGESTIONS,
        ModelRole.SUGGESTIONS,
    )
    suggestions = result.get("suggestions", [])
    return [str(s) for s in suggestions if s][:count]
