"""Agent state and turn configuration — the typed dictionaries the graph threads through."""

from __future__ import annotations

from typing import Any, TypedDict

from healthnav.memory import MemoryStore
from healthnav.status import StatusChannel


class AgentState(TypedDict, total=False):
    """State that flows through every node in the LangGraph turn graph.

    Fields use ``total=False`` so nodes can return partial updates
    (only the keys they modify). Nodes never mutate it in place.
    """

    # Role-tagged messages in Ollama wire format
    messages: list[dict[str, Any]]

    # After call_model
    memory_store: MemoryStore
    curated_context: str


class TurnConfig(TypedDict, total=False):
    """Ambient, read-only configuration for one turn.

    Passed to the graph as ``config["configurable"]``.
    """

    patient_id: str
    user_id: str
    user_lang: str
    container_name: str
    system_time: str

    # Prior conversation, oldest first
    history: list[dict[str, Any]]
    # Document references explicitly attached to this turn
    docs: list[str]
    # The user's own wording when ``messages`` carries a translation
    original_question: str
    chat_mode: str

    status: StatusChannel
