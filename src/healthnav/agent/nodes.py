"""Processing nodes for the turn graph.

Each node is a function that receives the current ``AgentState`` (and, where
it needs it, the run config whose ``configurable`` holds the ``TurnConfig``)
and returns a dict with the keys it wants to update.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any

from langchain_core.runnables import RunnableConfig

from healthnav.agent.state import AgentState, TurnConfig
from healthnav.agent.suggestions import suggestions_from_conversation
from healthnav.agent.tools import get_tool, tool_schemas
from healthnav.background import run_detached
from healthnav.llm import AGENT_SYSTEM_PROMPT, ModelRole, chat, strip_code_fences
from healthnav.memory import MemoryStore
from healthnav.rag.curator import curate_context
from healthnav.rag.facts import ChatMode, extract_structured_facts
from healthnav.rag.intent import detect_intent
from healthnav.rag.rerank import rerank
from healthnav.rag.retriever import build_search_query, retrieve_chunks
from healthnav.status import (
    ACTION,
    ANSWER_READY,
    GENERATING_RESPONSE,
    SUGGESTIONS_PENDING,
    SUGGESTIONS_READY,
    status_event,
)

logger = logging.getLogger(__name__)

# Module-level memory store, created on first use
_memory_store: MemoryStore | None = None
_memory_store_lock = threading.Lock()


def _get_memory_store() -> MemoryStore:
    global _memory_store
    if _memory_store is None:
        with _memory_store_lock:
            if _memory_store is None:
                _memory_store = MemoryStore()
    return _memory_store


def _turn(config: RunnableConfig) -> TurnConfig:
    """The turn configuration passed as ``configurable``."""
    return config["configurable"]


def _chat_mode(value: str | None) -> ChatMode:
    try:
        return ChatMode(value or ChatMode.FAST)
    except ValueError:
        logger.warning("Unknown chat mode %r, using %s", value, ChatMode.FAST.value)
        return ChatMode.FAST


def _latest_user_message(messages: list[dict[str, Any]]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content", "")
    return ""


def _notify(config: TurnConfig, status: str, **fields: Any) -> None:
    config["status"].send_to_user(
        config["user_id"], status_event(status, config["patient_id"], **fields)
    )


# ------------------------------------------------------------------
# Node functions
# ------------------------------------------------------------------


def call_model(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
    """Build the grounded prompt and ask the model for an answer or a tool call."""
    turn = _turn(config)
    messages = state["messages"]
    patient_id = turn["patient_id"]
    question = _latest_user_message(messages)
    original_question = turn.get("original_question") or question

    plan = detect_intent(original_question, patient_id)

    memory_store = state.get("memory_store") or _get_memory_store()
    memories = memory_store.recall(question, patient_id)

    search_query = build_search_query(question, original_question)
    candidates = retrieve_chunks(search_query, patient_id, plan)
    selected = rerank(candidates, plan)
    logger.info("Selected %d of %d candidate chunks", len(selected), len(candidates))

    facts = extract_structured_facts(
        selected, search_query, patient_id, _chat_mode(turn.get("chat_mode"))
    )

    history = turn.get("history", [])
    curated = curate_context(
        history,
        memories,
        selected,
        facts,
        turn.get("docs", []),
        question,
        container_name=turn.get("container_name", ""),
    )

    system_prompt = AGENT_SYSTEM_PROMPT.format(
        system_time=turn.get("system_time", ""),
        curated_context=curated,
    )
    response = chat(
        [{"role": "system", "content": system_prompt}, *history, *messages],
        ModelRole.AGENT,
        tools=tool_schemas(),
    )
    return {
        "messages": [*messages, response],
        "memory_store": memory_store,
        "curated_context": curated,
    }


def route_model_output(state: AgentState, config: RunnableConfig) -> str:
    """Conditional edge: run a requested tool, or finish the answer."""
    if state["messages"][-1].get("tool_calls"):
        return "tools"
    _notify(_turn(config), GENERATING_RESPONSE)
    return "prettify"


def tools(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
    """Execute the first requested tool call and append its result."""
    turn = _turn(config)
    messages = state["messages"]
    call = messages[-1]["tool_calls"][0]["function"]
    name, arguments = call["name"], call.get("arguments") or {}

    _notify(turn, ACTION, action={"name": name, "arguments": arguments})
    tool = get_tool(name)
    result = tool.invoke(arguments, {**turn, "curated_context": state.get("curated_context", "")})

    return {"messages": [*messages, {"role": "tool", "content": result, "tool_name": name}]}


NEW_TAB_HOSTS = ("trialgpt.app",)


def _new_tab_links(text: str) -> str:
    for host in NEW_TAB_HOSTS:
        host_url = rf"https?://(?:www\.)?{re.escape(host)}[^\s\"')]*"
        text = re.sub(
            rf"\[([^\]]+)\]\(({host_url})\)",
            r'<a href="\2" target="_blank">\1</a>',
            text,
        )
        text = re.sub(
            rf"<a\s+href=(['\"])({host_url})\1(?![^>]*target=)",
            r'<a href="\2" target="_blank"',
            text,
        )
    return text


def prettify(state: AgentState) -> dict[str, Any]:
    """Strip code fences around the answer and open external links in a new tab."""
    messages = state["messages"]
    final = messages[-1]
    content = _new_tab_links(strip_code_fences(final.get("content", "")))
    return {"messages": [*messages[:-1], {**final, "content": content}]}


def persist_turn(
    messages: list[dict[str, Any]],
    question: str,
    answer: str,
    memory_store: MemoryStore,
    config: TurnConfig,
) -> None:
    """Trailing book-keeping: memory write, then follow-up suggestions."""
    try:
        _notify(config, SUGGESTIONS_PENDING)
        memory_store.remember(question, answer, config["patient_id"], config.get("system_time", ""))
        suggestions = suggestions_from_conversation(messages)
        _notify(config, SUGGESTIONS_READY, suggestions=suggestions)
    except Exception:
        logger.exception("Saving context failed for patient %s", config.get("patient_id"))


def save_context(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
    """Deliver the answer, then detach memory and suggestion work.

    The user already has the answer once it is sent, so nothing raised
    here reaches the caller.
    """
    turn = _turn(config)
    try:
        messages = state["messages"]
        answer = messages[-1].get("content", "")
        _notify(turn, ANSWER_READY, answer=answer)

        memory_store = state.get("memory_store") or _get_memory_store()
        run_detached(
            persist_turn,
            list(messages),
            _latest_user_message(messages),
            answer,
            memory_store,
            turn,
        )
    except Exception:
        logger.exception("Saving context failed for patient %s", turn.get("patient_id"))
    return {}
