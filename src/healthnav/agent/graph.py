"""LangGraph state graph for one conversational turn.

Flow: call_model → (tools → call_model)* → prettify → save_context
"""

from __future__ import annotations

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from healthnav.agent.nodes import (
    call_model,
    prettify,
    route_model_output,
    save_context,
    tools,
)
from healthnav.agent.state import AgentState, TurnConfig
from healthnav.config import settings


def run_config(turn: TurnConfig, recursion_limit: int | None = None) -> RunnableConfig:
    """Wrap the turn configuration for ``agent.invoke`` / ``agent.stream``.

    ``recursion_limit`` bounds the tools/call_model loop; exceeding it raises
    ``langgraph.errors.GraphRecursionError``.
    """
    return {
        "configurable": turn,
        "recursion_limit": recursion_limit or settings.max_graph_steps,
    }


def build_graph() -> StateGraph:
    """Build and return the compiled turn graph."""
    graph = StateGraph(AgentState)

    # Add nodes
    graph.add_node("call_model", call_model)
    graph.add_node("tools", tools)
    graph.add_node("prettify", prettify)
    graph.add_node("save_context", save_context)

    # Set entry point
    graph.set_entry_point("call_model")

    # Wire edges
    graph.add_conditional_edges("call_model", route_model_output, ["tools", "prettify"])
    graph.add_edge("tools", "call_model")
    graph.add_edge("prettify", "save_context")
    graph.add_edge("save_context", END)

    return graph.compile()


# Module-level compiled graph
agent = build_graph()
