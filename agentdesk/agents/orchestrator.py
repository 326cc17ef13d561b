# =============================================================================
# LangGraph Orchestrator — Chat Turn Graph
# =============================================================================
#
# Wires retrieval, tool planning, tool execution and composition into a
# LangGraph StateGraph. The graph is pure: it reads the inputs placed in
# the state and returns the reply plus message metadata. Persistence is
# the caller's job (services/conversation.py).
#
# GRAPH TOPOLOGY:
#
#   START ──▶ retrieve ──┬── (no tools) ──────────────────────▶ compose ──▶ END
#                        └── plan ──┬── none ─────────────────▶ compose
#                                   ├── call ──▶ execute_tool ─▶ compose
#                                   └── ask ───▶ clarify ─────────────────▶ END
#
# DESIGN DECISION: Retrieval runs before planning so a failed or skipped
# tool still leaves the knowledge context for metadata, and the planner
# is only paid for when the agent actually has tools.
#
# DESIGN DECISION: Provider, embedder and HTTP client travel in the state.
# Not JSON-serialisable; safe because no checkpointer is configured.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx
from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from agentdesk.agents.composer import CompositionResult, compose
from agentdesk.agents.planner import (
    ToolPlan,
    build_clarification,
    clarification_metadata,
    plan_tool_use,
)
from agentdesk.agents.retriever import Candidate, Embedder, retrieve
from agentdesk.db.models import Tool
from agentdesk.services.llm import LLMProvider
from agentdesk.services.tool_executor import execute_tool

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Turn State Schema
# ---------------------------------------------------------------------------


class TurnState(TypedDict, total=False):
    """State flowing through the turn graph; nodes return partial updates."""

    # --- Input (set by caller) ---
    message: str
    history: list[dict[str, str]]      # recent window, latest user message last
    system_instructions: str
    candidates: list[Candidate]        # processed knowledge documents
    tools: list[Tool]
    llm: LLMProvider
    embedder: Embedder | None
    http_client: httpx.AsyncClient | None
    allow_internal: bool | None

    # --- Intermediate (set by nodes) ---
    knowledge: str
    plan: ToolPlan
    tool_run: dict[str, Any] | None
    composition: CompositionResult

    # --- Output ---
    content: str
    metadata: dict[str, Any]


@dataclass
class TurnResult:
    content: str
    metadata: dict[str, Any]


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def retrieve_node(state: TurnState) -> dict:
    knowledge = await retrieve(
        state["message"],
        state.get("candidates") or [],
        embedder=state.get("embedder"),
    )
    return {"knowledge": knowledge}


async def plan_node(state: TurnState) -> dict:
    plan = await plan_tool_use(
        state["llm"],
        state.get("tools") or [],
        state.get("history") or [],
        state["message"],
    )
    return {"plan": plan}


async def clarify_node(state: TurnState) -> dict:
    """Short-circuit: ask the user for the missing tool parameters."""
    plan = state["plan"]
    return {
        "content": build_clarification(plan),
        "metadata": {
            "hasKnowledgeContext": bool(state.get("knowledge")),
            "toolClarification": clarification_metadata(plan),
        },
    }


async def execute_tool_node(state: TurnState) -> dict:
    plan = state["plan"]
    run = await execute_tool(
        plan.tool,
        plan.params,
        client=state.get("http_client"),
        allow_internal=state.get("allow_internal"),
    )
    return {"tool_run": run.to_dict()}


async def compose_node(state: TurnState) -> dict:
    knowledge = state.get("knowledge") or ""
    tool_run = state.get("tool_run")
    result = await compose(
        state["llm"],
        state.get("system_instructions") or "",
        state.get("history") or [],
        knowledge=knowledge,
        tool_run=tool_run,
    )

    metadata: dict[str, Any] = {
        "hasKnowledgeContext": bool(knowledge),
        "tokensUsed": result.tokens_used,
        "responseTime": result.response_time_ms,
    }
    if tool_run is not None:
        metadata["toolRun"] = tool_run

    return {"composition": result, "content": result.content, "metadata": metadata}


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def route_after_retrieve(state: TurnState) -> str:
    return "plan" if state.get("tools") else "compose"


def route_after_plan(state: TurnState) -> str:
    action = state["plan"].action
    if action == "ask":
        return "clarify"
    if action == "call":
        return "execute_tool"
    return "compose"


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(TurnState)
_builder.add_node("retrieve", retrieve_node)
_builder.add_node("plan", plan_node)
_builder.add_node("clarify", clarify_node)
_builder.add_node("execute_tool", execute_tool_node)
_builder.add_node("compose", compose_node)

_builder.add_edge(START, "retrieve")
_builder.add_conditional_edges("retrieve", route_after_retrieve, ["plan", "compose"])
_builder.add_conditional_edges("plan", route_after_plan, ["clarify", "execute_tool", "compose"])
_builder.add_edge("execute_tool", "compose")
_builder.add_edge("clarify", END)
_builder.add_edge("compose", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def respond(
    message: str,
    history: Sequence[dict[str, str]],
    system_instructions: str,
    candidates: Sequence[Candidate],
    tools: Sequence[Tool],
    llm: LLMProvider,
    embedder: Embedder | None = None,
    http_client: httpx.AsyncClient | None = None,
    allow_internal: bool | None = None,
) -> TurnResult:
    """
    Run one chat turn through the graph.

    Args:
        message: Latest user message (already included in `history`).
        history: Recent messages as role/content dicts.
        system_instructions: Agent instructions with tone/style directives.
        candidates: Processed knowledge documents of the agent.
        tools: The agent's tools; planning is skipped when empty.
        llm: Generative backend.
        embedder: Query embedding override (tests).
        http_client: Outbound client override for tool calls (tests).
        allow_internal: Override for loopback tool targets.

    Returns:
        TurnResult with the reply and its message metadata.
    """
    initial_state: TurnState = {
        "message": message,
        "history": list(history),
        "system_instructions": system_instructions,
        "candidates": list(candidates),
        "tools": list(tools),
        "llm": llm,
        "embedder": embedder,
        "http_client": http_client,
        "allow_internal": allow_internal,
        "tool_run": None,
    }

    logger.info(
        "Invoking turn graph: message='%s', documents=%d, tools=%d",
        message[:80],
        len(candidates),
        len(tools),
    )
    result = await graph.ainvoke(initial_state)

    return TurnResult(content=result["content"], metadata=result["metadata"])
