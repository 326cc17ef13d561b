# =============================================================================
# Tool Planner — Decide call / ask / none for the Current Turn
# =============================================================================
#
# Invoked only when the agent has tools. One model call with a strict JSON
# contract:
#
#   {"action": "call"|"ask"|"none", "toolId": "...", "params": {...},
#    "missing": ["paramA", ...]}
#
# The model's answer is never trusted as-is. After parsing:
#   - unknown toolId                         → none
#   - call with a required param absent      → ask for those params
#   - ask with an empty missing list         → ask for required params
#                                              not yet known (none if all
#                                              are known)
#   - call keeps only scalar params (no objects, arrays or nulls)
#   - unparsable output                      → none
#
# An "ask" plan short-circuits the turn with a clarification message.
# =============================================================================

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from agentdesk.db.models import Tool
from agentdesk.services.llm import LLMProvider, run_prompt
from agentdesk.services.model_output import Parsed, parse_model_json

logger = logging.getLogger(__name__)

PlanAction = Literal["call", "ask", "none"]

PLANNER_PROMPT = """You are a planning component for an AI assistant with optional HTTP tools.
Tools (array):
{catalog}

Conversation (recent):
{history}

Latest user message: {message}

Task: Decide among three actions BEFORE answering:
1. "call"  - you have (or can confidently infer) ALL required parameters for a relevant tool; include params.
2. "ask"   - a tool is clearly relevant BUT at least one required parameter is missing or unclear; list missing names.
3. "none"  - no tool would help or user asks general question.
Output ONLY raw JSON: {{"action":"call"|"ask"|"none","toolId?":"<id>","params?":{{...}},"missing?": ["paramA", ...] }}.
Rules:
- Prefer ONE tool only.
- Do not hallucinate parameter values; if unsure, use action "ask".
- If action is "ask" include only missing required parameter names in "missing".
- If action is "call" you MUST NOT list any missing required param.
- Never include explanations outside JSON."""


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ToolPlan:
    """Validated planner decision."""

    action: PlanAction
    tool: Tool | None = None
    params: dict[str, Any] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)

    @classmethod
    def none(cls) -> ToolPlan:
        return cls(action="none")


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def tool_catalog(tools: Sequence[Tool]) -> list[dict[str, Any]]:
    return [
        {
            "id": t.id,
            "name": t.name,
            "description": t.description or "",
            "method": t.method,
            "endpoint": t.endpoint,
            "parameters": list(t.parameters or []),
        }
        for t in tools
    ]


def build_planner_prompt(tools: Sequence[Tool], history: Sequence[dict[str, str]], message: str) -> str:
    return PLANNER_PROMPT.format(
        catalog=json.dumps(tool_catalog(tools), indent=2),
        history="\n".join(f"{m['role']}: {m['content']}" for m in history),
        message=message,
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_scalar(value: Any) -> bool:
    return value is not None and not isinstance(value, (dict, list, tuple))


def _required_names(tool: Tool) -> list[str]:
    return [p["name"] for p in (tool.parameters or []) if p.get("required")]


def validate_decision(decision: Any, tools: Sequence[Tool]) -> ToolPlan:
    """
    Turn a raw decision object into a consistent ToolPlan.

    Args:
        decision: Parsed planner JSON (any shape).
        tools: The agent's tools.
    """
    if not isinstance(decision, dict):
        return ToolPlan.none()

    action = decision.get("action")
    if action not in ("call", "ask"):
        return ToolPlan.none()

    tool_id = decision.get("toolId")
    tool = next((t for t in tools if t.id == tool_id), None)
    if tool is None:
        logger.info("Planner chose unknown tool %r; ignoring", tool_id)
        return ToolPlan.none()

    raw_params = decision.get("params")
    params = (
        {str(k): v for k, v in raw_params.items() if _is_scalar(v)}
        if isinstance(raw_params, dict)
        else {}
    )
    required = _required_names(tool)
    absent = [name for name in required if name not in params or params[name] == ""]

    if action == "call":
        if absent:
            logger.info("Planner call for %s lacks %s; asking instead", tool.name, absent)
            return ToolPlan(action="ask", tool=tool, params=params, missing=absent)
        return ToolPlan(action="call", tool=tool, params=params)

    raw_missing = decision.get("missing")
    missing = (
        [str(m) for m in raw_missing if isinstance(m, (str, int, float)) and str(m)]
        if isinstance(raw_missing, list)
        else []
    )
    if not missing:
        missing = absent
    if not missing:
        logger.info("Planner asked for %s with nothing missing; skipping tool", tool.name)
        return ToolPlan.none()
    return ToolPlan(action="ask", tool=tool, params=params, missing=missing)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def plan_tool_use(
    llm: LLMProvider,
    tools: Sequence[Tool],
    history: Sequence[dict[str, str]],
    message: str,
) -> ToolPlan:
    """
    Ask the model whether to call a tool, ask for parameters, or do neither.

    Backend errors propagate; malformed output degrades to `none`.
    """
    if not tools:
        return ToolPlan.none()

    response = await run_prompt(llm, build_planner_prompt(tools, history, message))
    result = parse_model_json(response.content, validator=lambda v: isinstance(v, dict) and "action" in v)
    if not isinstance(result, Parsed):
        logger.warning("Planner output unparsable (%s); continuing without tools", result.reason)
        return ToolPlan.none()

    plan = validate_decision(result.value, tools)
    logger.info(
        "Tool plan: %s%s",
        plan.action,
        f" ({plan.tool.name})" if plan.tool else "",
    )
    return plan


def _planned_tool(plan: ToolPlan) -> Tool:
    if plan.tool is None:
        raise ValueError(f"'{plan.action}' plan has no tool")
    return plan.tool


def build_clarification(plan: ToolPlan) -> str:
    """
    User-facing request for the parameters an "ask" plan still needs.

    Raises:
        ValueError: The plan names no tool.
    """
    tool = _planned_tool(plan)
    missing = plan.missing
    quoted = ", ".join(f'"{name}"' for name in missing)
    text = f'I can use the tool "{tool.name}" to help, but I still need: {quoted}.'

    described = [p for p in (tool.parameters or []) if p.get("name") in missing]
    if described:
        text += "\n" + "\n".join(
            f"- {p['name']}{' (required)' if p.get('required') else ''}: {p.get('description') or ''}"
            for p in described
        )

    suffix = "s" if len(missing) > 1 else ""
    return f"{text}\nPlease provide the missing value{suffix}."


def clarification_metadata(plan: ToolPlan) -> dict[str, Any]:
    return {
        "toolId": _planned_tool(plan).id,
        "missing": list(plan.missing),
        "knownParams": dict(plan.params),
    }
