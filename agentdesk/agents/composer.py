# =============================================================================
# Response Composer — Final Assistant Message for a Turn
# =============================================================================
#
# Three paths, chosen by what the turn produced upstream:
#
#   tool run    → answer from the tool result (truncated JSON), or explain
#                 the failure; empty output → fixed apology
#   knowledge   → grounded reply over the recent transcript, knowledge is
#                 the sole source of facts
#   neither     → one classify-and-reply call; casual small talk gets a
#                 warm reply, information requests get a refusal, and
#                 unparsable output gets the static refusal
#
# Every path replies in the language of the latest user message. The no-
# knowledge path never returns free-form model text, only the `reply`
# field of a validated JSON object or a fixed string.
# =============================================================================

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from agentdesk.config import settings
from agentdesk.services.llm import LLMProvider, run_prompt
from agentdesk.services.model_output import Parsed, has_string_field, parse_model_json

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are an assistant."

INSUFFICIENT_INFORMATION_REPLY = (
    "I don't have enough information to answer that from the provided knowledge. "
    "Could you share more details or upload relevant documents?"
)
SHORT_INSUFFICIENT_REPLY = "I don't have enough information to answer that from the provided knowledge."
TOOL_FALLBACK_REPLY = "I had trouble forming a response."

STRICT_GROUNDING_INSTRUCTION = (
    "Important: Use the provided knowledge below as the sole source of factual "
    "information for answering the user's question. You are allowed and "
    "encouraged to summarize, explain, or rephrase the information in your own "
    "words to make it clearer, but do NOT add facts, make assumptions, or invent "
    "information that is not present in the provided knowledge. If the provided "
    "knowledge does not contain enough information to answer the user's "
    'question, reply the user with something similar like: "I don\'t have '
    'enough information to answer that from the provided knowledge."'
)

LANGUAGE_INSTRUCTION = (
    "Please reply in the same language as the user's messages. If the user "
    "switches languages, prefer the language used in the user's most recent message."
)

CLASSIFY_AND_REPLY_PROMPT = """{system_prompt}

You have NO domain knowledge/context available for answering factual questions right now.
Decide if the user's latest message is CASUAL (greeting / thanks / pleasantry / small-talk) or INFO_REQUEST (asks for facts, explanations, instructions, details, problem-solving, or anything needing knowledge).
Then produce an appropriate reply.
Rules:
1. If CASUAL: respond warmly in 1-2 sentences. You may invite them to ask something about their agents or knowledge.
2. If INFO_REQUEST: DO NOT invent facts. Respond in 1-3 short sentences saying you lack provided knowledge to answer and (optionally) request specific missing info or suggest uploading relevant documents.
3. ALWAYS reply in the same language as the user's latest message.
4. Output ONLY raw JSON with this exact shape (no markdown, no backticks): {{"category":"casual"|"info_request","reply":"<your response>"}}
5. Do not add any other keys or text outside the JSON.

Conversation Context (recent, may be empty):
{context}

Latest User Message: {message}"""

GROUNDED_PROMPT = """{system_prompt}

Please respond to the following conversation using only the allowed knowledge/context above.
Continue the conversation appropriately.

{transcript}"""

TOOL_ANSWER_PROMPT = """{system_instructions}

A tool was executed. Tool result (JSON):
{tool_result}

User message: {message}
Compose the best helpful answer. If tool failed, gracefully explain inability."""


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class CompositionResult:
    """Final reply plus usage figures stored in message metadata."""

    content: str
    model: str | None = None
    tokens_used: int = 0
    response_time_ms: int = 0
    category: str | None = None  # casual / info_request on the no-knowledge path


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------


def build_system_instructions(instructions: str | None, tone: str | None, style: str | None) -> str:
    """Agent instructions + tone directive + style directive, blank-line joined."""
    parts = [
        instructions or "",
        f"Please adopt a {tone} tone when replying." if tone else "",
        f"Respond in a {style} style." if style else "",
    ]
    return "\n\n".join(p for p in parts if p)


def build_system_prompt(system_instructions: str, knowledge: str = "") -> str:
    """Base prompt with the grounding and language rules, plus knowledge if any."""
    prompt = "\n\n".join(
        [system_instructions or DEFAULT_SYSTEM_PROMPT, STRICT_GROUNDING_INSTRUCTION, LANGUAGE_INSTRUCTION]
    )
    if knowledge:
        prompt += f"\n\nAdditional Knowledge Context:\n{knowledge}"
    return prompt


def format_transcript(history: Sequence[dict[str, str]]) -> str:
    return "\n".join(f"{m['role']}: {m['content']}" for m in history)


def latest_user_message(history: Sequence[dict[str, str]]) -> str:
    for message in reversed(history):
        if message["role"] == "user":
            return message["content"]
    return ""


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


async def compose_grounded(
    llm: LLMProvider,
    system_instructions: str,
    history: Sequence[dict[str, str]],
    knowledge: str,
) -> CompositionResult:
    prompt = GROUNDED_PROMPT.format(
        system_prompt=build_system_prompt(system_instructions, knowledge),
        transcript=format_transcript(history),
    )
    response = await run_prompt(llm, prompt)
    content = response.content.strip() or SHORT_INSUFFICIENT_REPLY
    return CompositionResult(content=content, model=response.model, tokens_used=response.total_tokens)


async def compose_without_knowledge(
    llm: LLMProvider,
    system_instructions: str,
    history: Sequence[dict[str, str]],
) -> CompositionResult:
    """Classify the latest message as casual / info_request and reply in one call."""
    message = latest_user_message(history)
    window = settings.classification_context_messages
    prior = list(history)[-(window + 1):-1] if window > 0 else []

    prompt = CLASSIFY_AND_REPLY_PROMPT.format(
        system_prompt=build_system_prompt(system_instructions),
        context=format_transcript(prior) or "(none)",
        message=message,
    )
    response = await run_prompt(llm, prompt)

    result = parse_model_json(response.content, validator=has_string_field("category", "reply"))
    if not isinstance(result, Parsed):
        logger.warning("Classification output unparsable (%s); using fallback reply", result.reason)
        return CompositionResult(
            content=INSUFFICIENT_INFORMATION_REPLY,
            model=response.model,
            tokens_used=response.total_tokens,
        )

    category = result.value["category"].strip().lower()
    reply = result.value["reply"].strip()
    if category == "casual" and reply:
        content = reply
    elif category == "casual":
        content = INSUFFICIENT_INFORMATION_REPLY
    else:
        content = reply or SHORT_INSUFFICIENT_REPLY

    return CompositionResult(
        content=content,
        model=response.model,
        tokens_used=response.total_tokens,
        category=category,
    )


async def compose_from_tool(
    llm: LLMProvider,
    system_instructions: str,
    tool_run: dict[str, Any],
    message: str,
) -> CompositionResult:
    tool_result = json.dumps(tool_run, default=str)[: settings.tool_result_max_chars]
    prompt = TOOL_ANSWER_PROMPT.format(
        system_instructions=system_instructions,
        tool_result=tool_result,
        message=message,
    )
    response = await run_prompt(llm, prompt)
    return CompositionResult(
        content=response.content.strip() or TOOL_FALLBACK_REPLY,
        model=response.model,
        tokens_used=response.total_tokens,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def compose(
    llm: LLMProvider,
    system_instructions: str,
    history: Sequence[dict[str, str]],
    knowledge: str = "",
    tool_run: dict[str, Any] | None = None,
) -> CompositionResult:
    """
    Produce the assistant reply for a turn.

    Args:
        llm: Generative backend.
        system_instructions: Output of `build_system_instructions`.
        history: Recent messages (role/content), latest user message last.
        knowledge: Retrieved context ("" when none).
        tool_run: `ToolRun.to_dict()` when a tool was executed or skipped.

    Returns:
        CompositionResult with a non-empty `content`.

    Raises:
        Backend errors from `llm`.
    """
    started = time.monotonic()

    if tool_run is not None:
        result = await compose_from_tool(llm, system_instructions, tool_run, latest_user_message(history))
    elif knowledge.strip():
        result = await compose_grounded(llm, system_instructions, history, knowledge)
    else:
        result = await compose_without_knowledge(llm, system_instructions, history)

    result.response_time_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Composed reply (%s path, %d tokens, %d ms)",
        "tool" if tool_run is not None else "grounded" if knowledge.strip() else result.category or "fallback",
        result.tokens_used,
        result.response_time_ms,
    )
    return result
