# =============================================================================
# Conversation Turn — Persist, Run the Turn Graph, Persist the Reply
# =============================================================================
#
# SEQUENCE (one user message):
#   1. Persist the user message and commit it; it survives a failed turn
#   2. First message → conversation title (compare-and-swap on empty title)
#   3. Load the last `history_window` messages
#   4. Load the agent's processed documents and tools (owner-scoped)
#   5. Run the turn graph (retrieve → plan → execute/clarify → compose)
#   6. Persist the assistant message with its metadata
#
# Concurrent sends in the same conversation are not serialized; each turn
# sees whatever history was committed when it started.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from agentdesk.agents.composer import build_system_instructions
from agentdesk.agents.orchestrator import respond
from agentdesk.agents.retriever import Embedder
from agentdesk.config import settings
from agentdesk.db.models import Agent, Conversation, Message
from agentdesk.db.repository import Repository
from agentdesk.services.knowledge_store import to_candidates
from agentdesk.services.llm import LLMProvider

logger = logging.getLogger(__name__)


@dataclass
class TurnOutcome:
    user_message: Message
    assistant_message: Message
    metadata: dict[str, Any]


def make_title(content: str, max_chars: int | None = None) -> str:
    """First characters of the message, cut back to a word boundary past 20."""
    limit = settings.title_max_chars if max_chars is None else max_chars
    trimmed = (content or "").strip()[:limit]
    last_space = trimmed.rfind(" ")
    return trimmed[:last_space] if last_space > 20 else trimmed


def history_payload(messages: list[Message]) -> list[dict[str, str]]:
    return [{"role": m.role, "content": m.content} for m in messages]


async def send_message(
    repo: Repository,
    conversation: Conversation,
    agent: Agent,
    content: str,
    llm: LLMProvider,
    embedder: Embedder | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> TurnOutcome:
    """
    Run a full chat turn for `content` in `conversation`.

    Knowledge and tools are read with the agent owner's id, so embedded
    (anonymous) conversations see the same corpus as the owner.

    Raises:
        Backend errors from the LLM provider; the user message stays
        persisted and no assistant message is written.
    """
    user_message = await repo.create_message(conversation.id, "user", content)
    await repo.commit()

    if not (conversation.title or "").strip():
        title = make_title(content)
        if title and await repo.set_title_if_empty(conversation.id, title):
            conversation.title = title
            logger.info("Titled conversation %s: '%s'", conversation.id, title)

    recent = await repo.list_messages(conversation.id, limit=settings.history_window)
    documents = await repo.list_knowledge_documents(agent.id, agent.user_id)
    tools = await repo.list_tools(agent.id, agent.user_id)
    candidates = to_candidates(documents)
    logger.debug(
        "Turn context: %d messages, %d/%d processed documents, %d tools",
        len(recent),
        len(candidates),
        len(documents),
        len(tools),
    )

    result = await respond(
        message=content,
        history=history_payload(recent),
        system_instructions=build_system_instructions(
            agent.system_instructions, agent.tone, agent.response_style
        ),
        candidates=candidates,
        tools=tools,
        llm=llm,
        embedder=embedder,
        http_client=http_client,
    )

    assistant_message = await repo.create_message(
        conversation.id,
        "assistant",
        result.content,
        metadata=result.metadata,
    )
    return TurnOutcome(
        user_message=user_message,
        assistant_message=assistant_message,
        metadata=result.metadata,
    )
