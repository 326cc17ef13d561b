# =============================================================================
# Embed API — Public Widget Sessions and Messages
# =============================================================================
#
# Unauthenticated endpoints addressed by an agent's public key. Every call
# checks that the agent allows embedding (404 otherwise) and that the
# request origin passes the agent's origin policy (403 otherwise).
#
# ENDPOINTS:
#   POST /api/embed/{public_key}/session   — create or reuse a session
#   POST /api/embed/{public_key}/messages  — send a message in a session
#   GET  /api/embed/{public_key}/messages  — last messages of a session
# =============================================================================

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from agentdesk.api.conversations import run_turn
from agentdesk.api.deps import get_llm, get_repository
from agentdesk.config import settings
from agentdesk.db.models import Agent, Conversation
from agentdesk.db.repository import Repository
from agentdesk.models.requests import EmbedMessageRequest, EmbedSessionRequest
from agentdesk.models.responses import EmbedSessionResponse, MessageResponse, TurnResponse
from agentdesk.services.embed_access import extract_request_origin, generate_session_id, origin_allowed
from agentdesk.services.llm import LLMProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/embed", tags=["Embed"])


async def _embeddable_agent(repo: Repository, public_key: str, request: Request) -> tuple[Agent, str | None]:
    agent = await repo.get_agent_by_public_key(public_key)
    if agent is None or not agent.allow_embed:
        raise HTTPException(status_code=404, detail="Agent not embeddable")

    origin = extract_request_origin(request.headers)
    if not origin_allowed(agent.embed_allowed_origins, origin):
        logger.info("Embed request for agent %s refused for origin %s", agent.id, origin)
        raise HTTPException(status_code=403, detail="Origin not allowed")
    return agent, origin


async def _require_session(repo: Repository, agent: Agent, session_id: str) -> Conversation:
    conversation = await repo.get_embedded_conversation(agent.id, session_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return conversation


@router.post("/{public_key}/session", response_model=EmbedSessionResponse)
async def open_session(
    public_key: str,
    request: Request,
    body: EmbedSessionRequest | None = None,
    repo: Repository = Depends(get_repository),
) -> EmbedSessionResponse:
    """Reuse the session named in the body, or start a new one."""
    agent, origin = await _embeddable_agent(repo, public_key, request)
    body = body or EmbedSessionRequest()

    conversation = None
    session_id = body.session_id
    if session_id and not body.new_conversation:
        conversation = await repo.get_embedded_conversation(agent.id, session_id)

    if conversation is None:
        session_id = generate_session_id()
        conversation = await repo.create_embedded_conversation(
            agent.id, session_id, origin, body.external_user_id
        )
        logger.info("Opened embedded session for agent %s (origin=%s)", agent.id, origin)

    return EmbedSessionResponse(
        session_id=session_id,
        conversation_id=conversation.id,
        agent_name=agent.name,
        agent_avatar=agent.avatar,
    )


@router.post("/{public_key}/messages", response_model=TurnResponse)
async def post_message(
    public_key: str,
    body: EmbedMessageRequest,
    request: Request,
    repo: Repository = Depends(get_repository),
    llm: LLMProvider = Depends(get_llm),
) -> TurnResponse:
    agent, _ = await _embeddable_agent(repo, public_key, request)
    conversation = await _require_session(repo, agent, body.session_id)
    return await run_turn(repo, conversation, agent, body.content, llm)


@router.get("/{public_key}/messages", response_model=list[MessageResponse])
async def list_messages(
    public_key: str,
    request: Request,
    session_id: str = Query(..., alias="sessionId", min_length=1),
    repo: Repository = Depends(get_repository),
) -> list[MessageResponse]:
    agent, _ = await _embeddable_agent(repo, public_key, request)
    conversation = await _require_session(repo, agent, session_id)
    messages = await repo.list_messages(conversation.id, limit=settings.embed_history_limit)
    return [MessageResponse.model_validate(m) for m in messages]
