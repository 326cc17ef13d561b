# =============================================================================
# Conversations API — Threads and Chat Turns
# =============================================================================
#
# ENDPOINTS:
#   GET    /api/conversations                   — list (optional ?agent_id=)
#   POST   /api/conversations                   — start a thread with an agent
#   GET    /api/conversations/{id}              — fetch one
#   DELETE /api/conversations/{id}              — delete with its messages
#   GET    /api/conversations/{id}/messages     — full transcript
#   POST   /api/conversations/{id}/messages     — send a message, run a turn
#
# A failed turn returns 500 (503 for missing model configuration); the
# user message has already been committed and stays in the transcript.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from agentdesk.api.deps import get_current_user, get_llm, get_repository
from agentdesk.db.models import Agent, Conversation, User
from agentdesk.db.repository import Repository
from agentdesk.models.requests import ConversationCreate, MessageCreate
from agentdesk.models.responses import ConversationResponse, MessageResponse, TurnResponse
from agentdesk.services.conversation import send_message
from agentdesk.services.llm import LLMProvider, ProviderNotConfiguredError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["Conversations"])


async def run_turn(
    repo: Repository,
    conversation: Conversation,
    agent: Agent,
    content: str,
    llm: LLMProvider,
) -> TurnResponse:
    """Run a chat turn and map pipeline failures to HTTP errors."""
    try:
        outcome = await send_message(repo, conversation, agent, content, llm)
    except ProviderNotConfiguredError as e:
        logger.error("Turn failed for conversation %s: %s", conversation.id, e)
        raise HTTPException(status_code=503, detail="Language model is not configured") from e
    except Exception as e:
        logger.exception("Turn failed for conversation %s", conversation.id)
        raise HTTPException(status_code=500, detail="Failed to generate a response") from e

    return TurnResponse(
        user_message=MessageResponse.model_validate(outcome.user_message),
        assistant_message=MessageResponse.model_validate(outcome.assistant_message),
        metadata=outcome.metadata,
    )


async def _require_conversation(repo: Repository, conversation_id: str, user: User) -> Conversation:
    conversation = await repo.get_conversation(conversation_id, user.id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.get("", response_model=list[ConversationResponse])
async def list_conversations(
    agent_id: str | None = Query(default=None),
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> list[ConversationResponse]:
    conversations = await repo.list_conversations(user.id, agent_id=agent_id)
    return [ConversationResponse.model_validate(c) for c in conversations]


@router.post("", response_model=ConversationResponse, status_code=201)
async def create_conversation(
    body: ConversationCreate,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> ConversationResponse:
    if await repo.get_agent(body.agent_id, user.id) is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    conversation = await repo.create_conversation(body.agent_id, user.id, title=body.title)
    return ConversationResponse.model_validate(conversation)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> ConversationResponse:
    return ConversationResponse.model_validate(await _require_conversation(repo, conversation_id, user))


@router.delete("/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> Response:
    if not await repo.delete_conversation(conversation_id, user.id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return Response(status_code=204)


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> list[MessageResponse]:
    await _require_conversation(repo, conversation_id, user)
    messages = await repo.list_messages(conversation_id)
    return [MessageResponse.model_validate(m) for m in messages]


@router.post("/{conversation_id}/messages", response_model=TurnResponse)
async def post_message(
    conversation_id: str,
    body: MessageCreate,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
    llm: LLMProvider = Depends(get_llm),
) -> TurnResponse:
    conversation = await _require_conversation(repo, conversation_id, user)
    agent = await repo.get_agent(conversation.agent_id, user.id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")

    return await run_turn(repo, conversation, agent, body.content, llm)
