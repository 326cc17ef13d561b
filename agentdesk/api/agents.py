# =============================================================================
# Agents API — CRUD and Embed Publishing
# =============================================================================
#
# ENDPOINTS:
#   GET    /api/agents               — list the caller's agents
#   POST   /api/agents               — create
#   GET    /api/agents/{id}          — fetch one
#   PUT    /api/agents/{id}          — partial update
#   DELETE /api/agents/{id}          — delete (cascades to documents/tools)
#   POST   /api/agents/{id}/publish  — enable/disable embedding, rotate key
# =============================================================================

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from agentdesk.api.deps import get_current_user, get_repository, require_agent
from agentdesk.db.models import User
from agentdesk.db.repository import Repository
from agentdesk.models.requests import AgentCreate, AgentUpdate, PublishRequest
from agentdesk.models.responses import AgentResponse, PublishResponse
from agentdesk.services.embed_access import generate_public_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["Agents"])


@router.get("", response_model=list[AgentResponse])
async def list_agents(
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> list[AgentResponse]:
    agents = await repo.list_agents(user.id)
    return [AgentResponse.model_validate(a) for a in agents]


@router.post("", response_model=AgentResponse, status_code=201)
async def create_agent(
    body: AgentCreate,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> AgentResponse:
    agent = await repo.create_agent(user.id, **body.model_dump())
    logger.info("Created agent %s ('%s') for user %s", agent.id, agent.name, user.id)
    return AgentResponse.model_validate(agent)


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(
    agent_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> AgentResponse:
    return AgentResponse.model_validate(await require_agent(repo, agent_id, user))


@router.put("/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: str,
    body: AgentUpdate,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> AgentResponse:
    agent = await repo.update_agent(agent_id, user.id, **body.model_dump(exclude_unset=True))
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return AgentResponse.model_validate(agent)


@router.delete("/{agent_id}", status_code=204)
async def delete_agent(
    agent_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> Response:
    if not await repo.delete_agent(agent_id, user.id):
        raise HTTPException(status_code=404, detail="Agent not found")
    return Response(status_code=204)


@router.post("/{agent_id}/publish", response_model=PublishResponse)
async def publish_agent(
    agent_id: str,
    body: PublishRequest,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> PublishResponse:
    """
    Enable or disable the embeddable widget.

    A public key is generated the first time embedding is enabled, or
    replaced when `rotate` is set. Disabling keeps the existing key.
    """
    agent = await require_agent(repo, agent_id, user)

    public_key = agent.public_key
    if body.allow_embed and (body.rotate or not public_key):
        public_key = generate_public_key()

    await repo.update_agent(
        agent.id,
        user.id,
        allow_embed=body.allow_embed,
        embed_allowed_origins=body.embed_allowed_origins,
        public_key=public_key,
    )
    logger.info("Agent %s publish: allow_embed=%s rotated=%s", agent.id, body.allow_embed, body.rotate)
    return PublishResponse(public_key=public_key, allow_embed=body.allow_embed)
