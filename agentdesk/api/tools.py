# =============================================================================
# Tools API — HTTP Tool Definitions and Direct Execution
# =============================================================================
#
# ENDPOINTS:
#   GET    /api/agents/{id}/tools    — list an agent's tools
#   POST   /api/agents/{id}/tools    — create (validated definition)
#   PUT    /api/tools/{id}           — partial update
#   DELETE /api/tools/{id}           — delete
#   POST   /api/tools/{id}/execute   — run the tool with explicit params
#
# Direct execution rejects loopback targets with 400 (the chat turn
# records them as skipped instead). Upstream failures are returned as
# data, not as error statuses.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from agentdesk.api.deps import get_current_user, get_repository, require_agent
from agentdesk.db.models import User
from agentdesk.db.repository import Repository
from agentdesk.models.requests import ToolCreate, ToolExecuteRequest, ToolUpdate
from agentdesk.models.responses import ToolExecuteResponse, ToolResponse
from agentdesk.services.tool_executor import InternalEndpointBlockedError, execute_tool_direct

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tools"])


@router.get("/api/agents/{agent_id}/tools", response_model=list[ToolResponse])
async def list_tools(
    agent_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> list[ToolResponse]:
    tools = await repo.list_tools(agent_id, user.id)
    return [ToolResponse.model_validate(t) for t in tools]


@router.post("/api/agents/{agent_id}/tools", response_model=ToolResponse, status_code=201)
async def create_tool(
    agent_id: str,
    body: ToolCreate,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> ToolResponse:
    agent = await require_agent(repo, agent_id, user)
    tool = await repo.create_tool(agent_id=agent.id, user_id=user.id, **body.model_dump())
    logger.info("Created tool %s (%s %s) for agent %s", tool.name, tool.method, tool.endpoint, agent.id)
    return ToolResponse.model_validate(tool)


@router.put("/api/tools/{tool_id}", response_model=ToolResponse)
async def update_tool(
    tool_id: str,
    body: ToolUpdate,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> ToolResponse:
    tool = await repo.update_tool(tool_id, user.id, **body.model_dump(exclude_unset=True))
    if tool is None:
        raise HTTPException(status_code=404, detail="Tool not found")
    return ToolResponse.model_validate(tool)


@router.delete("/api/tools/{tool_id}", status_code=204)
async def delete_tool(
    tool_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> Response:
    if not await repo.delete_tool(tool_id, user.id):
        raise HTTPException(status_code=404, detail="Tool not found")
    return Response(status_code=204)


@router.post("/api/tools/{tool_id}/execute", response_model=ToolExecuteResponse)
async def execute(
    tool_id: str,
    body: ToolExecuteRequest,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> ToolExecuteResponse:
    tool = await repo.get_tool(tool_id, user.id)
    if tool is None:
        raise HTTPException(status_code=404, detail="Tool not found")

    try:
        run = await execute_tool_direct(tool, body.params)
    except InternalEndpointBlockedError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return ToolExecuteResponse(
        status=run.status,
        elapsed_ms=run.elapsed_ms,
        data=run.data,
        error=run.error,
        truncated=run.truncated,
    )
