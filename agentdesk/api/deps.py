# =============================================================================
# API Dependencies — Repository, Identity and Provider Injection
# =============================================================================
#
# 1. get_repository()   — SqlRepository bound to the request session
# 2. get_current_user() — trusted identity header → provisioned local user
# 3. get_llm() / get_summary_llm() — configured providers; missing keys
#                          become 503 instead of a crash
# 4. require_agent()    — owner-scoped agent lookup (404 otherwise)
#
# Every dependency can be swapped with `app.dependency_overrides` in tests.
#
# DESIGN DECISION: Identity from a trusted header, not in-app auth.
# Authentication happens in front of the service (gateway / auth
# provider); the header value is the external user id. When the header is
# absent, `default_user` is used (local development); with no default the
# request is rejected.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.config import settings
from agentdesk.db.engine import get_async_session
from agentdesk.db.models import Agent, User
from agentdesk.db.repository import Repository, SqlRepository
from agentdesk.services.identity import ensure_user
from agentdesk.services.llm import (
    LLMProvider,
    ProviderNotConfiguredError,
    get_llm_provider,
    get_summary_provider,
)

logger = logging.getLogger(__name__)


async def get_repository(session: AsyncSession = Depends(get_async_session)) -> Repository:
    return SqlRepository(session)


async def get_current_user(
    request: Request,
    repo: Repository = Depends(get_repository),
) -> User:
    """
    Resolve the caller to a local user, provisioning it on first sight.

    Raises:
        HTTPException 401: No identity header and no default user.
    """
    external_id = request.headers.get(settings.identity_header) or settings.default_user
    if not external_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return await ensure_user(repo, external_id)


def get_llm() -> LLMProvider:
    """Chat provider; configuration errors surface as 503."""
    try:
        return get_llm_provider()
    except ProviderNotConfiguredError as e:
        logger.error("LLM provider unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Language model is not configured") from e


def get_summary_llm() -> LLMProvider:
    try:
        return get_summary_provider()
    except ProviderNotConfiguredError as e:
        logger.error("Summary provider unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Language model is not configured") from e


async def require_agent(repo: Repository, agent_id: str, user: User) -> Agent:
    agent = await repo.get_agent(agent_id, user.id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent
