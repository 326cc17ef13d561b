# =============================================================================
# Application Entry Point — FastAPI Factory
# =============================================================================
#
# Run locally:
#   uvicorn agentdesk.main:app --reload
#   or: agentdesk-server
#
# Startup creates missing tables when `db_auto_create` is set. CORS is open
# because the embed endpoints enforce their own per-agent origin policy.
# =============================================================================

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentdesk.api import agents, conversations, embed, knowledge, tools
from agentdesk.config import settings
from agentdesk.models.responses import HealthResponse

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    if settings.db_auto_create:
        from agentdesk.db.engine import create_schema

        await create_schema()
        logger.info("Database schema ensured")
    yield
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title=settings.app_name,
        description=(
            "Knowledge-grounded agent chat backend: document ingestion, "
            "semantic retrieval, HTTP tool planning and execution, and an "
            "embeddable widget API."
        ),
        version=settings.app_version,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(agents.router)
    application.include_router(knowledge.router)
    application.include_router(tools.router)
    application.include_router(conversations.router)
    application.include_router(embed.router)

    @application.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    return application


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("agentdesk.main:app", host="0.0.0.0", port=8000)
