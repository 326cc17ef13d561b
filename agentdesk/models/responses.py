# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shapes of data going OUT of the API. Built from ORM rows with
# `from_attributes=True`. Stored embeddings and full document content are
# never part of a response.
#
# camelCase fields use `alias` + `populate_by_name`: FastAPI dumps a
# returned model by alias and validates the dump against response_model.
# =============================================================================

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health: confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class AgentResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    category: str
    tone: str
    response_style: str
    system_instructions: str
    status: str
    avatar: str | None = None
    allow_embed: bool
    public_key: str | None = None
    embed_allowed_origins: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PublishResponse(BaseModel):
    public_key: str | None = Field(alias="publicKey")
    allow_embed: bool = Field(alias="allowEmbed")

    model_config = ConfigDict(populate_by_name=True)


class KnowledgeDocumentResponse(BaseModel):
    """Document metadata; `content` and `embedding` are omitted."""

    id: str
    agent_id: str
    filename: str
    file_size: int
    mime_type: str
    processed: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IngestResponse(KnowledgeDocumentResponse):
    """Created document plus the generated summary."""

    summary: str


class ToolResponse(BaseModel):
    id: str
    agent_id: str
    name: str
    description: str | None = None
    method: str
    endpoint: str
    parameters: list[dict[str, Any]]
    headers: dict[str, str] | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ToolExecuteResponse(BaseModel):
    status: int | None = None
    elapsed_ms: int | None = Field(default=None, alias="elapsedMs")
    data: Any = None
    error: str | None = None
    truncated: bool = False

    model_config = ConfigDict(populate_by_name=True)


class ConversationResponse(BaseModel):
    id: str
    agent_id: str
    title: str | None = None
    status: str
    is_embedded: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    role: str
    content: str
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TurnResponse(BaseModel):
    """Response for a chat turn: both persisted messages and turn metadata."""

    user_message: MessageResponse = Field(alias="userMessage")
    assistant_message: MessageResponse = Field(alias="assistantMessage")
    metadata: dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)


class EmbedSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    conversation_id: str = Field(alias="conversationId")
    agent_name: str = Field(alias="agentName")
    agent_avatar: str | None = Field(default=None, alias="agentAvatar")

    model_config = ConfigDict(populate_by_name=True)
