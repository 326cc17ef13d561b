# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Shapes of data coming INTO the API. FastAPI validates bodies against
# these (422 on failure) and documents them at /docs.
#
# Tool definitions are validated strictly at creation time so the planner
# and executor can trust them later:
#   - method is GET or POST
#   - parameter types are string / number / boolean
#   - parameter names and header keys are unique case-insensitively
# =============================================================================

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

AgentStatus = Literal["draft", "active", "inactive"]
ConversationStatus = Literal["active", "archived"]


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


class AgentCreate(BaseModel):
    """Request body for POST /api/agents."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    category: str = Field(..., min_length=1, max_length=100)
    tone: str = Field(default="professional", max_length=100)
    response_style: str = Field(default="detailed", max_length=100)
    system_instructions: str = Field(..., min_length=1)
    status: AgentStatus = "draft"
    avatar: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "name": "Support Bot",
                    "category": "customer-support",
                    "tone": "friendly",
                    "response_style": "concise",
                    "system_instructions": "You help customers with billing questions.",
                }
            ]
        }
    )


class AgentUpdate(BaseModel):
    """Partial update for PUT /api/agents/{id}; omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    category: str | None = Field(default=None, min_length=1, max_length=100)
    tone: str | None = Field(default=None, max_length=100)
    response_style: str | None = Field(default=None, max_length=100)
    system_instructions: str | None = Field(default=None, min_length=1)
    status: AgentStatus | None = None
    avatar: str | None = None


class PublishRequest(BaseModel):
    """Body for POST /api/agents/{id}/publish."""

    allow_embed: bool = Field(default=True, alias="allowEmbed")
    embed_allowed_origins: str | None = Field(
        default=None,
        alias="embedAllowedOrigins",
        description="Comma-separated origins, '.domain' suffix rules, or '*'",
        examples=["https://example.com,.example.org"],
    )
    rotate: bool = False

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


class UrlIngestRequest(BaseModel):
    """Body for POST /api/agents/{id}/knowledge/url."""

    url: str = Field(..., min_length=8, max_length=2048, examples=["https://example.com/pricing"])


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolParameter(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: Literal["string", "number", "boolean"] = "string"
    required: bool = False
    description: str | None = None


def _unique_casefold(names: list[str], what: str) -> None:
    seen: set[str] = set()
    for name in names:
        key = name.lower()
        if key in seen:
            raise ValueError(f"Duplicate {what}: {name}")
        seen.add(key)


class ToolCreate(BaseModel):
    """Body for POST /api/agents/{id}/tools."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    method: Literal["GET", "POST"] = "GET"
    endpoint: str = Field(..., min_length=1, max_length=2048)
    parameters: list[ToolParameter] = Field(default_factory=list)
    headers: dict[str, str] | None = None

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("endpoint")
    @classmethod
    def _http_endpoint(cls, value: str) -> str:
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("Endpoint must be an http(s) URL")
        return value

    @field_validator("parameters")
    @classmethod
    def _unique_parameters(cls, value: list[ToolParameter]) -> list[ToolParameter]:
        _unique_casefold([p.name for p in value], "parameter name")
        return value

    @field_validator("headers")
    @classmethod
    def _unique_headers(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        if value:
            _unique_casefold(list(value), "header")
        return value


class ToolUpdate(ToolCreate):
    """Partial update for PUT /api/tools/{id}."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    method: Literal["GET", "POST"] | None = None
    endpoint: str | None = Field(default=None, min_length=1, max_length=2048)
    parameters: list[ToolParameter] | None = None

    @field_validator("endpoint")
    @classmethod
    def _http_endpoint(cls, value: str | None) -> str | None:
        if value is not None and not value.lower().startswith(("http://", "https://")):
            raise ValueError("Endpoint must be an http(s) URL")
        return value

    @field_validator("parameters")
    @classmethod
    def _unique_parameters(cls, value: list[ToolParameter] | None) -> list[ToolParameter] | None:
        if value:
            _unique_casefold([p.name for p in value], "parameter name")
        return value


class ToolExecuteRequest(BaseModel):
    """Body for POST /api/tools/{id}/execute."""

    params: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class ConversationCreate(BaseModel):
    agent_id: str = Field(..., alias="agentId")
    title: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class MessageCreate(BaseModel):
    """Body for POST /api/conversations/{id}/messages."""

    content: str = Field(..., min_length=1, max_length=20_000)


# ---------------------------------------------------------------------------
# Embedded widget
# ---------------------------------------------------------------------------


class EmbedSessionRequest(BaseModel):
    session_id: str | None = Field(default=None, alias="sessionId")
    new_conversation: bool = Field(default=False, alias="newConversation")
    external_user_id: str | None = Field(default=None, alias="externalUserId")

    model_config = ConfigDict(populate_by_name=True)


class EmbedMessageRequest(BaseModel):
    session_id: str = Field(..., min_length=1, alias="sessionId")
    content: str = Field(..., min_length=1, max_length=20_000)

    model_config = ConfigDict(populate_by_name=True)
