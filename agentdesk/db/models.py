# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────┐      ┌──────────────────┐      ┌──────────────────────┐
# │  users   │─1:N─▶│  agents          │─1:N─▶│ knowledge_documents  │
# └──────────┘      │  public_key (uq) │      │ embedding (JSON text)│
#                   │  allow_embed     │      │ processed            │
#                   └──────────────────┘      └──────────────────────┘
#                      │1:N        │1:N
#                      ▼           ▼
#               ┌────────────┐  ┌──────────────────┐      ┌────────────┐
#               │   tools    │  │  conversations   │─1:N─▶│  messages  │
#               │ parameters │  │  session_id      │      │  metadata  │
#               │ headers    │  │  is_embedded     │      └────────────┘
#               └────────────┘  └──────────────────┘
#
# NOTES:
# 1. Primary keys are UUID strings generated client-side so objects have
#    an id before the INSERT is flushed.
# 2. Embeddings are stored as a JSON-serialized float array in a text
#    column. Similarity is computed in Python over the agent's processed
#    documents (small per-agent corpora), so no vector index is needed.
# 3. JSON columns use JSONB on PostgreSQL and generic JSON elsewhere.
# 4. `Message.metadata_` maps to the "metadata" column; the trailing
#    underscore avoids SQLAlchemy's reserved `.metadata`.
# =============================================================================

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class User(Base):
    """
    A local user record, provisioned from an external identity.

    `username` holds the external identity (e.g. the auth provider's user
    id) and is the idempotency key for provisioning.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"


class Agent(Base):
    """A configured assistant: instructions, tone, style and embed settings."""

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    tone: Mapped[str] = mapped_column(Text, nullable=False, default="professional")
    response_style: Mapped[str] = mapped_column(Text, nullable=False, default="detailed")
    system_instructions: Mapped[str] = mapped_column(Text, nullable=False)

    # draft | active | inactive
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Embedded widget deployment
    allow_embed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    public_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    # Comma-separated origins, ".domain" suffix rules, or "*"
    embed_allowed_origins: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Agent(id={self.id}, name='{self.name}', status={self.status})>"


class KnowledgeDocument(Base):
    """
    Normalized text of an uploaded file or web page, with its embedding.

    A document is created with processed=False and flipped to True only
    once a non-empty embedding has been stored. Unprocessed documents are
    excluded from retrieval and are never re-embedded automatically.
    """

    __tablename__ = "knowledge_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)

    # JSON-serialized list[float]; null until embedded
    embedding: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_knowledge_documents_agent_user", "agent_id", "user_id"),)

    def __repr__(self) -> str:
        return (
            f"<KnowledgeDocument(id={self.id}, filename='{self.filename}', "
            f"processed={self.processed})>"
        )


class Tool(Base):
    """
    An HTTP endpoint an agent may call during a turn.

    `parameters` is an ordered list of
    {"name", "type": "string"|"number"|"boolean", "required", "description"}.
    """

    __tablename__ = "tools"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    method: Mapped[str] = mapped_column(String(10), nullable=False, default="GET")
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    parameters: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    headers: Mapped[dict[str, str] | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Tool(id={self.id}, name='{self.name}', method={self.method})>"


class Conversation(Base):
    """
    A chat thread with one agent.

    Embedded (widget) conversations have no user_id; they are addressed by
    (agent_id, session_id) instead.
    """

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    # active | archived
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_embedded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    external_user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_conversations_agent_session", "agent_id", "session_id"),)

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, agent_id={self.agent_id}, title='{self.title}')>"


class Message(Base):
    """
    One chat message.

    metadata keys (assistant messages): hasKnowledgeContext, toolRun,
    toolClarification, tokensUsed, responseTime.
    """

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    # user | assistant
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)

    # Client-side timestamp: server now() is per-transaction, and a turn
    # writes both of its messages in one transaction.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (Index("ix_messages_conversation_created", "conversation_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, role={self.role}, conversation_id={self.conversation_id})>"
