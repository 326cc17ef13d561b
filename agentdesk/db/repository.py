# =============================================================================
# Repository — Persistence Interface + SQLAlchemy Implementation
# =============================================================================
#
# The pipeline never touches the session directly. Services receive a
# `Repository` and call its async methods, so tests substitute an
# in-memory fake (tests/conftest.py) without a database.
#
# Ownership scoping: every user-facing read takes the resolved user_id and
# returns None / [] for rows owned by someone else. The embed API reads by
# public key / session id instead.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.db.models import Agent, Conversation, KnowledgeDocument, Message, Tool, User

logger = logging.getLogger(__name__)


class Repository(Protocol):
    """Async persistence operations used by services and routers."""

    async def commit(self) -> None: ...

    # Users
    async def get_user_by_username(self, username: str) -> User | None: ...
    async def create_user(self, username: str, email: str) -> User: ...

    # Agents
    async def list_agents(self, user_id: str) -> list[Agent]: ...
    async def get_agent(self, agent_id: str, user_id: str) -> Agent | None: ...
    async def get_agent_by_public_key(self, public_key: str) -> Agent | None: ...
    async def create_agent(self, user_id: str, **fields: Any) -> Agent: ...
    async def update_agent(self, agent_id: str, user_id: str, **fields: Any) -> Agent | None: ...
    async def delete_agent(self, agent_id: str, user_id: str) -> bool: ...

    # Knowledge
    async def list_knowledge_documents(self, agent_id: str, user_id: str) -> list[KnowledgeDocument]: ...
    async def create_knowledge_document(self, **fields: Any) -> KnowledgeDocument: ...
    async def update_knowledge_document(self, document_id: str, **fields: Any) -> KnowledgeDocument | None: ...
    async def delete_knowledge_document(self, document_id: str, user_id: str) -> bool: ...

    # Tools
    async def list_tools(self, agent_id: str, user_id: str) -> list[Tool]: ...
    async def get_tool(self, tool_id: str, user_id: str) -> Tool | None: ...
    async def create_tool(self, **fields: Any) -> Tool: ...
    async def update_tool(self, tool_id: str, user_id: str, **fields: Any) -> Tool | None: ...
    async def delete_tool(self, tool_id: str, user_id: str) -> bool: ...

    # Conversations
    async def list_conversations(self, user_id: str, agent_id: str | None = None) -> list[Conversation]: ...
    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None: ...
    async def create_conversation(self, agent_id: str, user_id: str, title: str | None = None) -> Conversation: ...
    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool: ...
    async def get_embedded_conversation(self, agent_id: str, session_id: str) -> Conversation | None: ...
    async def create_embedded_conversation(
        self,
        agent_id: str,
        session_id: str,
        origin: str | None,
        external_user_id: str | None,
    ) -> Conversation: ...
    async def set_title_if_empty(self, conversation_id: str, title: str) -> bool: ...

    # Messages
    async def list_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]: ...
    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message: ...


class SqlRepository:
    """Repository backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def commit(self) -> None:
        await self._session.commit()

    async def _add(self, obj: Any) -> Any:
        self._session.add(obj)
        await self._session.flush()
        await self._session.refresh(obj)
        return obj

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def get_user_by_username(self, username: str) -> User | None:
        result = await self._session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def create_user(self, username: str, email: str) -> User:
        # Savepoint: a unique-username conflict must leave the session usable.
        user = User(username=username, email=email)
        async with self._session.begin_nested():
            self._session.add(user)
        await self._session.refresh(user)
        return user

    # -------------------------------------------------------------------------
    # Agents
    # -------------------------------------------------------------------------

    async def list_agents(self, user_id: str) -> list[Agent]:
        result = await self._session.execute(
            select(Agent).where(Agent.user_id == user_id).order_by(Agent.updated_at.desc())
        )
        return list(result.scalars().all())

    async def get_agent(self, agent_id: str, user_id: str) -> Agent | None:
        result = await self._session.execute(
            select(Agent).where(Agent.id == agent_id, Agent.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_agent_by_public_key(self, public_key: str) -> Agent | None:
        result = await self._session.execute(select(Agent).where(Agent.public_key == public_key))
        return result.scalar_one_or_none()

    async def create_agent(self, user_id: str, **fields: Any) -> Agent:
        return await self._add(Agent(user_id=user_id, **fields))

    async def update_agent(self, agent_id: str, user_id: str, **fields: Any) -> Agent | None:
        agent = await self.get_agent(agent_id, user_id)
        if agent is None:
            return None
        for key, value in fields.items():
            setattr(agent, key, value)
        await self._session.flush()
        await self._session.refresh(agent)
        return agent

    async def delete_agent(self, agent_id: str, user_id: str) -> bool:
        result = await self._session.execute(
            delete(Agent).where(Agent.id == agent_id, Agent.user_id == user_id)
        )
        return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Knowledge documents
    # -------------------------------------------------------------------------

    async def list_knowledge_documents(self, agent_id: str, user_id: str) -> list[KnowledgeDocument]:
        result = await self._session.execute(
            select(KnowledgeDocument)
            .where(KnowledgeDocument.agent_id == agent_id, KnowledgeDocument.user_id == user_id)
            .order_by(KnowledgeDocument.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_knowledge_document(self, **fields: Any) -> KnowledgeDocument:
        fields.setdefault("processed", False)
        return await self._add(KnowledgeDocument(**fields))

    async def update_knowledge_document(self, document_id: str, **fields: Any) -> KnowledgeDocument | None:
        document = await self._session.get(KnowledgeDocument, document_id)
        if document is None:
            return None
        for key, value in fields.items():
            setattr(document, key, value)
        await self._session.flush()
        return document

    async def delete_knowledge_document(self, document_id: str, user_id: str) -> bool:
        result = await self._session.execute(
            delete(KnowledgeDocument).where(
                KnowledgeDocument.id == document_id, KnowledgeDocument.user_id == user_id
            )
        )
        return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    async def list_tools(self, agent_id: str, user_id: str) -> list[Tool]:
        result = await self._session.execute(
            select(Tool)
            .where(Tool.agent_id == agent_id, Tool.user_id == user_id)
            .order_by(Tool.created_at)
        )
        return list(result.scalars().all())

    async def get_tool(self, tool_id: str, user_id: str) -> Tool | None:
        result = await self._session.execute(
            select(Tool).where(Tool.id == tool_id, Tool.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def create_tool(self, **fields: Any) -> Tool:
        return await self._add(Tool(**fields))

    async def update_tool(self, tool_id: str, user_id: str, **fields: Any) -> Tool | None:
        tool = await self.get_tool(tool_id, user_id)
        if tool is None:
            return None
        for key, value in fields.items():
            setattr(tool, key, value)
        await self._session.flush()
        await self._session.refresh(tool)
        return tool

    async def delete_tool(self, tool_id: str, user_id: str) -> bool:
        result = await self._session.execute(
            delete(Tool).where(Tool.id == tool_id, Tool.user_id == user_id)
        )
        return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------------

    async def list_conversations(self, user_id: str, agent_id: str | None = None) -> list[Conversation]:
        stmt = select(Conversation).where(Conversation.user_id == user_id)
        if agent_id:
            stmt = stmt.where(Conversation.agent_id == agent_id)
        result = await self._session.execute(stmt.order_by(Conversation.updated_at.desc()))
        return list(result.scalars().all())

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        result = await self._session.execute(
            select(Conversation).where(
                Conversation.id == conversation_id, Conversation.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def create_conversation(self, agent_id: str, user_id: str, title: str | None = None) -> Conversation:
        return await self._add(Conversation(agent_id=agent_id, user_id=user_id, title=title))

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        result = await self._session.execute(
            delete(Conversation).where(
                Conversation.id == conversation_id, Conversation.user_id == user_id
            )
        )
        return result.rowcount > 0

    async def get_embedded_conversation(self, agent_id: str, session_id: str) -> Conversation | None:
        result = await self._session.execute(
            select(Conversation).where(
                Conversation.agent_id == agent_id,
                Conversation.session_id == session_id,
                Conversation.is_embedded.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def create_embedded_conversation(
        self,
        agent_id: str,
        session_id: str,
        origin: str | None,
        external_user_id: str | None,
    ) -> Conversation:
        return await self._add(
            Conversation(
                agent_id=agent_id,
                session_id=session_id,
                is_embedded=True,
                origin=origin,
                external_user_id=external_user_id,
            )
        )

    async def set_title_if_empty(self, conversation_id: str, title: str) -> bool:
        """
        Compare-and-swap: set the title only while it is still empty.

        Concurrent first messages race on this single UPDATE; exactly one
        wins and later writers see rowcount 0.
        """
        result = await self._session.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                or_(Conversation.title.is_(None), func.trim(Conversation.title) == ""),
            )
            .values(title=title)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def list_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        """Messages in chronological order; with `limit`, only the last N."""
        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if limit is None:
            result = await self._session.execute(stmt.order_by(Message.created_at))
            return list(result.scalars().all())

        result = await self._session.execute(stmt.order_by(Message.created_at.desc()).limit(limit))
        return list(reversed(result.scalars().all()))

    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        message = await self._add(
            Message(conversation_id=conversation_id, role=role, content=content, metadata_=metadata)
        )
        await self._session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=func.now())
        )
        return message
