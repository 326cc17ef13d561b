# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# - FakeRepository: in-memory Repository holding real ORM instances, so the
#   services and routers run end to end without a database.
# - make_llm: AsyncMock provider replying with scripted contents in order.
# - make_embedder: async embedder mapping text → vector via a lookup.
# =============================================================================

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from agentdesk.db.models import Agent, Conversation, KnowledgeDocument, Message, Tool, User
from agentdesk.services.llm import LLMResponse

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeRepository:
    """Dict-backed implementation of agentdesk.db.repository.Repository."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.agents: dict[str, Agent] = {}
        self.documents: dict[str, KnowledgeDocument] = {}
        self.tools: dict[str, Tool] = {}
        self.conversations: dict[str, Conversation] = {}
        self.messages: list[Message] = []
        self.commits = 0
        self._tick = 0

    def _now(self) -> datetime:
        # Strictly increasing timestamps keep ordering deterministic.
        self._tick += 1
        return _EPOCH + timedelta(seconds=self._tick)

    @staticmethod
    def _id() -> str:
        return str(uuid.uuid4())

    async def commit(self) -> None:
        self.commits += 1

    # Users -------------------------------------------------------------------

    async def get_user_by_username(self, username: str) -> User | None:
        return next((u for u in self.users.values() if u.username == username), None)

    async def create_user(self, username: str, email: str) -> User:
        user = User(id=self._id(), username=username, email=email, created_at=self._now())
        self.users[user.id] = user
        return user

    # Agents ------------------------------------------------------------------

    async def list_agents(self, user_id: str) -> list[Agent]:
        return [a for a in self.agents.values() if a.user_id == user_id]

    async def get_agent(self, agent_id: str, user_id: str) -> Agent | None:
        agent = self.agents.get(agent_id)
        return agent if agent is not None and agent.user_id == user_id else None

    async def get_agent_by_public_key(self, public_key: str) -> Agent | None:
        return next((a for a in self.agents.values() if a.public_key == public_key), None)

    async def create_agent(self, user_id: str, **fields: Any) -> Agent:
        now = self._now()
        values = {
            "tone": "professional",
            "response_style": "detailed",
            "status": "draft",
            "allow_embed": False,
            "public_key": None,
            "embed_allowed_origins": None,
            "description": None,
            "avatar": None,
            "category": "general",
            **fields,
        }
        agent = Agent(id=self._id(), user_id=user_id, created_at=now, updated_at=now, **values)
        self.agents[agent.id] = agent
        return agent

    async def update_agent(self, agent_id: str, user_id: str, **fields: Any) -> Agent | None:
        agent = await self.get_agent(agent_id, user_id)
        if agent is None:
            return None
        for key, value in fields.items():
            setattr(agent, key, value)
        agent.updated_at = self._now()
        return agent

    async def delete_agent(self, agent_id: str, user_id: str) -> bool:
        if await self.get_agent(agent_id, user_id) is None:
            return False
        del self.agents[agent_id]
        return True

    # Knowledge ---------------------------------------------------------------

    async def list_knowledge_documents(self, agent_id: str, user_id: str) -> list[KnowledgeDocument]:
        return [
            d for d in self.documents.values() if d.agent_id == agent_id and d.user_id == user_id
        ]

    async def create_knowledge_document(self, **fields: Any) -> KnowledgeDocument:
        values = {"processed": False, "embedding": None, **fields}
        document = KnowledgeDocument(id=self._id(), created_at=self._now(), **values)
        self.documents[document.id] = document
        return document

    async def update_knowledge_document(self, document_id: str, **fields: Any) -> KnowledgeDocument | None:
        document = self.documents.get(document_id)
        if document is None:
            return None
        for key, value in fields.items():
            setattr(document, key, value)
        return document

    async def delete_knowledge_document(self, document_id: str, user_id: str) -> bool:
        document = self.documents.get(document_id)
        if document is None or document.user_id != user_id:
            return False
        del self.documents[document_id]
        return True

    # Tools -------------------------------------------------------------------

    async def list_tools(self, agent_id: str, user_id: str) -> list[Tool]:
        return [t for t in self.tools.values() if t.agent_id == agent_id and t.user_id == user_id]

    async def get_tool(self, tool_id: str, user_id: str) -> Tool | None:
        tool = self.tools.get(tool_id)
        return tool if tool is not None and tool.user_id == user_id else None

    async def create_tool(self, **fields: Any) -> Tool:
        now = self._now()
        values = {"description": None, "headers": None, "parameters": [], "method": "GET", **fields}
        tool = Tool(id=self._id(), created_at=now, updated_at=now, **values)
        self.tools[tool.id] = tool
        return tool

    async def update_tool(self, tool_id: str, user_id: str, **fields: Any) -> Tool | None:
        tool = await self.get_tool(tool_id, user_id)
        if tool is None:
            return None
        for key, value in fields.items():
            setattr(tool, key, value)
        tool.updated_at = self._now()
        return tool

    async def delete_tool(self, tool_id: str, user_id: str) -> bool:
        if await self.get_tool(tool_id, user_id) is None:
            return False
        del self.tools[tool_id]
        return True

    # Conversations -----------------------------------------------------------

    def _new_conversation(self, **fields: Any) -> Conversation:
        now = self._now()
        values = {
            "user_id": None,
            "title": None,
            "status": "active",
            "session_id": None,
            "is_embedded": False,
            "external_user_id": None,
            "origin": None,
            **fields,
        }
        conversation = Conversation(id=self._id(), created_at=now, updated_at=now, **values)
        self.conversations[conversation.id] = conversation
        return conversation

    async def list_conversations(self, user_id: str, agent_id: str | None = None) -> list[Conversation]:
        return [
            c
            for c in self.conversations.values()
            if c.user_id == user_id and (agent_id is None or c.agent_id == agent_id)
        ]

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        conversation = self.conversations.get(conversation_id)
        return conversation if conversation is not None and conversation.user_id == user_id else None

    async def create_conversation(self, agent_id: str, user_id: str, title: str | None = None) -> Conversation:
        return self._new_conversation(agent_id=agent_id, user_id=user_id, title=title)

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        if await self.get_conversation(conversation_id, user_id) is None:
            return False
        del self.conversations[conversation_id]
        self.messages = [m for m in self.messages if m.conversation_id != conversation_id]
        return True

    async def get_embedded_conversation(self, agent_id: str, session_id: str) -> Conversation | None:
        return next(
            (
                c
                for c in self.conversations.values()
                if c.agent_id == agent_id and c.session_id == session_id and c.is_embedded
            ),
            None,
        )

    async def create_embedded_conversation(
        self,
        agent_id: str,
        session_id: str,
        origin: str | None,
        external_user_id: str | None,
    ) -> Conversation:
        return self._new_conversation(
            agent_id=agent_id,
            session_id=session_id,
            is_embedded=True,
            origin=origin,
            external_user_id=external_user_id,
        )

    async def set_title_if_empty(self, conversation_id: str, title: str) -> bool:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or (conversation.title or "").strip():
            return False
        conversation.title = title
        return True

    # Messages ----------------------------------------------------------------

    async def list_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        messages = [m for m in self.messages if m.conversation_id == conversation_id]
        return messages if limit is None else messages[-limit:]

    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        message = Message(
            id=self._id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata_=metadata,
            created_at=self._now(),
        )
        self.messages.append(message)
        return message


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def make_llm() -> Callable[..., AsyncMock]:
    """Factory: provider whose complete() returns the given contents in order."""

    def factory(*contents: str) -> AsyncMock:
        llm = AsyncMock()
        llm.complete.side_effect = [
            LLMResponse(content=c, model="mock-model", input_tokens=10, output_tokens=5)
            for c in contents
        ]
        return llm

    return factory


@pytest.fixture
def make_embedder() -> Callable[..., Callable]:
    """Factory: embedder returning vectors[text], or `default` for unknown text."""

    def factory(vectors: dict[str, list[float]] | None = None, default: list[float] | None = None):
        table = vectors or {}

        async def embed(text: str) -> list[float]:
            return table.get(text, default if default is not None else [1.0, 0.0])

        return embed

    return factory


def prompt_of(llm: AsyncMock, call: int = 0) -> str:
    """User prompt text sent on the given complete() call."""
    return llm.complete.call_args_list[call].kwargs["messages"][0]["content"]


@pytest.fixture
def sent_prompt() -> Callable[[AsyncMock, int], str]:
    return prompt_of
