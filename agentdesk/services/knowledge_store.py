# =============================================================================
# Knowledge Store — Per-Agent (content, embedding) Pairs
# =============================================================================
#
# Thin layer over the repository that owns the embedding wire format
# (JSON float array in a text column) and the processed-only view the
# retriever ranks over.
# =============================================================================

from __future__ import annotations

import json
import logging

from agentdesk.agents.retriever import Candidate, Embedder, retrieve
from agentdesk.db.models import KnowledgeDocument
from agentdesk.db.repository import Repository

logger = logging.getLogger(__name__)


def serialize_embedding(vector: list[float]) -> str:
    return json.dumps(vector)


def to_candidates(documents: list[KnowledgeDocument]) -> list[Candidate]:
    """Processed documents with a stored embedding, as retrieval candidates."""
    return [
        Candidate(content=doc.content, embedding=doc.embedding)
        for doc in documents
        if doc.processed and doc.embedding
    ]


class KnowledgeStore:
    """Knowledge documents of one agent, scoped to its owner."""

    def __init__(self, repo: Repository, agent_id: str, user_id: str) -> None:
        self._repo = repo
        self.agent_id = agent_id
        self.user_id = user_id

    async def add(
        self,
        filename: str,
        content: str,
        file_size: int,
        mime_type: str,
        embedding: list[float] | None,
    ) -> KnowledgeDocument:
        """
        Persist a document; it becomes processed only with a non-empty vector.

        The row is written unprocessed first and then updated, so a failure
        between the two steps leaves it out of retrieval.
        """
        document = await self._repo.create_knowledge_document(
            agent_id=self.agent_id,
            user_id=self.user_id,
            filename=filename,
            content=content,
            file_size=file_size,
            mime_type=mime_type,
            processed=False,
        )

        if embedding:
            updated = await self._repo.update_knowledge_document(
                document.id,
                embedding=serialize_embedding(embedding),
                processed=True,
            )
            document = updated or document
        else:
            logger.warning("No embedding for %s; stored as unprocessed", filename)

        return document

    async def documents(self) -> list[KnowledgeDocument]:
        return await self._repo.list_knowledge_documents(self.agent_id, self.user_id)

    async def candidates(self) -> list[Candidate]:
        return to_candidates(await self.documents())

    async def search(self, query: str, embedder: Embedder | None = None) -> str:
        """Knowledge context for `query` (see `retrieve`)."""
        return await retrieve(query, await self.candidates(), embedder=embedder)

    async def remove(self, document_id: str) -> bool:
        return await self._repo.delete_knowledge_document(document_id, self.user_id)
