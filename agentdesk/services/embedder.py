# =============================================================================
# Embedding Service — Text → Vector
# =============================================================================
#
# One OpenAI-compatible embeddings call per text (document content at
# ingestion, the user message at retrieval). The vector length is whatever
# the configured model produces; the retriever drops stored vectors whose
# length differs from the query's.
#
# Errors propagate. Ingestion turns them into an unprocessed document and
# retrieval into an empty knowledge context.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from openai import AsyncOpenAI

from agentdesk.config import settings
from agentdesk.services.llm import ProviderNotConfiguredError

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def get_embedding_client() -> AsyncOpenAI:
    """
    Shared embeddings client, created on first use.

    Raises:
        ProviderNotConfiguredError: Neither OPENAI_API_KEY nor LLM_API_KEY set.
    """
    global _client
    if _client is None:
        key = settings.openai_api_key or settings.llm_api_key
        if not key:
            raise ProviderNotConfiguredError(
                "No API key configured for embeddings; set OPENAI_API_KEY or LLM_API_KEY"
            )
        _client = AsyncOpenAI(api_key=key, base_url=settings.embedding_base_url)
        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            settings.embedding_model,
            settings.embedding_base_url or "default",
        )
    return _client


async def embed_text(text: str) -> list[float]:
    """
    Embed a single text.

    Returns:
        The vector, or [] when the provider answered without data (callers
        treat an empty vector as a failed embedding).
    """
    request: dict[str, Any] = {"model": settings.embedding_model, "input": text}
    if settings.embedding_dimensions:
        request["dimensions"] = settings.embedding_dimensions

    response = await get_embedding_client().embeddings.create(**request)
    if not response.data:
        logger.warning("Embeddings response had no data (model=%s)", settings.embedding_model)
        return []

    vector = [float(x) for x in response.data[0].embedding]
    logger.debug("Embedded %d chars → %d dimensions", len(text), len(vector))
    return vector
