# =============================================================================
# Retriever — Semantic Ranking of an Agent's Processed Documents
# =============================================================================
#
# Naive single-shot retrieval over whole documents:
#
# 1. EMBED the user query (one embedding call)
# 2. SCORE every processed document by cosine similarity
# 3. RANK descending, keep the top `retrieval_top_k`
# 4. FILTER by `similarity > retrieval_similarity_threshold`; if nothing
#    clears the bar, the top documents are used anyway so the composer
#    still has the closest material.
#
# DESIGN DECISION: Similarity in Python, not in the database.
# Per-agent corpora are small (tens of documents), embeddings live as JSON
# text, and candidates arrive already filtered to processed=True.
#
# Documents whose stored vector can't be decoded, is empty, has a
# different dimensionality (embedded with another model) or has zero norm
# are dropped from ranking.
# =============================================================================

from __future__ import annotations

import json
import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from agentdesk.config import settings
from agentdesk.services.embedder import embed_text

logger = logging.getLogger(__name__)

Embedder = Callable[[str], Awaitable[list[float]]]


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class Candidate:
    """A processed document offered for ranking."""

    content: str
    embedding: str | list[float]  # JSON text as stored, or a decoded vector


@dataclass
class ScoredDocument:
    content: str
    similarity: float


# ---------------------------------------------------------------------------
# Vector math
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    dot(a, b) / (|a| * |b|).

    Returns NaN when either vector has zero norm.

    Raises:
        ValueError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError("Vectors must have the same length")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return math.nan
    return dot / (norm_a * norm_b)


def decode_embedding(raw: str | list[float] | None) -> list[float] | None:
    """Stored embedding → float list, or None when unusable."""
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return None
    if not isinstance(raw, list) or not raw:
        return None
    if not all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in raw):
        return None
    return [float(x) for x in raw]


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def rank_candidates(query_vector: list[float], candidates: Sequence[Candidate]) -> list[ScoredDocument]:
    """Score and sort candidates; unusable vectors are skipped."""
    scored: list[ScoredDocument] = []
    for candidate in candidates:
        vector = decode_embedding(candidate.embedding)
        if vector is None:
            logger.warning("Skipping document with undecodable embedding")
            continue
        if len(vector) != len(query_vector):
            logger.warning(
                "Skipping document with embedding dimension %d (query has %d)",
                len(vector),
                len(query_vector),
            )
            continue

        similarity = cosine_similarity(query_vector, vector)
        if math.isnan(similarity):
            continue
        scored.append(ScoredDocument(content=candidate.content, similarity=similarity))

    scored.sort(key=lambda d: d.similarity, reverse=True)
    return scored


async def retrieve(
    query: str,
    candidates: Sequence[Candidate],
    embedder: Embedder | None = None,
) -> str:
    """
    Build the knowledge context for a user message.

    Args:
        query: The latest user message.
        candidates: The agent's processed documents.
        embedder: Query embedding function (defaults to `embed_text`).

    Returns:
        Selected document contents joined by blank lines, or "" when there
        is nothing usable. Never raises for embedding failures.
    """
    if not candidates:
        logger.debug("No processed documents; skipping retrieval")
        return ""

    embed = embedder or embed_text
    try:
        query_vector = await embed(query)
    except Exception as e:
        logger.warning("Query embedding failed, continuing without knowledge: %s", e)
        return ""
    if not query_vector:
        logger.warning("Query embedding was empty, continuing without knowledge")
        return ""

    ranked = rank_candidates(query_vector, candidates)
    if not ranked:
        logger.debug("No valid embeddings found among %d documents", len(candidates))
        return ""

    top = ranked[: settings.retrieval_top_k]
    relevant = [d for d in top if d.similarity > settings.retrieval_similarity_threshold]
    if relevant:
        logger.info(
            "Retrieved %d/%d documents (best similarity %.3f)",
            len(relevant),
            len(candidates),
            top[0].similarity,
        )
        return "\n\n".join(d.content for d in relevant)

    logger.info(
        "No documents above threshold %.2f; using top %d (best similarity %.3f)",
        settings.retrieval_similarity_threshold,
        len(top),
        top[0].similarity,
    )
    return "\n\n".join(d.content for d in top)
