# =============================================================================
# Knowledge Ingestion — Upload / URL → Normalize → Summarize → Embed → Store
# =============================================================================
#
# PIPELINE:
#   1. Validate  — size cap and accepted MIME types (uploads only)
#   2. Normalize — bytes or web page → NUL-free text (hard failures reject)
#   3. Summarize — truncated input, returned to the caller only
#   4. Embed     — full content
#   5. Store     — processed=True only with a non-empty embedding
#
# Failure policy:
#   - Normalization failure → UploadRejectedError, nothing persisted
#   - Summary backend failure → placeholder summary, upload continues
#   - Embedding failure / empty vector → stored unprocessed, upload
#     succeeds, no automatic retry
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from agentdesk.agents.retriever import Embedder
from agentdesk.config import settings
from agentdesk.db.models import KnowledgeDocument
from agentdesk.db.repository import Repository
from agentdesk.services.embedder import embed_text
from agentdesk.services.knowledge_store import KnowledgeStore
from agentdesk.services.llm import LLMProvider
from agentdesk.services.normalizer import (
    DOCX_MIME,
    PDF_MIME,
    XLS_MIME,
    XLSX_MIME,
    UnreadableDocumentError,
    fetch_web_page,
    normalize_document,
)
from agentdesk.services.summarizer import NO_SUMMARY, summarize
from agentdesk.services.tool_executor import is_internal_url

logger = logging.getLogger(__name__)

ACCEPTED_MIME_TYPES = frozenset(
    {
        "text/plain",
        "text/markdown",
        "text/csv",
        PDF_MIME,
        DOCX_MIME,
        XLSX_MIME,
        XLS_MIME,
    }
)

HTML_MIME = "text/html"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class UploadRejectedError(Exception):
    """The document can't be ingested; nothing was persisted."""

    status_code = 400


class DocumentTooLargeError(UploadRejectedError):
    status_code = 413


class UnsupportedDocumentError(UploadRejectedError):
    pass


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class IngestionOutcome:
    document: KnowledgeDocument
    summary: str


# ---------------------------------------------------------------------------
# Shared tail: summarize + embed + store
# ---------------------------------------------------------------------------


async def _summarize_safely(content: str, llm: LLMProvider) -> str:
    try:
        return await summarize(content, llm)
    except Exception as e:
        logger.warning("Summary generation failed, using placeholder: %s", e)
        return NO_SUMMARY


async def _embed_safely(content: str, embedder: Embedder) -> list[float] | None:
    try:
        vector = await embedder(content)
    except Exception as e:
        logger.warning("Document embedding failed; document will be unprocessed: %s", e)
        return None
    if not vector:
        logger.warning("Document embedding was empty; document will be unprocessed")
        return None
    return vector


async def _store(
    store: KnowledgeStore,
    filename: str,
    content: str,
    file_size: int,
    mime_type: str,
    llm: LLMProvider,
    embedder: Embedder | None,
) -> IngestionOutcome:
    summary = await _summarize_safely(content, llm)
    vector = await _embed_safely(content, embedder or embed_text)

    document = await store.add(
        filename=filename,
        content=content,
        file_size=file_size,
        mime_type=mime_type,
        embedding=vector,
    )
    logger.info(
        "Ingested %s for agent %s (%d chars, processed=%s)",
        filename,
        store.agent_id,
        len(content),
        document.processed,
    )
    return IngestionOutcome(document=document, summary=summary)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def base_mime_type(mime_type: str | None) -> str:
    """'text/plain; charset=utf-8' → 'text/plain'."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


async def ingest_upload(
    repo: Repository,
    agent_id: str,
    user_id: str,
    filename: str,
    data: bytes,
    mime_type: str | None,
    llm: LLMProvider,
    embedder: Embedder | None = None,
) -> IngestionOutcome:
    """
    Ingest an uploaded file.

    Raises:
        DocumentTooLargeError: Upload exceeds `upload_max_bytes`.
        UnsupportedDocumentError: MIME type is not accepted.
        UploadRejectedError: The file can't be normalized (e.g. scanned PDF).
    """
    if len(data) > settings.upload_max_bytes:
        raise DocumentTooLargeError(
            f"File exceeds the {settings.upload_max_bytes // (1024 * 1024)} MB upload limit"
        )

    mime = base_mime_type(mime_type)
    if mime not in ACCEPTED_MIME_TYPES:
        raise UnsupportedDocumentError(f"Unsupported file type: {mime or 'unknown'}")

    try:
        content = normalize_document(data, mime)
    except UnreadableDocumentError as e:
        raise UploadRejectedError(str(e)) from e

    store = KnowledgeStore(repo, agent_id, user_id)
    return await _store(store, filename, content, len(data), mime, llm, embedder)


async def ingest_url(
    repo: Repository,
    agent_id: str,
    user_id: str,
    url: str,
    llm: LLMProvider,
    embedder: Embedder | None = None,
    client: httpx.AsyncClient | None = None,
) -> IngestionOutcome:
    """
    Ingest the visible text of a web page.

    Raises:
        UploadRejectedError: Invalid or internal URL, fetch failure, or no
            readable text.
    """
    parts = urlsplit(url or "")
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise UploadRejectedError("Invalid URL")
    if is_internal_url(url) and not settings.allow_internal_tool_calls:
        raise UploadRejectedError("Fetching internal network addresses is blocked.")

    try:
        content = await fetch_web_page(url, client=client)
    except UnreadableDocumentError as e:
        raise UploadRejectedError(str(e)) from e

    filename = f"URL: {parts.hostname}{parts.path or '/'}"
    store = KnowledgeStore(repo, agent_id, user_id)
    return await _store(
        store,
        filename,
        content,
        len(content.encode("utf-8")),
        HTML_MIME,
        llm,
        embedder,
    )
