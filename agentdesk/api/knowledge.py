# =============================================================================
# Knowledge API — Document Upload, URL Ingestion, Listing
# =============================================================================
#
# ENDPOINTS:
#   GET    /api/agents/{id}/knowledge       — list documents (no content)
#   POST   /api/agents/{id}/knowledge       — upload a file (multipart)
#   POST   /api/agents/{id}/knowledge/url   — ingest a web page
#   DELETE /api/knowledge/{document_id}     — delete a document
#
# Ingestion is synchronous: summary and embedding are generated inside the
# request, and the response carries the summary. Rejected uploads (too
# large, unsupported type, unreadable PDF) return 413/400 and persist
# nothing. An embedding failure still returns 201 with processed=false.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from agentdesk.api.deps import get_current_user, get_repository, get_summary_llm, require_agent
from agentdesk.config import settings
from agentdesk.db.models import User
from agentdesk.db.repository import Repository
from agentdesk.models.requests import UrlIngestRequest
from agentdesk.models.responses import IngestResponse, KnowledgeDocumentResponse
from agentdesk.services.ingestion import IngestionOutcome, UploadRejectedError, ingest_upload, ingest_url
from agentdesk.services.llm import LLMProvider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Knowledge"])


def _ingest_response(outcome: IngestionOutcome) -> IngestResponse:
    document = KnowledgeDocumentResponse.model_validate(outcome.document)
    return IngestResponse(**document.model_dump(), summary=outcome.summary)


@router.get("/api/agents/{agent_id}/knowledge", response_model=list[KnowledgeDocumentResponse])
async def list_documents(
    agent_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> list[KnowledgeDocumentResponse]:
    await require_agent(repo, agent_id, user)
    documents = await repo.list_knowledge_documents(agent_id, user.id)
    return [KnowledgeDocumentResponse.model_validate(d) for d in documents]


@router.post(
    "/api/agents/{agent_id}/knowledge",
    response_model=IngestResponse,
    status_code=201,
    summary="Upload a knowledge document",
    description=(
        "Accepts text, markdown, CSV, PDF (searchable), DOCX, XLSX and XLS up "
        "to the configured size limit."
    ),
)
async def upload_document(
    agent_id: str,
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
    llm: LLMProvider = Depends(get_summary_llm),
) -> IngestResponse:
    agent = await require_agent(repo, agent_id, user)

    # One byte past the cap is enough to detect an oversized upload.
    data = await file.read(settings.upload_max_bytes + 1)
    try:
        outcome = await ingest_upload(
            repo,
            agent.id,
            user.id,
            filename=file.filename or "upload",
            data=data,
            mime_type=file.content_type,
            llm=llm,
        )
    except UploadRejectedError as e:
        logger.info("Rejected upload %s: %s", file.filename, e)
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e

    return _ingest_response(outcome)


@router.post("/api/agents/{agent_id}/knowledge/url", response_model=IngestResponse, status_code=201)
async def ingest_web_page(
    agent_id: str,
    body: UrlIngestRequest,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
    llm: LLMProvider = Depends(get_summary_llm),
) -> IngestResponse:
    agent = await require_agent(repo, agent_id, user)
    try:
        outcome = await ingest_url(repo, agent.id, user.id, body.url, llm=llm)
    except UploadRejectedError as e:
        logger.info("Rejected URL %s: %s", body.url, e)
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e

    return _ingest_response(outcome)


@router.delete("/api/knowledge/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> Response:
    if not await repo.delete_knowledge_document(document_id, user.id):
        raise HTTPException(status_code=404, detail="Document not found")
    return Response(status_code=204)
