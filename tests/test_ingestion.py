# =============================================================================
# Unit Tests — Knowledge Ingestion & Knowledge Store
# =============================================================================

from __future__ import annotations

import asyncio
import io
import json

import httpx
import pytest
from pypdf import PdfWriter

from agentdesk.config import settings
from agentdesk.services.ingestion import (
    HTML_MIME,
    DocumentTooLargeError,
    UnsupportedDocumentError,
    UploadRejectedError,
    base_mime_type,
    ingest_upload,
    ingest_url,
)
from agentdesk.services.knowledge_store import KnowledgeStore
from agentdesk.services.normalizer import PDF_MIME
from agentdesk.services.summarizer import NO_SUMMARY


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _upload(repo, llm, data=b"Refunds are processed in 5 days.", mime="text/plain", embedder=None):
    return _run(
        ingest_upload(
            repo,
            agent_id="agent-1",
            user_id="user-1",
            filename="policy.txt",
            data=data,
            mime_type=mime,
            llm=llm,
            embedder=embedder,
        )
    )


# ---------------------------------------------------------------------------
# Test: Uploads
# ---------------------------------------------------------------------------


class TestIngestUpload:
    def test_success_is_processed(self, repo, make_llm, make_embedder):
        llm = make_llm('{"summary": "Refund timing."}')
        outcome = _upload(repo, llm, embedder=make_embedder(default=[0.6, 0.8]))

        document = outcome.document
        assert outcome.summary == "Refund timing."
        assert document.processed is True
        assert json.loads(document.embedding) == [0.6, 0.8]
        assert document.content == "Refunds are processed in 5 days."
        assert document.file_size == len(b"Refunds are processed in 5 days.")
        assert document.mime_type == "text/plain"
        assert list(repo.documents) == [document.id]

    def test_embedding_failure_stores_unprocessed(self, repo, make_llm):
        async def failing(text):
            raise RuntimeError("embeddings down")

        outcome = _upload(repo, make_llm('{"summary": "s"}'), embedder=failing)
        assert outcome.document.processed is False
        assert outcome.document.embedding is None
        assert len(repo.documents) == 1

    def test_empty_embedding_stores_unprocessed(self, repo, make_llm, make_embedder):
        outcome = _upload(repo, make_llm('{"summary": "s"}'), embedder=make_embedder(default=[]))
        assert outcome.document.processed is False

    def test_summary_failure_uses_placeholder(self, repo, make_llm, make_embedder):
        llm = make_llm()
        llm.complete.side_effect = RuntimeError("rate limited")
        outcome = _upload(repo, llm, embedder=make_embedder())
        assert outcome.summary == NO_SUMMARY
        assert outcome.document.processed is True

    def test_nul_bytes_stripped(self, repo, make_llm, make_embedder):
        outcome = _upload(repo, make_llm('{"summary": "s"}'), data=b"a\x00b", embedder=make_embedder())
        assert outcome.document.content == "ab"

    def test_mime_parameters_ignored(self, repo, make_llm, make_embedder):
        outcome = _upload(
            repo, make_llm('{"summary": "s"}'), mime="text/markdown; charset=utf-8", embedder=make_embedder()
        )
        assert outcome.document.mime_type == "text/markdown"

    def test_blank_pdf_not_persisted(self, repo, make_llm, make_embedder):
        writer = PdfWriter()
        writer.add_blank_page(width=100, height=100)
        buffer = io.BytesIO()
        writer.write(buffer)

        llm = make_llm()
        with pytest.raises(UploadRejectedError, match="searchable PDF"):
            _upload(repo, llm, data=buffer.getvalue(), mime=PDF_MIME, embedder=make_embedder())
        assert repo.documents == {}
        llm.complete.assert_not_called()

    def test_too_large(self, repo, make_llm, monkeypatch):
        monkeypatch.setattr(settings, "upload_max_bytes", 4)
        with pytest.raises(DocumentTooLargeError) as exc:
            _upload(repo, make_llm(), data=b"12345")
        assert exc.value.status_code == 413
        assert repo.documents == {}

    def test_unsupported_type(self, repo, make_llm):
        with pytest.raises(UnsupportedDocumentError) as exc:
            _upload(repo, make_llm(), mime="image/png")
        assert exc.value.status_code == 400

    def test_base_mime_type(self):
        assert base_mime_type("Text/Plain; charset=utf-8") == "text/plain"
        assert base_mime_type(None) == ""


# ---------------------------------------------------------------------------
# Test: URLs
# ---------------------------------------------------------------------------


class TestIngestUrl:
    def _ingest(self, repo, llm, url, handler, embedder=None):
        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await ingest_url(
                    repo, "agent-1", "user-1", url, llm, embedder=embedder, client=client
                )

        return _run(go())

    def test_success(self, repo, make_llm, make_embedder):
        html = "<html><body><h1>Docs</h1><p>Héllo world</p></body></html>"
        outcome = self._ingest(
            repo,
            make_llm('{"summary": "Greeting page."}'),
            "https://docs.example.com/intro?x=1",
            lambda request: httpx.Response(200, html=html),
            embedder=make_embedder(),
        )

        document = outcome.document
        assert document.filename == "URL: docs.example.com/intro"
        assert document.mime_type == HTML_MIME
        assert document.content == "Docs Héllo world"
        assert document.file_size == len("Docs Héllo world".encode("utf-8"))
        assert document.processed is True
        assert outcome.summary == "Greeting page."

    def test_root_path(self, repo, make_llm, make_embedder):
        outcome = self._ingest(
            repo,
            make_llm('{"summary": "s"}'),
            "https://example.com",
            lambda request: httpx.Response(200, html="<body>hi</body>"),
            embedder=make_embedder(),
        )
        assert outcome.document.filename == "URL: example.com/"

    def test_fetch_failure_rejected(self, repo, make_llm):
        with pytest.raises(UploadRejectedError, match="Failed to fetch URL: 500"):
            self._ingest(
                repo, make_llm(), "https://example.com/x", lambda request: httpx.Response(500)
            )
        assert repo.documents == {}

    @pytest.mark.parametrize("url", ["ftp://example.com/file", "not a url", ""])
    def test_invalid_url(self, repo, make_llm, url):
        with pytest.raises(UploadRejectedError, match="Invalid URL"):
            self._ingest(repo, make_llm(), url, lambda request: httpx.Response(200))

    def test_internal_url_blocked(self, repo, make_llm, monkeypatch):
        monkeypatch.setattr(settings, "allow_internal_tool_calls", False)
        seen = []
        with pytest.raises(UploadRejectedError, match="internal"):
            self._ingest(
                repo,
                make_llm(),
                "http://127.0.0.1:8000/admin",
                lambda request: seen.append(request) or httpx.Response(200),
            )
        assert seen == []

    def test_redirect_to_internal_url_blocked(self, repo, make_llm, monkeypatch):
        monkeypatch.setattr(settings, "allow_internal_tool_calls", False)
        hits = []

        def handler(request):
            hits.append(str(request.url))
            if request.url.host == "public.example.com":
                return httpx.Response(302, headers={"Location": "http://127.0.0.1:8000/admin"})
            return httpx.Response(200, html="<body>INTERNAL SECRET</body>")

        async def go():
            transport = httpx.MockTransport(handler)
            async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:
                return await ingest_url(
                    repo, "agent-1", "user-1", "https://public.example.com/x", make_llm(), client=client
                )

        with pytest.raises(UploadRejectedError, match="internal"):
            _run(go())
        assert hits == ["https://public.example.com/x"]
        assert repo.documents == {}

    def test_redirect_to_public_url_followed(self, repo, make_llm, make_embedder):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"Location": "/new"})
            return httpx.Response(200, html="<body>Moved here</body>")

        outcome = self._ingest(
            repo,
            make_llm('{"summary": "s"}'),
            "https://example.com/old",
            handler,
            embedder=make_embedder(),
        )
        assert outcome.document.content == "Moved here"
        assert outcome.document.filename == "URL: example.com/old"


# ---------------------------------------------------------------------------
# Test: KnowledgeStore
# ---------------------------------------------------------------------------


class TestKnowledgeStore:
    def test_search_ranks_processed_only(self, repo, make_embedder):
        store = KnowledgeStore(repo, "agent-1", "user-1")

        async def go():
            await store.add("a.txt", "close match", 10, "text/plain", [1.0, 0.0])
            await store.add("b.txt", "unprocessed", 10, "text/plain", None)
            await store.add("c.txt", "far", 10, "text/plain", [0.0, 1.0])
            return await store.search("q", embedder=make_embedder(default=[1.0, 0.0]))

        assert _run(go()) == "close match"

    def test_scoped_to_owner(self, repo):
        mine = KnowledgeStore(repo, "agent-1", "user-1")
        theirs = KnowledgeStore(repo, "agent-1", "user-2")

        async def go():
            document = await mine.add("a.txt", "x", 1, "text/plain", [1.0])
            removed_by_other = await theirs.remove(document.id)
            return removed_by_other, await mine.documents()

        removed_by_other, documents = _run(go())
        assert removed_by_other is False
        assert len(documents) == 1

    def test_candidates(self, repo):
        store = KnowledgeStore(repo, "agent-1", "user-1")

        async def go():
            await store.add("a.txt", "x", 1, "text/plain", [1.0, 2.0])
            await store.add("b.txt", "y", 1, "text/plain", [])
            return await store.candidates()

        candidates = _run(go())
        assert [c.content for c in candidates] == ["x"]
        assert json.loads(candidates[0].embedding) == [1.0, 2.0]
