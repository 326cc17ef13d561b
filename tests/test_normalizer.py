# =============================================================================
# Unit Tests — Document Normalizer
# =============================================================================
#
# Real parsers (pypdf, pandas/openpyxl, BeautifulSoup) on in-memory inputs;
# outbound HTTP goes through httpx.MockTransport.
# =============================================================================

from __future__ import annotations

import asyncio
import io

import httpx
import pandas as pd
import pytest
from pypdf import PdfWriter

from agentdesk.config import settings
from agentdesk.services.normalizer import (
    DOCX_MIME,
    PDF_MIME,
    XLSX_MIME,
    UnreadableDocumentError,
    extract_visible_text,
    fetch_web_page,
    normalize_document,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _workbook(sheets: dict[str, pd.DataFrame]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, frame in sheets.items():
            frame.to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Test: Text
# ---------------------------------------------------------------------------


class TestTextNormalization:
    def test_plain_text(self):
        assert normalize_document(b"hello world", "text/plain") == "hello world"

    def test_nul_bytes_stripped(self):
        text = normalize_document(b"ab\x00cd\x00", "text/plain")
        assert text == "abcd"
        assert "\x00" not in text

    def test_invalid_utf8_replaced(self):
        text = normalize_document(b"caf\xe9", "text/markdown")
        assert text.startswith("caf")
        assert "�" in text

    def test_docx_is_decoded_as_text(self):
        text = normalize_document(b"PK\x03\x04\x00binary", DOCX_MIME)
        assert "\x00" not in text


# ---------------------------------------------------------------------------
# Test: PDF
# ---------------------------------------------------------------------------


class TestPdfNormalization:
    def test_blank_pdf_is_rejected(self):
        with pytest.raises(UnreadableDocumentError, match="searchable PDF"):
            normalize_document(_blank_pdf(), PDF_MIME)

    def test_garbage_pdf_is_rejected(self):
        with pytest.raises(UnreadableDocumentError):
            normalize_document(b"definitely not a pdf", PDF_MIME)


# ---------------------------------------------------------------------------
# Test: Spreadsheets
# ---------------------------------------------------------------------------


class TestSpreadsheetNormalization:
    def test_sheets_rendered_as_csv(self):
        data = _workbook(
            {
                "Stock": pd.DataFrame({"item": ["apple", "pear"], "qty": [3, 5]}),
                "Prices": pd.DataFrame({"item": ["apple"], "price": [1.5]}),
            }
        )
        text = normalize_document(data, XLSX_MIME)

        assert text.startswith("# Sheet: Stock\nitem,qty\napple,3\npear,5")
        assert "\n\n# Sheet: Prices\nitem,price\napple,1.5" in text

    def test_blank_sheet_skipped(self):
        data = _workbook(
            {
                "Empty": pd.DataFrame(),
                "Data": pd.DataFrame({"a": [1]}),
            }
        )
        text = normalize_document(data, XLSX_MIME)
        assert "# Sheet: Empty" not in text
        assert "# Sheet: Data" in text

    def test_unreadable_workbook_falls_back_to_text(self):
        assert normalize_document(b"name,qty\nx,1", XLSX_MIME) == "name,qty\nx,1"


# ---------------------------------------------------------------------------
# Test: Web pages
# ---------------------------------------------------------------------------


HTML = """
<html>
  <head><title>T</title><style>body { color: red; }</style></head>
  <body>
    <script>var secret = 1;</script>
    <h1>Pricing</h1>
    <p>Basic   plan
       costs $10.</p>
    <noscript>Enable JS</noscript>
  </body>
</html>
"""


class TestWebPages:
    def test_visible_text(self):
        text = extract_visible_text(HTML)
        assert text == "Pricing Basic plan costs $10."

    def test_truncation(self):
        text = extract_visible_text("<body>" + "word " * 100 + "</body>", max_chars=20)
        assert len(text) == 20

    def test_fetch_success(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=HTML))

        async def go():
            async with httpx.AsyncClient(transport=transport) as client:
                return await fetch_web_page("https://example.com/pricing", client=client)

        assert _run(go()) == "Pricing Basic plan costs $10."

    def test_fetch_non_2xx_fails(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404, text="missing"))

        async def go():
            async with httpx.AsyncClient(transport=transport) as client:
                return await fetch_web_page("https://example.com/x", client=client)

        with pytest.raises(UnreadableDocumentError, match="404"):
            _run(go())

    def test_fetch_empty_page_fails(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html><body><script>x()</script></body></html>")
        )

        async def go():
            async with httpx.AsyncClient(transport=transport) as client:
                return await fetch_web_page("https://example.com/x", client=client)

        with pytest.raises(UnreadableDocumentError, match="No readable text"):
            _run(go())

    def test_redirect_loop_stops_at_hop_limit(self, monkeypatch):
        monkeypatch.setattr(settings, "web_fetch_max_redirects", 2)
        hits = []

        def handler(request):
            hits.append(request.url.path)
            return httpx.Response(302, headers={"Location": f"/hop{len(hits)}"})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await fetch_web_page("https://example.com/start", client=client)

        with pytest.raises(UnreadableDocumentError, match="too many redirects"):
            _run(go())
        assert hits == ["/start", "/hop1", "/hop2"]

    def test_redirect_to_loopback_allowed_when_opted_in(self, monkeypatch):
        monkeypatch.setattr(settings, "allow_internal_tool_calls", True)

        def handler(request):
            if request.url.host == "example.com":
                return httpx.Response(302, headers={"Location": "http://localhost:9000/page"})
            return httpx.Response(200, text=HTML)

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await fetch_web_page("https://example.com/x", client=client)

        assert _run(go()) == "Pricing Basic plan costs $10."
