# =============================================================================
# Document Normalizer — Uploaded Bytes / Web Pages → Plain Text
# =============================================================================
#
# Every knowledge document is stored as plain, NUL-free text. This module
# turns the supported inputs into that text:
#
#   ┌─────────────────────────┬───────────────────────────────────────────┐
#   │ Input                   │ Strategy                                  │
#   ├─────────────────────────┼───────────────────────────────────────────┤
#   │ text / markdown / csv   │ UTF-8 decode (invalid bytes replaced)     │
#   │ docx / unknown binary   │ same as text (best effort)                │
#   │ xlsx / xls              │ every sheet → "# Sheet: name" + CSV       │
#   │ pdf                     │ pypdf page text; empty → hard failure     │
#   │ web page (URL)          │ httpx fetch + BeautifulSoup body text     │
#   └─────────────────────────┴───────────────────────────────────────────┘
#
# Postgres text columns reject NUL bytes, so they are stripped from every
# output path. Scanned (image-only) PDFs are rejected, there is no OCR.
# =============================================================================

from __future__ import annotations

import io
import logging
import re

import httpx
import pandas as pd
from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from agentdesk.config import settings
from agentdesk.services.tool_executor import is_internal_url

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS_MIME = "application/vnd.ms-excel"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
SPREADSHEET_MIMES = frozenset({XLSX_MIME, XLS_MIME})

_WHITESPACE_RE = re.compile(r"\s+")


class UnreadableDocumentError(Exception):
    """The input cannot be turned into usable text."""


# ---------------------------------------------------------------------------
# Raw text
# ---------------------------------------------------------------------------


def strip_nul(text: str) -> str:
    return text.replace("\x00", "")


def decode_text(data: bytes) -> str:
    """UTF-8 decode with replacement characters, NUL bytes removed."""
    if b"\x00" in data:
        logger.warning("Document contains NUL bytes; stripping before storage")
    return strip_nul(data.decode("utf-8", errors="replace"))


# ---------------------------------------------------------------------------
# Spreadsheets
# ---------------------------------------------------------------------------


def spreadsheet_to_text(data: bytes) -> str | None:
    """
    Render every sheet of an Excel workbook as CSV.

    Returns:
        Sheets joined by a blank line, each prefixed with `# Sheet: <name>`,
        or None when the workbook can't be read or every sheet is blank.
    """
    try:
        sheets = pd.read_excel(io.BytesIO(data), sheet_name=None, header=None)
    except Exception as e:
        logger.warning("Failed to parse spreadsheet, falling back to raw text: %s", e)
        return None

    sheet_texts: list[str] = []
    for name, frame in sheets.items():
        csv_text = frame.to_csv(index=False, header=False)
        if csv_text.strip():
            sheet_texts.append(f"# Sheet: {name}\n{csv_text}")

    if not sheet_texts:
        return None
    return strip_nul("\n\n".join(sheet_texts))


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


def pdf_to_text(data: bytes) -> str:
    """
    Extract text page by page with pypdf.

    Raises:
        UnreadableDocumentError: If the PDF can't be parsed or contains no
            extractable text (scanned / image-only).
    """
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError, KeyError, TypeError) as e:
        logger.warning("PDF parse failed: %s", e)
        raise UnreadableDocumentError(
            "Failed to parse PDF; please upload a searchable PDF or try a different file."
        ) from e

    text = strip_nul("\n\n".join(p for p in pages if p))
    if not text.strip():
        logger.warning("PDF extraction produced empty text (%d pages)", len(pages))
        raise UnreadableDocumentError(
            "Failed to extract text from PDF; please upload a searchable PDF."
        )

    logger.info("PDF text extracted: %d pages, %d chars", len(pages), len(text))
    return text


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


def normalize_document(data: bytes, mime_type: str) -> str:
    """
    Convert uploaded bytes into storable plain text.

    Args:
        data: Raw upload.
        mime_type: Declared MIME type of the upload.

    Returns:
        NUL-free text.

    Raises:
        UnreadableDocumentError: PDF with no extractable text.
    """
    if mime_type == PDF_MIME:
        return pdf_to_text(data)

    if mime_type in SPREADSHEET_MIMES:
        sheets = spreadsheet_to_text(data)
        if sheets is not None:
            return sheets

    return decode_text(data)


# ---------------------------------------------------------------------------
# Web pages
# ---------------------------------------------------------------------------


def extract_visible_text(html: str, max_chars: int | None = None) -> str:
    """
    Body text of an HTML page with scripts and styles removed.

    Whitespace runs collapse to a single space; the result is truncated to
    `max_chars` (default `web_page_max_chars`).
    """
    limit = settings.web_page_max_chars if max_chars is None else max_chars

    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    root = soup.body or soup
    text = _WHITESPACE_RE.sub(" ", root.get_text(" ")).strip()
    return strip_nul(text)[:limit]


async def _get_following_redirects(client: httpx.AsyncClient, url: str) -> httpx.Response:
    """GET `url`, following up to `web_fetch_max_redirects` hops by hand."""
    target = url
    for _ in range(settings.web_fetch_max_redirects + 1):
        if is_internal_url(target) and not settings.allow_internal_tool_calls:
            logger.warning("Blocked fetch of internal address %s (from %s)", target, url)
            raise UnreadableDocumentError("Fetching internal network addresses is blocked.")

        # Per-request override: a caller's client may be built to follow.
        response = await client.get(target, follow_redirects=False)
        if response.next_request is None:
            return response
        target = str(response.next_request.url)

    raise UnreadableDocumentError("Failed to fetch URL: too many redirects")


async def fetch_web_page(url: str, client: httpx.AsyncClient | None = None) -> str:
    """
    Fetch a page and return its visible text.

    Redirects are followed one hop at a time so that every target passes
    the same loopback check as the submitted URL.

    Raises:
        UnreadableDocumentError: Non-2xx status, transport failure, a
            redirect to an internal address, or no readable text.
    """
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.web_fetch_timeout_seconds)

    try:
        response = await _get_following_redirects(client, url)
    except httpx.HTTPError as e:
        logger.warning("Failed to fetch %s: %s", url, e)
        raise UnreadableDocumentError(f"Failed to fetch URL: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    if not response.is_success:
        raise UnreadableDocumentError(f"Failed to fetch URL: {response.status_code}")

    text = extract_visible_text(response.text)
    if not text:
        raise UnreadableDocumentError("No readable text extracted")

    logger.info("Fetched %s: %d chars of text", url, len(text))
    return text
