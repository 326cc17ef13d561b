# =============================================================================
# Summarizer — Concise Summary of an Ingested Document
# =============================================================================
#
# The summary is shown to the uploader; it is not used for retrieval.
# The model is asked for raw JSON {"summary": "..."} and the answer is
# recovered in four tiers:
#
#   1-3. parse_model_json(): raw → fence-stripped → first JSON object
#   4.   heuristic: the first `summary_fallback_chars` of the cleaned raw
#        output, or "No summary available" when that is empty.
# =============================================================================

from __future__ import annotations

import logging
import re

from agentdesk.config import settings
from agentdesk.services.llm import LLMProvider, run_prompt
from agentdesk.services.model_output import Parsed, has_string_field, parse_model_json, strip_code_fences

logger = logging.getLogger(__name__)

NO_SUMMARY = "No summary available"

SUMMARY_PROMPT = (
    "You are a document processing assistant. Create a concise summary of the "
    "provided document that captures the key information and context. Output "
    "ONLY raw JSON with this exact shape (no markdown, no code fences, no extra "
    'text): {{"summary":"<your concise summary>"}}\n\n'
    "Document content begins below:\n{content}"
)

_WHITESPACE_RE = re.compile(r"\s+")


def heuristic_summary(raw: str, max_chars: int | None = None) -> str:
    """First characters of the fence-stripped, whitespace-collapsed output."""
    limit = settings.summary_fallback_chars if max_chars is None else max_chars
    cleaned = _WHITESPACE_RE.sub(" ", strip_code_fences(raw)).strip()
    return cleaned[:limit] or NO_SUMMARY


async def summarize(text: str, llm: LLMProvider) -> str:
    """
    Summarize a normalized document.

    Args:
        text: Full document text; only the first `summary_input_max_chars`
            characters are sent to the model.
        llm: Generative backend.

    Returns:
        A non-empty summary string.

    Raises:
        Any backend error from `llm` (ingestion decides the fallback).
    """
    summary_input = text[: settings.summary_input_max_chars]
    response = await run_prompt(llm, SUMMARY_PROMPT.format(content=summary_input))

    result = parse_model_json(response.content, validator=has_string_field("summary"))
    if isinstance(result, Parsed) and result.value["summary"].strip():
        return result.value["summary"]

    logger.warning("Failed to parse summary JSON, falling back to heuristic summary")
    return heuristic_summary(response.content)
