# =============================================================================
# Unit Tests — Summarizer
# =============================================================================

from __future__ import annotations

import asyncio

import pytest

from agentdesk.config import settings
from agentdesk.services.summarizer import NO_SUMMARY, heuristic_summary, summarize


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class TestSummarize:
    def test_raw_json(self, make_llm):
        llm = make_llm('{"summary": "Quarterly revenue grew."}')
        assert _run(summarize("doc", llm)) == "Quarterly revenue grew."

    def test_fenced_json(self, make_llm):
        llm = make_llm('```json\n{"summary":"x"}\n```')
        assert _run(summarize("doc", llm)) == "x"

    def test_json_after_prose(self, make_llm):
        llm = make_llm('Here is the summary: {"summary": "short one"}')
        assert _run(summarize("doc", llm)) == "short one"

    def test_prose_falls_back_to_heuristic(self, make_llm):
        llm = make_llm("This document   describes\nthe refund policy.")
        assert _run(summarize("doc", llm)) == "This document describes the refund policy."

    def test_blank_summary_field_falls_back(self, make_llm):
        llm = make_llm('{"summary": "   "}')
        assert _run(summarize("doc", llm)) == '{"summary": " "}'

    def test_empty_output(self, make_llm):
        llm = make_llm("")
        assert _run(summarize("doc", llm)) == NO_SUMMARY

    def test_input_truncated(self, make_llm, sent_prompt, monkeypatch):
        monkeypatch.setattr(settings, "summary_input_max_chars", 10)
        llm = make_llm('{"summary": "s"}')
        _run(summarize("0123456789ABCDEF", llm))

        prompt = sent_prompt(llm, 0)
        assert prompt.endswith("0123456789")
        assert "ABCDEF" not in prompt

    def test_backend_error_propagates(self, make_llm):
        llm = make_llm()
        llm.complete.side_effect = RuntimeError("rate limited")
        with pytest.raises(RuntimeError):
            _run(summarize("doc", llm))


class TestHeuristicSummary:
    def test_truncates(self):
        assert heuristic_summary("abcdef", max_chars=3) == "abc"

    def test_strips_fences(self):
        assert heuristic_summary("```\nplain words\n```") == "plain words"

    def test_whitespace_only(self):
        assert heuristic_summary("  \n ") == NO_SUMMARY
