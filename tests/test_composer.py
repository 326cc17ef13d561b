# =============================================================================
# Unit Tests — Response Composer
# =============================================================================

from __future__ import annotations

import asyncio
import json

from agentdesk.agents.composer import (
    INSUFFICIENT_INFORMATION_REPLY,
    LANGUAGE_INSTRUCTION,
    SHORT_INSUFFICIENT_REPLY,
    STRICT_GROUNDING_INSTRUCTION,
    TOOL_FALLBACK_REPLY,
    build_system_instructions,
    build_system_prompt,
    compose,
)
from agentdesk.config import settings


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _history(*pairs: tuple[str, str]) -> list[dict[str, str]]:
    return [{"role": role, "content": content} for role, content in pairs]


# ---------------------------------------------------------------------------
# Test: Prompt assembly
# ---------------------------------------------------------------------------


class TestSystemPrompt:
    def test_instructions_joined(self):
        assert build_system_instructions("Be helpful.", "friendly", "concise") == (
            "Be helpful.\n\n"
            "Please adopt a friendly tone when replying.\n\n"
            "Respond in a concise style."
        )

    def test_missing_parts_skipped(self):
        assert build_system_instructions(None, "formal", None) == "Please adopt a formal tone when replying."

    def test_prompt_without_knowledge(self):
        prompt = build_system_prompt("Be helpful.")
        assert prompt.startswith("Be helpful.\n\n")
        assert STRICT_GROUNDING_INSTRUCTION in prompt
        assert LANGUAGE_INSTRUCTION in prompt
        assert "Additional Knowledge Context" not in prompt

    def test_prompt_with_knowledge(self):
        prompt = build_system_prompt("", "Refunds take 5 days.")
        assert prompt.startswith("You are an assistant.")
        assert prompt.endswith("Additional Knowledge Context:\nRefunds take 5 days.")


# ---------------------------------------------------------------------------
# Test: No-knowledge path
# ---------------------------------------------------------------------------


class TestComposeWithoutKnowledge:
    def test_casual_reply(self, make_llm):
        llm = make_llm('{"category":"casual","reply":"Hello! How can I help?"}')
        result = _run(compose(llm, "", _history(("user", "hi"))))
        assert result.content == "Hello! How can I help?"
        assert result.category == "casual"
        assert result.tokens_used == 15
        assert result.model == "mock-model"

    def test_info_request_reply(self, make_llm):
        llm = make_llm('{"category":"info_request","reply":"I lack the knowledge for that."}')
        result = _run(compose(llm, "", _history(("user", "What is the refund policy?"))))
        assert result.content == "I lack the knowledge for that."

    def test_info_request_empty_reply(self, make_llm):
        llm = make_llm('{"category":"info_request","reply":""}')
        result = _run(compose(llm, "", _history(("user", "What is X?"))))
        assert result.content == SHORT_INSUFFICIENT_REPLY

    def test_casual_empty_reply(self, make_llm):
        llm = make_llm('{"category":"casual","reply":"  "}')
        result = _run(compose(llm, "", _history(("user", "hey"))))
        assert result.content == INSUFFICIENT_INFORMATION_REPLY

    def test_unparsable_is_static_refusal(self, make_llm):
        llm = make_llm("The refund policy is 30 days.")
        result = _run(compose(llm, "", _history(("user", "What is the refund policy?"))))
        assert result.content == INSUFFICIENT_INFORMATION_REPLY

    def test_context_window(self, make_llm, sent_prompt, monkeypatch):
        monkeypatch.setattr(settings, "classification_context_messages", 2)
        llm = make_llm('{"category":"casual","reply":"ok"}')
        history = _history(
            ("user", "m1"), ("assistant", "m2"), ("user", "m3"), ("assistant", "m4"), ("user", "latest")
        )
        _run(compose(llm, "", history))

        prompt = sent_prompt(llm, 0)
        assert "user: m3\nassistant: m4" in prompt
        assert "m2" not in prompt
        assert prompt.endswith("Latest User Message: latest")

    def test_empty_context_marker(self, make_llm, sent_prompt):
        llm = make_llm('{"category":"casual","reply":"ok"}')
        _run(compose(llm, "", _history(("user", "hi"))))
        assert "(none)" in sent_prompt(llm, 0)


# ---------------------------------------------------------------------------
# Test: Grounded path
# ---------------------------------------------------------------------------


class TestComposeGrounded:
    def test_knowledge_in_prompt(self, make_llm, sent_prompt):
        llm = make_llm("Refunds take 5 days.")
        history = _history(("user", "How long do refunds take?"))
        result = _run(compose(llm, "Be helpful.", history, knowledge="Refunds take 5 days."))

        assert result.content == "Refunds take 5 days."
        prompt = sent_prompt(llm, 0)
        assert "Additional Knowledge Context:\nRefunds take 5 days." in prompt
        assert prompt.endswith("user: How long do refunds take?")

    def test_empty_output(self, make_llm):
        llm = make_llm("   ")
        result = _run(compose(llm, "", _history(("user", "q")), knowledge="facts"))
        assert result.content == SHORT_INSUFFICIENT_REPLY

    def test_whitespace_knowledge_uses_classifier(self, make_llm, sent_prompt):
        llm = make_llm('{"category":"casual","reply":"hi"}')
        _run(compose(llm, "", _history(("user", "hello")), knowledge="  \n"))
        assert "Decide if the user's latest message is CASUAL" in sent_prompt(llm, 0)


# ---------------------------------------------------------------------------
# Test: Tool path
# ---------------------------------------------------------------------------


class TestComposeFromTool:
    def test_tool_result_in_prompt(self, make_llm, sent_prompt):
        llm = make_llm("It is 21°C in Paris.")
        run = {"tool": "weather", "status": 200, "elapsedMs": 12, "data": {"temp": 21}}
        result = _run(compose(llm, "Be brief.", _history(("user", "weather in Paris?")), tool_run=run))

        assert result.content == "It is 21°C in Paris."
        prompt = sent_prompt(llm, 0)
        assert json.dumps(run) in prompt
        assert "User message: weather in Paris?" in prompt

    def test_tool_takes_precedence_over_knowledge(self, make_llm, sent_prompt):
        llm = make_llm("answer")
        _run(compose(llm, "", _history(("user", "q")), knowledge="facts", tool_run={"tool": "t"}))
        assert "A tool was executed" in sent_prompt(llm, 0)

    def test_empty_output_fallback(self, make_llm):
        llm = make_llm("")
        result = _run(compose(llm, "", _history(("user", "q")), tool_run={"tool": "t", "error": "boom"}))
        assert result.content == TOOL_FALLBACK_REPLY

    def test_tool_result_truncated(self, make_llm, sent_prompt, monkeypatch):
        monkeypatch.setattr(settings, "tool_result_max_chars", 20)
        llm = make_llm("answer")
        run = {"tool": "t", "data": "x" * 500}
        _run(compose(llm, "", _history(("user", "q")), tool_run=run))

        prompt = sent_prompt(llm, 0)
        assert json.dumps(run)[:20] + "\n" in prompt
        assert "x" * 30 not in prompt
