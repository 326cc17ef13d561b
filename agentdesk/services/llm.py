# =============================================================================
# Generative Backend — Provider Protocol, Anthropic & OpenAI-Compatible
# =============================================================================
#
# The pipeline talks to models only through `LLMProvider.complete()`:
# the summarizer, the tool planner and the composer each send one user
# prompt per call via `run_prompt()`. Which vendor and model answer is
# configuration:
#
#   LLM_PROVIDER=anthropic           → AnthropicProvider (native SDK)
#   LLM_PROVIDER=openai_compatible   → OpenAICompatibleProvider
#                                      (OpenAI, DeepSeek, Qwen, vLLM, ...)
#
# Providers are cached per model name, so the summary model
# (`summary_model`) and the chat model can differ without rebuilding
# clients on every request.
#
# The SDK clients own timeouts and retries; a backend error propagates to
# the caller, which applies its own fallback (ingestion) or fails the
# turn (chat).
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from agentdesk.config import settings

logger = logging.getLogger(__name__)


class ProviderNotConfiguredError(ValueError):
    """No API key (or an unknown provider) for the configured backend."""


@dataclass
class LLMResponse:
    """Completion text plus the usage figures stored in message metadata."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate one completion.

        Args:
            messages: "user"/"assistant" turns; the system prompt goes in
                `system`, never in the list.
            system: Optional system prompt.
            temperature: Sampling override (default `llm_temperature`).
            max_tokens: Output cap override (default `llm_max_tokens`).
        """
        ...


# ---------------------------------------------------------------------------
# Shared provider plumbing
# ---------------------------------------------------------------------------


class _BaseProvider:
    name = "base"

    def __init__(self, model: str | None = None) -> None:
        self.model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

    @staticmethod
    def _resolve_key(*candidates: str | None, hint: str) -> str:
        for key in candidates:
            if key:
                return key
        raise ProviderNotConfiguredError(f"No API key configured; set {hint} in .env")

    def _sampling(self, temperature: float | None, max_tokens: int | None) -> dict[str, Any]:
        return {
            "temperature": self._temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self._max_tokens,
        }

    async def _create(
        self, messages: list[dict[str, str]], system: str | None, sampling: dict[str, Any]
    ) -> LLMResponse:
        raise NotImplementedError

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        started = time.monotonic()
        response = await self._create(messages, system, self._sampling(temperature, max_tokens))
        logger.debug(
            "%s completion (%s): %d in / %d out tokens, %d ms",
            self.name,
            response.model,
            response.input_tokens,
            response.output_tokens,
            int((time.monotonic() - started) * 1000),
        )
        return response


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider(_BaseProvider):
    """Claude via the native SDK; the system prompt is a top-level kwarg."""

    name = "anthropic"

    def __init__(self, model: str | None = None, api_key: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        super().__init__(model)
        key = self._resolve_key(
            api_key, settings.llm_api_key, settings.anthropic_api_key,
            hint="LLM_API_KEY or ANTHROPIC_API_KEY",
        )
        self._client = AsyncAnthropic(api_key=key)
        logger.info("Initialized AnthropicProvider (model=%s)", self.model)

    async def _create(
        self, messages: list[dict[str, str]], system: str | None, sampling: dict[str, Any]
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {"model": self.model, "messages": messages, **sampling}
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)
        text = "".join(block.text for block in response.content if block.type == "text")
        return LLMResponse(
            content=text,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider(_BaseProvider):
    """
    Any chat-completions API.

    Switching vendors is configuration only:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_MODEL=deepseek-chat
    """

    name = "openai_compatible"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        super().__init__(model)
        key = self._resolve_key(
            api_key, settings.llm_api_key, settings.openai_api_key,
            hint="LLM_API_KEY or OPENAI_API_KEY",
        )
        self.base_url = base_url or settings.llm_base_url
        self._client = AsyncOpenAI(api_key=key, base_url=self.base_url)
        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self.model,
            self.base_url or "default",
        )

    async def _create(
        self, messages: list[dict[str, str]], system: str | None, sampling: dict[str, Any]
    ) -> LLMResponse:
        chat = [{"role": "system", "content": system}, *messages] if system else list(messages)
        response = await self._client.chat.completions.create(
            model=self.model, messages=chat, **sampling
        )
        usage = response.usage
        text = response.choices[0].message.content if response.choices else None
        return LLMResponse(
            content=text or "",
            model=response.model or self.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, type[_BaseProvider]] = {
    AnthropicProvider.name: AnthropicProvider,
    OpenAICompatibleProvider.name: OpenAICompatibleProvider,
}

_cache: dict[str, LLMProvider] = {}


def get_llm_provider(model: str | None = None) -> LLMProvider:
    """
    Configured provider for `model` (default `llm_model`), built once.

    Raises:
        ProviderNotConfiguredError: Unknown `llm_provider` or missing key.
    """
    model = model or settings.llm_model
    provider = _cache.get(model)
    if provider is None:
        provider_cls = _PROVIDERS.get(settings.llm_provider)
        if provider_cls is None:
            raise ProviderNotConfiguredError(f"Unknown LLM provider: {settings.llm_provider}")
        provider = _cache[model] = provider_cls(model=model)
    return provider


def get_summary_provider() -> LLMProvider:
    """Provider used for ingestion summaries (`summary_model`, else `llm_model`)."""
    return get_llm_provider(settings.summary_model)


async def run_prompt(
    llm: LLMProvider,
    prompt: str,
    system: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> LLMResponse:
    """Send a single user prompt and return the provider response."""
    return await llm.complete(
        messages=[{"role": "user", "content": prompt}],
        system=system,
        temperature=temperature,
        max_tokens=max_tokens,
    )
