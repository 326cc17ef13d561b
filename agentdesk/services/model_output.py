# =============================================================================
# Model Output Recovery — Tagged JSON Parsing of Generative Text
# =============================================================================
#
# Models asked for "raw JSON only" still wrap answers in prose or code
# fences. Every structured call (summary, tool plan, casual/info
# classification) goes through `parse_model_json()`, which tries, in order:
#
#   1. the raw text as-is
#   2. the text with ```lang ... ``` fences stripped
#   3. the first JSON object in the text that the validator accepts
#
# The result is tagged: `Parsed(value)` or `Malformed(raw, reason)`.
# No exception crosses this boundary; callers pick their own fallback.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\r?\n?([\s\S]*?)```")

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class Parsed:
    """A candidate decoded and accepted by the validator."""

    value: Any
    stage: str


@dataclass(frozen=True)
class Malformed:
    """No candidate could be decoded and accepted."""

    raw: str
    reason: str


ParseResult = Parsed | Malformed


def strip_code_fences(text: str) -> str:
    """Replace every fenced block with its inner content."""
    return _FENCE_RE.sub(lambda m: m.group(1), text).strip()


def first_json_object(text: str, accept: Callable[[Any], bool] | None = None) -> Any | None:
    """
    Decode the first JSON object that starts at any `{` in the text.

    Uses `raw_decode` so nested objects (e.g. tool params) are handled,
    unlike a lazy regex span. Objects rejected by `accept` are skipped.
    """
    start = text.find("{")
    while start != -1:
        try:
            value, end = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict) and (accept is None or accept(value)):
            return value
        start = text.find("{", end if isinstance(value, dict) else start + 1)
    return None


def _loads(candidate: str) -> Any | None:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def parse_model_json(
    raw: str | None,
    validator: Callable[[Any], bool] | None = None,
) -> ParseResult:
    """
    Parse structured model output with multi-stage recovery.

    Args:
        raw: Text returned by the model.
        validator: Optional predicate a decoded value must satisfy; a
            decoded-but-rejected candidate moves on to the next stage.

    Returns:
        `Parsed` with the accepted value and the stage that produced it,
        or `Malformed` when every stage failed.
    """
    text = (raw or "").strip()
    if not text:
        return Malformed(raw=raw or "", reason="empty output")

    def accept(value: Any) -> bool:
        if value is None:
            return False
        if validator is None:
            return True
        try:
            return bool(validator(value))
        except (AttributeError, KeyError, TypeError, ValueError):
            return False

    value = _loads(text)
    if accept(value):
        return Parsed(value=value, stage="raw")

    unfenced = strip_code_fences(text)
    if unfenced != text:
        value = _loads(unfenced)
        if accept(value):
            return Parsed(value=value, stage="fence")

    value = first_json_object(unfenced, accept=accept)
    if value is not None:
        return Parsed(value=value, stage="span")

    logger.debug("Model output not parseable as expected JSON: %.200s", text)
    return Malformed(raw=text, reason="no acceptable JSON object")


def has_string_field(*fields: str) -> Callable[[Any], bool]:
    """Validator: value is a dict whose given fields are all strings."""

    def check(value: Any) -> bool:
        return isinstance(value, dict) and all(
            isinstance(value.get(name), str) for name in fields
        )

    return check
