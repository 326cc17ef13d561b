# =============================================================================
# Tool Executor — One Outbound HTTP Call per Tool Invocation
# =============================================================================
#
# Executes a configured HTTP tool with the parameters chosen by the planner
# (or supplied directly through the execute endpoint).
#
#   GET  → params merged into the endpoint's query string
#   POST → params as a JSON body (Content-Type: application/json)
#   Headers: Accept: application/json, then the tool's own headers
#
# Every outcome is data, never an exception:
#   ToolRun(status, elapsed_ms, data)   — any HTTP response, 2xx or not
#   ToolRun(error=...)                  — timeout / network / bad method
#   ToolRun(skipped=True, reason=...)   — loopback target blocked
#
# Loopback targets (localhost, 127.0.0.0/8, ::1) are blocked unless
# `allow_internal_tool_calls` is set. Response bodies are read up to
# `tool_response_max_bytes`.
# =============================================================================

from __future__ import annotations

import ipaddress
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from agentdesk.config import settings
from agentdesk.db.models import Tool

logger = logging.getLogger(__name__)

BLOCKED_INTERNAL_ENDPOINT = "blocked_internal_endpoint"
UNPARSABLE = "unparsable"
SUPPORTED_METHODS = ("GET", "POST")


class InternalEndpointBlockedError(Exception):
    """The tool targets a loopback host and internal calls are disabled."""


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ToolRun:
    """Outcome of a tool invocation, fed to the composer and stored as metadata."""

    tool: str
    status: int | None = None
    elapsed_ms: int | None = None
    data: Any = None
    error: str | None = None
    skipped: bool = False
    reason: str | None = None
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300

    def to_dict(self) -> dict[str, Any]:
        """JSON shape stored in message metadata (camelCase, unset keys omitted)."""
        if self.skipped:
            return {"tool": self.tool, "skipped": True, "reason": self.reason}
        if self.error is not None:
            payload: dict[str, Any] = {"tool": self.tool, "error": self.error}
            if self.elapsed_ms is not None:
                payload["elapsedMs"] = self.elapsed_ms
            return payload
        payload = {
            "tool": self.tool,
            "status": self.status,
            "elapsedMs": self.elapsed_ms,
            "data": self.data,
        }
        if self.truncated:
            payload["truncated"] = True
        return payload


# ---------------------------------------------------------------------------
# Target checks
# ---------------------------------------------------------------------------


def is_internal_url(url: str) -> bool:
    """True when the URL's host is localhost or a loopback address."""
    try:
        host = httpx.URL(url).host
    except (httpx.InvalidURL, TypeError, ValueError):
        return False
    host = (host or "").strip("[]").lower()
    if not host:
        return False
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def build_request(tool: Tool, params: dict[str, Any]) -> httpx.Request:
    """
    Build the outbound request for a tool call.

    Raises:
        ValueError: Unsupported HTTP method.
    """
    method = (tool.method or "").upper()
    headers = {"Accept": "application/json"}
    headers.update(tool.headers or {})

    if method == "GET":
        query = {k: _query_value(v) for k, v in params.items() if v is not None}
        url = httpx.URL(tool.endpoint).copy_merge_params(query)
        return httpx.Request("GET", url, headers=headers)
    if method == "POST":
        headers["Content-Type"] = "application/json"
        return httpx.Request("POST", tool.endpoint, headers=headers, content=json.dumps(params).encode("utf-8"))
    raise ValueError(f"Unsupported method: {tool.method}")


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------


async def _read_capped(response: httpx.Response, limit: int) -> tuple[bytes, bool]:
    chunks: list[bytes] = []
    size = 0
    async for chunk in response.aiter_bytes():
        remaining = limit - size
        if len(chunk) > remaining:
            chunks.append(chunk[:remaining])
            return b"".join(chunks), True
        chunks.append(chunk)
        size += len(chunk)
    return b"".join(chunks), False


def _decode_body(body: bytes, content_type: str, encoding: str | None) -> Any:
    try:
        text = body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        text = body.decode("utf-8", errors="replace")
    if "application/json" not in content_type.lower():
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return UNPARSABLE


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def execute_tool(
    tool: Tool,
    params: dict[str, Any],
    client: httpx.AsyncClient | None = None,
    allow_internal: bool | None = None,
) -> ToolRun:
    """
    Call the tool's endpoint and capture the outcome.

    Args:
        tool: Tool definition (method, endpoint, headers).
        params: Scalar parameter values.
        client: Optional shared client (tests inject a MockTransport).
        allow_internal: Override for `allow_internal_tool_calls`.

    Returns:
        ToolRun; never raises for network, timeout or HTTP errors.
    """
    allowed = settings.allow_internal_tool_calls if allow_internal is None else allow_internal

    try:
        request = build_request(tool, params)
    except (ValueError, httpx.InvalidURL) as e:
        logger.warning("Tool %s has an invalid request definition: %s", tool.name, e)
        return ToolRun(tool=tool.name, error=str(e))

    if not allowed and is_internal_url(str(request.url)):
        logger.warning("Blocked tool %s targeting internal endpoint %s", tool.name, request.url.host)
        return ToolRun(tool=tool.name, skipped=True, reason=BLOCKED_INTERNAL_ENDPOINT)

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.tool_timeout_seconds)

    started = time.monotonic()
    try:
        response = await client.send(request, stream=True, follow_redirects=False)
        try:
            body, truncated = await _read_capped(response, settings.tool_response_max_bytes)
        finally:
            await response.aclose()
    except httpx.TimeoutException:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.warning("Tool %s timed out after %d ms", tool.name, elapsed_ms)
        return ToolRun(
            tool=tool.name,
            elapsed_ms=elapsed_ms,
            error=f"Request timed out after {settings.tool_timeout_seconds:g}s",
        )
    except httpx.HTTPError as e:
        logger.warning("Tool %s request failed: %s", tool.name, e)
        return ToolRun(tool=tool.name, error=str(e) or e.__class__.__name__)
    finally:
        if owns_client:
            await client.aclose()

    elapsed_ms = int((time.monotonic() - started) * 1000)
    content_type = response.headers.get("content-type", "")
    data = UNPARSABLE if truncated and "json" in content_type else _decode_body(
        body, content_type, response.charset_encoding
    )

    logger.info(
        "Tool %s %s → %d in %d ms%s",
        request.method,
        tool.name,
        response.status_code,
        elapsed_ms,
        " (truncated)" if truncated else "",
    )
    return ToolRun(
        tool=tool.name,
        status=response.status_code,
        elapsed_ms=elapsed_ms,
        data=data,
        truncated=truncated,
    )


async def execute_tool_direct(
    tool: Tool,
    params: dict[str, Any],
    client: httpx.AsyncClient | None = None,
) -> ToolRun:
    """
    Execute endpoint variant: internal targets are an error, not a skip.

    Raises:
        InternalEndpointBlockedError: Target is loopback and internal calls
            are disabled.
    """
    run = await execute_tool(tool, params, client=client)
    if run.skipped and run.reason == BLOCKED_INTERNAL_ENDPOINT:
        raise InternalEndpointBlockedError("Calling internal network endpoints is blocked.")
    return run
