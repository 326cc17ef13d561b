# =============================================================================
# Embed Access — Public Keys, Widget Sessions & Origin Policy
# =============================================================================
#
# Pure functions for the embeddable widget. No FastAPI dependency, so the
# embed router and tests share them.
#
# ORIGIN POLICY (agent.embed_allowed_origins):
#   ""            → deny everything
#   "*"           → allow everything, including requests with no origin
#   "a,b,.c.com"  → request origin must equal a rule, or its host must be
#                   c.com or a subdomain of it; no origin → deny
#
# The request origin is the Origin header, falling back to the origin of
# the Referer header.
# =============================================================================

from __future__ import annotations

import secrets
from collections.abc import Mapping
from urllib.parse import urlsplit


def generate_public_key() -> str:
    """URL-safe public key identifying a published agent (24 chars)."""
    return secrets.token_urlsafe(18)


def generate_session_id() -> str:
    """Opaque id for an anonymous embedded session (32 chars)."""
    return secrets.token_urlsafe(24)


def parse_origin_rules(allowed: str | None) -> list[str]:
    return [rule.strip() for rule in (allowed or "").split(",") if rule.strip()]


def origin_allowed(allowed: str | None, request_origin: str | None) -> bool:
    """Apply the agent's allowed-origins list to a request origin."""
    policy = (allowed or "").strip()
    if not policy:
        return False
    if policy == "*":
        return True
    if not request_origin:
        return False

    try:
        host = (urlsplit(request_origin).hostname or "").lower()
    except ValueError:
        host = ""
    for rule in parse_origin_rules(policy):
        if rule.startswith("."):
            domain = rule[1:].lower()
            if domain and (host == domain or host.endswith(rule.lower())):
                return True
        elif request_origin == rule:
            return True
    return False


def extract_request_origin(headers: Mapping[str, str]) -> str | None:
    """Origin header, else scheme://host[:port] of the Referer."""
    origin = headers.get("origin")
    if origin:
        return origin

    referer = headers.get("referer") or headers.get("referrer")
    if not referer:
        return None
    parts = urlsplit(referer)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"
