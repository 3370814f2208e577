"""Request-scoped dependencies for the AI endpoints."""

from __future__ import annotations

import hashlib

from fastapi import Request
from slowapi.util import get_remote_address

from codegen_gateway.gateway.gateway import get_gateway

__all__ = ["caller_key", "client_ip", "get_gateway"]


def client_ip(request: Request) -> str:
    """Client address, honoring the usual reverse-proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    return get_remote_address(request) or "unknown"


def caller_key(request: Request, category: str) -> str:
    """Rate limit key: ``<category>:<client-ip>:<user-agent hash>``."""
    user_agent = request.headers.get("user-agent", "")
    ua_hash = hashlib.sha256(user_agent.encode("utf-8")).hexdigest()[:8]
    return f"{category}:{client_ip(request)}:{ua_hash}"
