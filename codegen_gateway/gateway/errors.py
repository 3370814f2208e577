"""Error taxonomy and small HTTP helpers shared by every provider adapter.

Three caller-safe error kinds:
  - UserError: malformed input or missing credential (400 / 401), never retried
  - ProviderError: upstream answered with a non-2xx status
  - GatewaySystemError: transport failure, abort/timeout, unreadable upstream body

Adapters raise these; the HTTP boundary maps them to status codes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

import httpx

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base class for every error the gateway surfaces to callers."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class UserError(GatewayError):
    """Invalid input or missing credential. Never retried."""

    status_code = 400


class RateLimitExceededError(UserError):
    """Caller exceeded its request budget for the current window."""

    status_code = 429

    def __init__(self, retry_after: int, message: str = "Too many requests"):
        super().__init__(message)
        self.retry_after = retry_after


class ProviderError(GatewayError):
    """Upstream provider responded with a non-2xx status."""

    def __init__(self, provider: str, upstream_status: int, detail: str):
        super().__init__(f"{provider} API error ({upstream_status}): {detail}")
        self.provider = provider
        self.upstream_status = upstream_status
        # Bad upstream credentials are the caller's problem; everything else is ours
        self.status_code = 401 if upstream_status in (401, 403) else 500


class GatewaySystemError(GatewayError):
    """Network failure, timeout abort, or unparseable upstream response."""

    status_code = 500

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


# ---------------------------------------------------------------------------
# Secret handling
# ---------------------------------------------------------------------------


def redact(value: str | None) -> str:
    """Obscure a secret for logs: ``first4***last4`` or ``***`` for short values."""
    if not value:
        return ""
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}***{value[-4:]}"


def scrub_secrets(text: str, secrets: Iterable[str | None]) -> str:
    """Replace every occurrence of each secret in *text* with its redacted form."""
    for secret in secrets:
        if secret and secret in text:
            text = text.replace(secret, redact(secret))
    return text


# ---------------------------------------------------------------------------
# Upstream response helpers
# ---------------------------------------------------------------------------


def status_line(response: httpx.Response) -> str:
    """``HTTP 503 Service Unavailable`` — fallback message when the body is unusable."""
    return f"HTTP {response.status_code} {response.reason_phrase}".rstrip()


def error_detail(response: httpx.Response) -> str:
    """Best-effort extraction of the provider's own error message."""
    fallback = status_line(response)
    try:
        data = response.json()
    except ValueError:
        return fallback

    if not isinstance(data, dict):
        return fallback

    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    if data.get("message"):
        return str(data["message"])
    return fallback


async def read_error_body(response: httpx.Response) -> None:
    """Load the body of a streamed error response so ``error_detail`` can parse it."""
    try:
        await response.aread()
    except httpx.HTTPError as e:
        logger.debug("Could not read error body (%s): %s", response.status_code, e)


@asynccontextmanager
async def abort_after(seconds: float, provider: str) -> AsyncIterator[None]:
    """Bound an upstream call by a deadline; expiry cancels it and raises GatewaySystemError."""
    try:
        async with asyncio.timeout(seconds):
            yield
    except TimeoutError as e:
        raise GatewaySystemError(f"{provider} request timed out after {seconds:g}s", e) from e


async def iter_with_deadline(
    source: AsyncIterator[bytes],
    deadline: float,
    provider: str,
) -> AsyncIterator[bytes]:
    """Re-yield *source* but abort once the loop clock passes *deadline*."""
    loop = asyncio.get_running_loop()
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise GatewaySystemError(f"{provider} stream exceeded its deadline")
        try:
            async with asyncio.timeout(remaining):
                chunk = await anext(source)
        except StopAsyncIteration:
            return
        except TimeoutError as e:
            raise GatewaySystemError(f"{provider} stream exceeded its deadline", e) from e
        yield chunk
