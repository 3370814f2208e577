"""Retry executor with pure exponential backoff.

Only HTTP 429 and 5xx responses are retried. Delay for attempt N is
``base_delay * 2**N`` (no jitter). After the last retry the final response
is returned unchanged so the adapter can turn it into a ProviderError.

Usage:
    policy = RetryPolicy(max_retries=2, base_delay=0.3)
    resp = await send_with_retry(lambda: client.post(url, json=payload), policy)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from codegen_gateway.core.metrics import UPSTREAM_RETRIES

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry one upstream call."""

    max_retries: int = 2
    base_delay: float = 0.3  # seconds


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx are transient; everything else is final."""
    return status_code == 429 or 500 <= status_code <= 599


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
    return base_delay * (2**attempt)


async def send_with_retry(
    call: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    *,
    provider: str = "",
    sleep: Sleep = asyncio.sleep,
) -> httpx.Response:
    """Run ``call`` until it returns a non-retryable response or retries run out.

    Discarded responses are closed before the next attempt so streamed
    connections go back to the pool. Transport exceptions propagate.
    """
    attempt = 0
    while True:
        response = await call()
        if not is_retryable_status(response.status_code) or attempt >= policy.max_retries:
            return response

        delay = backoff_delay(attempt, policy.base_delay)
        logger.info(
            "Retrying %s request after HTTP %d (retry %d/%d) in %.2fs",
            provider or "upstream",
            response.status_code,
            attempt + 1,
            policy.max_retries,
            delay,
        )
        UPSTREAM_RETRIES.labels(provider=provider or "unknown").inc()
        await response.aclose()
        await sleep(delay)
        attempt += 1
