"""Server-Sent Events decoding (upstream) and encoding (downstream).

Upstream providers frame their token streams as ``data: <json>`` lines.
``decode_sse`` turns a raw byte stream into the ordered text deltas,
independent of how the transport split the bytes into chunks.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

DeltaExtractor = Callable[[Any], "str | None"]


# ---------------------------------------------------------------------------
# Delta extractors, one per upstream envelope
# ---------------------------------------------------------------------------


def openai_delta(payload: Any) -> str | None:
    """``choices[0].delta.content`` (OpenAI, Groq, Mistral)."""
    try:
        return payload["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


def anthropic_delta(payload: Any) -> str | None:
    """``content_block_delta`` events carry ``delta.text``; other event types carry none."""
    if not isinstance(payload, dict) or payload.get("type") != "content_block_delta":
        return None
    try:
        return payload["delta"].get("text")
    except (KeyError, TypeError, AttributeError):
        return None


def google_delta(payload: Any) -> str | None:
    """``candidates[0].content.parts[*].text`` joined."""
    try:
        parts = payload["candidates"][0]["content"]["parts"]
        return "".join(p.get("text") or "" for p in parts if isinstance(p, dict))
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------


async def decode_sse(
    chunks: AsyncIterator[bytes],
    extract: DeltaExtractor = openai_delta,
) -> AsyncIterator[str]:
    """Yield text deltas from an SSE byte stream.

    Stops at ``data: [DONE]`` or when the byte stream ends. Lines that are
    not ``data:`` lines, or whose payload is not JSON, are skipped.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for chunk in chunks:
        buffer += decoder.decode(chunk)
        lines = buffer.split("\n")
        buffer = lines.pop()

        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX) :]
            if data == DONE_SENTINEL:
                return
            try:
                parsed = json.loads(data)
            except ValueError:
                logger.debug("Skipping non-JSON SSE line: %.80s", data)
                continue
            text = extract(parsed)
            if text and isinstance(text, str):
                yield text


def encode_event(payload: dict[str, Any]) -> str:
    """Format one outbound SSE event."""
    return f"{DATA_PREFIX}{json.dumps(payload, ensure_ascii=False)}\n\n"
