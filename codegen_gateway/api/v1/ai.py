"""API endpoints for AI code generation.

Provides:
  - POST /ai/stream — generate code, relayed as SSE (or JSON with stream=false)
  - POST /ai/chat — send a conversation to an explicitly chosen provider
  - GET /ai/providers — provider catalog with a configured flag per provider
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from codegen_gateway.api.v1.deps import caller_key, get_gateway
from codegen_gateway.core.rate_limit import limiter
from codegen_gateway.gateway.errors import GatewayError
from codegen_gateway.gateway.gateway import CodeGenGateway, GenerationStream
from codegen_gateway.gateway.sse import encode_event
from codegen_gateway.gateway.types import PROVIDER_CATALOG
from codegen_gateway.schemas.generate import (
    ChatRequest,
    GenerateRequest,
    GenerateResponse,
    MessageOut,
    ProviderOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _sse_events(stream: GenerationStream) -> AsyncIterator[str]:
    try:
        async for chunk in stream:
            yield encode_event(chunk.to_dict())
    except GatewayError:
        # Already logged by the stream; the status line is committed, so just end the body
        return


@router.post("/stream", response_model=None)
async def stream_code(
    body: GenerateRequest,
    request: Request,
    gateway: CodeGenGateway = Depends(get_gateway),
):
    """Generate code for the prompt in the requested language.

    Streams ``data: {content, provider, model, timestamp}`` events unless
    the body sets ``stream: false``.
    """
    key = caller_key(request, "ai-stream")
    code_request = body.to_domain()

    if not code_request.stream:
        result = await gateway.generate(code_request, key)
        return GenerateResponse(**result.to_dict())

    stream = await gateway.open_stream(code_request, key)
    return StreamingResponse(_sse_events(stream), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/chat", response_model=MessageOut)
async def chat(
    body: ChatRequest,
    request: Request,
    gateway: CodeGenGateway = Depends(get_gateway),
):
    """Send a conversation to the provider named in ``settings``."""
    gateway.check_rate_limit(caller_key(request, "ai-chat"), "ai-chat")
    messages = [m.to_domain() for m in body.messages]
    reply = await gateway.chat(messages, body.settings.to_domain())
    return MessageOut.from_domain(reply)


@router.get("/providers", response_model=list[ProviderOut])
@limiter.limit("60/minute")
async def list_providers(request: Request, gateway: CodeGenGateway = Depends(get_gateway)):
    configured = set(gateway.configured_providers())
    return [
        ProviderOut(
            id=info.id.value,
            name=info.name,
            requires_api_key=info.requires_api_key,
            models=list(info.models),
            default_model=info.default_model,
            configured=info.id.value in configured,
        )
        for info in PROVIDER_CATALOG.values()
    ]
