"""Code generation gateway — orchestrator integrating all gateway components.

Per-request lifecycle:
  INIT → VALIDATED → RATE_CHECKED → DISPATCHED → {STREAMING → COMPLETE | FAILED}

  1. Validate the CodeGenRequest bounds
  2. Consult the per-caller rate limiter
  3. Pick the first configured provider by priority and its default model
  4. Dispatch via the provider adapter (stream when possible, else send)
  5. Relay fragments in decoder order; any failure ends in FAILED

Usage:
    gateway = CodeGenGateway(get_registry(), limiter, api_keys={"groq": "gsk_..."})

    result = await gateway.generate(request, caller_key)          # one shot
    stream = await gateway.open_stream(request, caller_key)       # SSE relay
    async for chunk in stream:
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import time
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from codegen_gateway.core.config import settings
from codegen_gateway.core.metrics import RATE_LIMITED, STREAM_CHUNKS
from codegen_gateway.gateway.errors import (
    GatewayError,
    GatewaySystemError,
    RateLimitExceededError,
    UserError,
    scrub_secrets,
)
from codegen_gateway.gateway.rate_limiter import FixedWindowRateLimiter
from codegen_gateway.gateway.registry import ProviderRegistry, get_registry
from codegen_gateway.gateway.types import (
    PROVIDER_CATALOG,
    ChatSettings,
    CodeGenRequest,
    Message,
    ProviderId,
)
from codegen_gateway.gateway.vendor_adapters import BaseProviderAdapter

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = ("groq", "openai", "anthropic", "google", "mistral")

CODEGEN_SYSTEM_PROMPT = """You are a fast, expert {language} developer. Generate clean, production-ready code based on the user's request.

Requirements:
- Generate ONLY the code, no explanations or markdown
- Follow {language} best practices
- Include proper error handling
- Add helpful comments
- Make it efficient and fast
- Respond quickly and concisely

Current context: {context}"""


class RequestState(str, Enum):
    """Lifecycle of a single gateway request."""

    INIT = "init"
    VALIDATED = "validated"
    RATE_CHECKED = "rate_checked"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _RequestTrace:
    """State tracker for one request; transitions are logged at DEBUG."""

    request_id: str = dataclasses.field(default_factory=lambda: uuid.uuid4().hex[:16])
    state: RequestState = RequestState.INIT
    provider: str = ""

    def advance(self, state: RequestState) -> None:
        logger.debug("Request %s: %s -> %s", self.request_id, self.state.value, state.value)
        self.state = state


@dataclass(frozen=True)
class GenerationResult:
    """Non-streaming result of a code generation request."""

    content: str
    provider: str
    model: str
    timestamp: int  # epoch milliseconds
    tokens: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "timestamp": self.timestamp,
            "tokens": self.tokens,
        }


@dataclass(frozen=True)
class StreamChunk:
    """One relayed fragment, serialized as a single SSE event."""

    content: str
    provider: str
    model: str
    timestamp: int  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "timestamp": self.timestamp,
        }


class GenerationStream:
    """Primed stream of fragments from one upstream call.

    The first fragment has already been pulled (so upstream failures surface
    before the caller commits to a 200). Iterate exactly once; closing the
    iteration early closes the upstream response.
    """

    def __init__(
        self,
        first: str | None,
        rest: AsyncGenerator[str, None] | None,
        provider: str,
        model: str,
        trace: _RequestTrace,
        secrets: Sequence[str] = (),
    ):
        self.provider = provider
        self.model = model
        self._first = first
        self._rest = rest
        self._trace = trace
        self._secrets = secrets

    def _chunk(self, text: str) -> StreamChunk:
        STREAM_CHUNKS.labels(provider=self.provider).inc()
        return StreamChunk(content=text, provider=self.provider, model=self.model, timestamp=_epoch_ms())

    async def __aiter__(self) -> AsyncIterator[StreamChunk]:
        try:
            if self._first:
                yield self._chunk(self._first)
            if self._rest is not None:
                async for text in self._rest:
                    yield self._chunk(text)
            self._trace.advance(RequestState.COMPLETE)
        except GatewayError as e:
            self._trace.advance(RequestState.FAILED)
            logger.warning(
                "Stream %s from %s failed mid-flight: %s",
                self._trace.request_id,
                self.provider,
                scrub_secrets(e.message, self._secrets),
            )
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._rest is not None:
            await self._rest.aclose()


class CodeGenGateway:
    """Main gateway orchestrator.

    Integrates:
      - FixedWindowRateLimiter: per-caller request budget
      - ProviderRegistry: provider id → adapter
      - Provider adapters: protocol-specific HTTP calls with retry/backoff
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        rate_limiter: FixedWindowRateLimiter,
        api_keys: dict[str, str] | None = None,
        priority: Sequence[str] = DEFAULT_PRIORITY,
        default_models: dict[str, str] | None = None,
        clock: Callable[[], int] = _epoch_ms,
    ):
        """
        Args:
            registry: Adapters by provider id
            rate_limiter: Shared per-caller limiter
            api_keys: Mapping of provider id → configured API key
            priority: Provider ids in order of preference for /ai/stream
            default_models: Override the catalog default model per provider
        """
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.api_keys = {k: v for k, v in (api_keys or {}).items() if v}
        self.priority = [p for p in priority if p in registry]
        self.default_models = {p.value: info.default_model for p, info in PROVIDER_CATALOG.items()}
        self.default_models.update(default_models or {})
        self._clock = clock

    # -- helpers ---------------------------------------------------------------

    @property
    def _secrets(self) -> list[str]:
        return list(self.api_keys.values())

    def _is_configured(self, provider_id: str) -> bool:
        adapter = self.registry.get(provider_id)
        if adapter is None:
            return False
        return not adapter.requires_api_key or provider_id in self.api_keys

    def configured_providers(self) -> list[str]:
        return [p for p in self.registry.ids() if self._is_configured(p)]

    def _fail(self, trace: _RequestTrace, e: GatewayError) -> None:
        trace.advance(RequestState.FAILED)
        logger.warning(
            "Request %s failed (%s, provider=%s): %s",
            trace.request_id,
            type(e).__name__,
            trace.provider or "-",
            scrub_secrets(e.message, self._secrets),
        )

    # -- lifecycle steps -------------------------------------------------------

    @staticmethod
    def validate(request: CodeGenRequest) -> None:
        errors = request.validation_errors()
        if errors:
            raise UserError("; ".join(errors))

    def check_rate_limit(self, caller_key: str, category: str = "ai-stream") -> None:
        decision = self.rate_limiter.check(caller_key)
        if not decision.allowed:
            RATE_LIMITED.labels(category=category).inc()
            raise RateLimitExceededError(retry_after=decision.retry_after)

    def select_provider(self) -> tuple[BaseProviderAdapter, str]:
        """First configured provider in priority order, with its default model."""
        for provider_id in self.priority:
            if self._is_configured(provider_id):
                adapter = self.registry.get(provider_id)
                return adapter, self.default_models[provider_id]
        raise GatewaySystemError("No AI provider is configured")

    @staticmethod
    def build_messages(request: CodeGenRequest) -> tuple[str, list[Message]]:
        """System prompt for the target language plus the user turn."""
        system_prompt = CODEGEN_SYSTEM_PROMPT.format(
            language=request.language,
            context=request.context or "No context provided",
        )
        return system_prompt, [Message.user(request.prompt)]

    def _prepare(
        self,
        request: CodeGenRequest,
        caller_key: str,
        category: str,
        trace: _RequestTrace,
    ) -> tuple[BaseProviderAdapter, ChatSettings, list[Message]]:
        self.validate(request)
        trace.advance(RequestState.VALIDATED)

        self.check_rate_limit(caller_key, category)
        trace.advance(RequestState.RATE_CHECKED)

        adapter, model = self.select_provider()
        trace.provider = adapter.id
        system_prompt, messages = self.build_messages(request)
        chat_settings = ChatSettings(
            provider_id=ProviderId(adapter.id),
            model=model,
            api_key=self.api_keys.get(adapter.id),
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            system_prompt=system_prompt,
        )
        trace.advance(RequestState.DISPATCHED)
        logger.info(
            "Request %s dispatched to %s (model=%s, language=%s)",
            trace.request_id,
            adapter.id,
            model,
            request.language,
        )
        return adapter, chat_settings, messages

    # -- operations ------------------------------------------------------------

    async def generate(
        self,
        request: CodeGenRequest,
        caller_key: str,
        category: str = "ai-stream",
    ) -> GenerationResult:
        """Run one code generation request to completion."""
        trace = _RequestTrace()
        try:
            adapter, chat_settings, messages = self._prepare(request, caller_key, category, trace)
            reply = await adapter.send(messages, chat_settings)
        except GatewayError as e:
            self._fail(trace, e)
            raise

        trace.advance(RequestState.COMPLETE)
        return GenerationResult(
            content=reply.content,
            provider=adapter.id,
            model=chat_settings.model,
            timestamp=self._clock(),
            tokens=reply.tokens,
        )

    async def open_stream(
        self,
        request: CodeGenRequest,
        caller_key: str,
        category: str = "ai-stream",
    ) -> GenerationStream:
        """Start a streamed generation and pull its first fragment.

        Providers without streaming support are called once and relayed as a
        single fragment.
        """
        trace = _RequestTrace()
        try:
            adapter, chat_settings, messages = self._prepare(request, caller_key, category, trace)

            if not adapter.supports_streaming:
                reply = await adapter.send(messages, chat_settings)
                trace.advance(RequestState.STREAMING)
                return GenerationStream(
                    reply.content, None, adapter.id, chat_settings.model, trace, self._secrets
                )

            fragments = adapter.stream(messages, chat_settings)
            first = await anext(fragments, None)
        except GatewayError as e:
            self._fail(trace, e)
            raise

        trace.advance(RequestState.STREAMING)
        return GenerationStream(first, fragments, adapter.id, chat_settings.model, trace, self._secrets)

    def _resolve(self, chat_settings: ChatSettings) -> tuple[BaseProviderAdapter, ChatSettings]:
        adapter = self.registry.get(chat_settings.provider_id)
        if adapter is None:
            raise UserError(f"Unknown provider: {chat_settings.provider_id}")
        if not chat_settings.api_key and adapter.id in self.api_keys:
            chat_settings = dataclasses.replace(chat_settings, api_key=self.api_keys[adapter.id])
        return adapter, chat_settings

    async def chat(self, messages: Sequence[Message], chat_settings: ChatSettings) -> Message:
        """Send an already-validated conversation to an explicitly chosen provider."""
        trace = _RequestTrace(state=RequestState.RATE_CHECKED)
        try:
            adapter, chat_settings = self._resolve(chat_settings)
            trace.provider = adapter.id
            trace.advance(RequestState.DISPATCHED)
            reply = await adapter.send(messages, chat_settings)
        except GatewayError as e:
            self._fail(trace, e)
            raise
        trace.advance(RequestState.COMPLETE)
        return reply

    async def chat_stream(self, messages: Sequence[Message], chat_settings: ChatSettings) -> AsyncIterator[str]:
        """Stream an already-validated conversation; falls back to one fragment."""
        trace = _RequestTrace(state=RequestState.RATE_CHECKED)
        try:
            adapter, chat_settings = self._resolve(chat_settings)
            trace.provider = adapter.id
            trace.advance(RequestState.DISPATCHED)
            if not adapter.supports_streaming:
                reply = await adapter.send(messages, chat_settings)
                trace.advance(RequestState.STREAMING)
                if reply.content:
                    yield reply.content
            else:
                fragments = adapter.stream(messages, chat_settings)
                try:
                    trace.advance(RequestState.STREAMING)
                    async for text in fragments:
                        yield text
                finally:
                    await fragments.aclose()
        except GatewayError as e:
            self._fail(trace, e)
            raise
        trace.advance(RequestState.COMPLETE)


@functools.lru_cache(maxsize=1)
def get_gateway() -> CodeGenGateway:
    """Process-wide gateway wired from settings. Override in tests via dependency_overrides."""
    limiter = FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    return CodeGenGateway(
        registry=get_registry(),
        rate_limiter=limiter,
        api_keys=settings.provider_api_keys,
        priority=settings.priority_order,
    )
