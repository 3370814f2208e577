"""Vendor-Specific Adapters — protocol-level handling for each LLM provider.

Each adapter translates (messages, ChatSettings) into the provider's HTTP
protocol, sends it through the retry executor, and returns a normalized
assistant Message. Streaming adapters additionally expose ``stream()``,
which yields text deltas decoded from the provider's SSE stream.

Provider-specific behaviors:
  - OpenAI / Groq / Mistral: chat completions, Bearer auth, OpenAI SSE deltas
  - Groq: upstream 401 replaced with an actionable message
  - Anthropic: x-api-key + version header, top-level system prompt,
    content_block_delta stream events, input/output token split
  - Google: key as query parameter, systemInstruction, "model" role,
    SSE via streamGenerateContent?alt=sse, safety blocks → UserError
  - Ollama: local engine, no auth, single prompt string, non-streaming
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from codegen_gateway.core.metrics import UPSTREAM_REQUESTS
from codegen_gateway.gateway.errors import (
    GatewayError,
    GatewaySystemError,
    ProviderError,
    UserError,
    abort_after,
    error_detail,
    iter_with_deadline,
    read_error_body,
    redact,
    scrub_secrets,
)
from codegen_gateway.gateway.retry import RetryPolicy, send_with_retry
from codegen_gateway.gateway.sse import (
    DeltaExtractor,
    anthropic_delta,
    decode_sse,
    google_delta,
    openai_delta,
)
from codegen_gateway.gateway.types import ChatSettings, Message, ProviderId, Role

logger = logging.getLogger(__name__)


@dataclass
class UpstreamCall:
    """Everything needed to issue one HTTP request to a provider."""

    url: str
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


def _outcome(exc: BaseException) -> str:
    if isinstance(exc, UserError):
        return "user_error"
    if isinstance(exc, ProviderError):
        return "provider_error"
    return "system_error"


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters.

    Adapters hold no per-request state; one instance serves the whole process.
    """

    provider: ProviderId
    display_name: str
    requires_api_key: bool = True
    supports_streaming: bool = False
    stream_extractor: DeltaExtractor = staticmethod(openai_delta)

    def __init__(
        self,
        timeout: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._transport = transport

    @property
    def id(self) -> str:
        return self.provider.value

    # -- request construction (provider specific) ---------------------------

    @abstractmethod
    def build_call(self, messages: Sequence[Message], settings: ChatSettings, stream: bool) -> UpstreamCall:
        """Translate the generic request into the provider's wire format."""
        ...

    @abstractmethod
    def parse_response(self, data: dict[str, Any]) -> Message:
        """Extract the assistant turn from the provider's response envelope."""
        ...

    # -- shared plumbing ------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _require_key(self, settings: ChatSettings) -> str:
        if self.requires_api_key and not settings.api_key:
            raise UserError(f"{self.display_name} API key is required", status_code=401)
        return settings.api_key or ""

    def _provider_error(self, response: httpx.Response, api_key: str) -> ProviderError:
        detail = scrub_secrets(error_detail(response), [api_key])
        return ProviderError(self.display_name, response.status_code, detail)

    @staticmethod
    def _split_system(messages: Sequence[Message], settings: ChatSettings) -> tuple[str, list[Message]]:
        """Fold system-role turns into one system text; return it with the remaining turns."""
        system_parts = [settings.system_prompt] if settings.system_prompt else []
        conversation: list[Message] = []
        for m in messages:
            if m.role is Role.SYSTEM:
                system_parts.append(m.content)
            else:
                conversation.append(m)
        return "\n\n".join(system_parts), conversation

    async def _execute(self, client: httpx.AsyncClient, call: UpstreamCall, api_key: str, stream: bool) -> httpx.Response:
        request = client.build_request(
            "POST",
            call.url,
            json=call.payload,
            headers={"Content-Type": "application/json", **call.headers},
            params=call.params or None,
        )
        try:
            return await send_with_retry(
                lambda: client.send(request, stream=stream),
                self.retry_policy,
                provider=self.id,
            )
        except httpx.HTTPError as e:
            reason = scrub_secrets(str(e), [api_key]) or type(e).__name__
            raise GatewaySystemError(f"{self.display_name} request failed: {reason}", e) from e

    async def send(self, messages: Sequence[Message], settings: ChatSettings) -> Message:
        """Issue one non-streaming request and return the assistant turn."""
        api_key = self._require_key(settings)
        call = self.build_call(messages, settings, stream=False)
        logger.debug("%s send model=%s key=%s", self.display_name, settings.model, redact(api_key))

        try:
            async with abort_after(self.timeout, self.display_name):
                async with self._client() as client:
                    response = await self._execute(client, call, api_key, stream=False)

            if not response.is_success:
                raise self._provider_error(response, api_key)

            try:
                data = response.json()
            except ValueError as e:
                raise GatewaySystemError(f"{self.display_name} returned an unreadable response", e) from e

            try:
                message = self.parse_response(data)
            except (AttributeError, TypeError, KeyError, IndexError, ValueError) as e:
                raise GatewaySystemError(f"{self.display_name} returned an unexpected response", e) from e
        except GatewayError as e:
            UPSTREAM_REQUESTS.labels(provider=self.id, outcome=_outcome(e)).inc()
            raise

        UPSTREAM_REQUESTS.labels(provider=self.id, outcome="success").inc()
        return message

    async def stream(self, messages: Sequence[Message], settings: ChatSettings) -> AsyncIterator[str]:
        """Yield text deltas as the provider produces them.

        Closing the iterator early closes the upstream connection.
        """
        if not self.supports_streaming:
            raise GatewaySystemError(f"{self.display_name} does not support streaming")

        api_key = self._require_key(settings)
        call = self.build_call(messages, settings, stream=True)
        deadline = asyncio.get_running_loop().time() + self.timeout
        logger.debug("%s stream model=%s key=%s", self.display_name, settings.model, redact(api_key))

        try:
            async with self._client() as client:
                async with abort_after(self.timeout, self.display_name):
                    response = await self._execute(client, call, api_key, stream=True)
                try:
                    if not response.is_success:
                        await read_error_body(response)
                        raise self._provider_error(response, api_key)

                    chunks = iter_with_deadline(response.aiter_bytes(), deadline, self.display_name)
                    try:
                        async for text in decode_sse(chunks, self.stream_extractor):
                            yield text
                    except httpx.HTTPError as e:
                        raise GatewaySystemError(f"{self.display_name} stream interrupted: {type(e).__name__}", e) from e
                finally:
                    await response.aclose()
        except GatewayError as e:
            UPSTREAM_REQUESTS.labels(provider=self.id, outcome=_outcome(e)).inc()
            raise

        UPSTREAM_REQUESTS.labels(provider=self.id, outcome="success").inc()


# ---------------------------------------------------------------------------
# OpenAI-compatible adapters (OpenAI, Groq, Mistral)
# ---------------------------------------------------------------------------


class OpenAICompatibleAdapter(BaseProviderAdapter):
    """Chat Completions protocol shared by OpenAI, Groq and Mistral."""

    api_url: str
    supports_streaming = True

    def build_call(self, messages: Sequence[Message], settings: ChatSettings, stream: bool) -> UpstreamCall:
        wire_messages: list[dict[str, str]] = []
        if settings.system_prompt:
            wire_messages.append({"role": "system", "content": settings.system_prompt})
        wire_messages.extend({"role": m.role.value, "content": m.content} for m in messages)

        payload: dict[str, Any] = {
            "model": settings.model,
            "messages": wire_messages,
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
        }
        if stream:
            payload["stream"] = True

        return UpstreamCall(
            url=self.api_url,
            payload=payload,
            headers={
                "Authorization": f"Bearer {settings.api_key}",
                "Accept": "text/event-stream" if stream else "application/json",
            },
        )

    def parse_response(self, data: dict[str, Any]) -> Message:
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}
        return Message.assistant(content, tokens=usage.get("total_tokens"))


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI Chat Completions adapter."""

    provider = ProviderId.OPENAI
    display_name = "OpenAI"
    api_url = "https://api.openai.com/v1/chat/completions"


class GroqAdapter(OpenAICompatibleAdapter):
    """Groq (OpenAI-compatible) adapter — the fast path for live coding."""

    provider = ProviderId.GROQ
    display_name = "Groq"
    api_url = "https://api.groq.com/openai/v1/chat/completions"

    def _provider_error(self, response: httpx.Response, api_key: str) -> ProviderError:
        if response.status_code == 401:
            return ProviderError(self.display_name, 401, "Invalid API Key. Check your Groq API key.")
        return super()._provider_error(response, api_key)


class MistralAdapter(OpenAICompatibleAdapter):
    """Mistral La Plateforme adapter (OpenAI-compatible envelope)."""

    provider = ProviderId.MISTRAL
    display_name = "Mistral"
    api_url = "https://api.mistral.ai/v1/chat/completions"


# ---------------------------------------------------------------------------
# Anthropic Adapter
# ---------------------------------------------------------------------------


class AnthropicAdapter(BaseProviderAdapter):
    """Anthropic Messages API adapter."""

    provider = ProviderId.ANTHROPIC
    display_name = "Anthropic"
    api_url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"
    supports_streaming = True
    stream_extractor = staticmethod(anthropic_delta)

    def build_call(self, messages: Sequence[Message], settings: ChatSettings, stream: bool) -> UpstreamCall:
        system, conversation = self._split_system(messages, settings)

        payload: dict[str, Any] = {
            "model": settings.model,
            "messages": [{"role": m.role.value, "content": m.content} for m in conversation],
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
        }
        # System prompt lives outside the messages list in the Messages API
        if system:
            payload["system"] = system
        if stream:
            payload["stream"] = True

        return UpstreamCall(
            url=self.api_url,
            payload=payload,
            headers={
                "x-api-key": settings.api_key or "",
                "anthropic-version": self.api_version,
            },
        )

    def parse_response(self, data: dict[str, Any]) -> Message:
        blocks = data.get("content") or []
        text = ""
        if blocks and isinstance(blocks[0], dict):
            text = blocks[0].get("text") or ""
        text = text or data.get("output_text") or ""

        usage = data.get("usage") or {}
        tokens = None
        if usage:
            tokens = int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))
        return Message.assistant(text, tokens=tokens)


# ---------------------------------------------------------------------------
# Google Adapter (Gemini)
# ---------------------------------------------------------------------------


class GoogleAdapter(BaseProviderAdapter):
    """Google Gemini generateContent adapter."""

    provider = ProviderId.GOOGLE
    display_name = "Google"
    api_url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:{method}"
    supports_streaming = True
    stream_extractor = staticmethod(google_delta)

    def build_call(self, messages: Sequence[Message], settings: ChatSettings, stream: bool) -> UpstreamCall:
        system, conversation = self._split_system(messages, settings)

        contents = [
            {
                "role": "model" if m.role is Role.ASSISTANT else "user",
                "parts": [{"text": m.content}],
            }
            for m in conversation
        ]
        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": settings.temperature,
                "maxOutputTokens": settings.max_tokens,
            },
        }
        # System instruction (separate from contents in Gemini API)
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        params = {"key": settings.api_key or ""}
        if stream:
            params["alt"] = "sse"

        method = "streamGenerateContent" if stream else "generateContent"
        return UpstreamCall(
            url=self.api_url_template.format(model=settings.model, method=method),
            payload=payload,
            params=params,
        )

    def parse_response(self, data: dict[str, Any]) -> Message:
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise UserError(f"Google blocked the prompt: {block_reason}")
            return Message.assistant("")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if not text and candidate.get("finishReason") == "SAFETY":
            raise UserError("Google safety filter blocked the response")

        usage = data.get("usageMetadata") or {}
        return Message.assistant(text, tokens=usage.get("totalTokenCount"))


# ---------------------------------------------------------------------------
# Ollama Adapter (local engine)
# ---------------------------------------------------------------------------


class OllamaAdapter(BaseProviderAdapter):
    """Locally hosted Ollama /api/generate adapter. No credentials, no streaming."""

    provider = ProviderId.OLLAMA
    display_name = "Ollama"
    requires_api_key = False

    def __init__(self, base_url: str = "http://localhost:11434", **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    def build_call(self, messages: Sequence[Message], settings: ChatSettings, stream: bool) -> UpstreamCall:
        transcript = "\n\n".join(f"{m.role.value}: {m.content}" for m in messages)
        prompt = f"{settings.system_prompt}\n\n{transcript}" if settings.system_prompt else transcript
        return UpstreamCall(
            url=f"{self.base_url}/api/generate",
            payload={
                "model": settings.model,
                "prompt": prompt,
                "stream": False,
                "options": {
                    "temperature": settings.temperature,
                    "num_predict": settings.max_tokens,
                },
            },
        )

    def parse_response(self, data: dict[str, Any]) -> Message:
        tokens = None
        if "eval_count" in data:
            tokens = int(data.get("prompt_eval_count", 0)) + int(data["eval_count"])
        return Message.assistant(data.get("response") or "", tokens=tokens)
