"""Tests for the CodeGenGateway orchestrator."""

from __future__ import annotations

import json

import httpx
import pytest

from codegen_gateway.gateway.errors import (
    GatewaySystemError,
    ProviderError,
    RateLimitExceededError,
    UserError,
)
from codegen_gateway.gateway.gateway import CODEGEN_SYSTEM_PROMPT, CodeGenGateway, RequestState
from codegen_gateway.gateway.types import ChatSettings, CodeGenRequest, Message, ProviderId

GROQ_KEY = "gsk_test0123456789abcdef"
OPENAI_KEY = "sk-test0123456789abcdef"

HELLO = CodeGenRequest(prompt="Write a hello world function", language="javascript")


def _sse(*deltas: str) -> bytes:
    events = [f"data: {json.dumps({'choices': [{'delta': {'content': d}}]})}\n\n" for d in deltas]
    return ("".join(events) + "data: [DONE]\n\n").encode("utf-8")


def _completion(text: str) -> dict:
    return {"choices": [{"message": {"content": text}}], "usage": {"total_tokens": 9}}


class _Upstream:
    """Answers streaming calls with SSE and plain calls with JSON; records hosts."""

    def __init__(self, *deltas: str, status: int = 200):
        self.deltas = deltas or ("function", " hello()")
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"error": {"message": "upstream unhappy"}})
        body = json.loads(request.content)
        if body.get("stream"):
            return httpx.Response(200, content=_sse(*self.deltas))
        return httpx.Response(200, json=_completion("".join(self.deltas)))

    @property
    def hosts(self) -> list[str]:
        return [r.url.host for r in self.requests]


class TestProviderSelection:
    def test_prefers_groq_when_configured(self, make_gateway):
        gateway = make_gateway(_Upstream(), api_keys={"groq": GROQ_KEY, "openai": OPENAI_KEY})
        adapter, model = gateway.select_provider()
        assert adapter.id == "groq"
        assert model == "llama-3.1-8b-instant"

    def test_falls_back_to_next_configured(self, make_gateway):
        gateway = make_gateway(_Upstream(), api_keys={"openai": OPENAI_KEY})
        adapter, model = gateway.select_provider()
        assert adapter.id == "openai"
        assert model == "gpt-3.5-turbo"

    def test_ollama_needs_no_key(self, make_gateway):
        gateway = make_gateway(_Upstream(), priority=("groq", "ollama"))
        adapter, _ = gateway.select_provider()
        assert adapter.id == "ollama"

    def test_nothing_configured(self, make_gateway):
        gateway = make_gateway(_Upstream())
        with pytest.raises(GatewaySystemError, match="No AI provider"):
            gateway.select_provider()

    def test_unknown_ids_in_priority_are_ignored(self, make_gateway):
        gateway = make_gateway(_Upstream(), api_keys={"groq": GROQ_KEY}, priority=("cohere", "groq"))
        assert gateway.priority == ["groq"]

    def test_configured_providers(self, make_gateway):
        gateway = make_gateway(_Upstream(), api_keys={"groq": GROQ_KEY, "mistral": ""})
        assert set(gateway.configured_providers()) == {"groq", "ollama"}


class TestBuildMessages:
    def test_system_prompt_mentions_language_and_context(self):
        request = CodeGenRequest(prompt="sort a list", language="python", context="uses numpy")
        system_prompt, messages = CodeGenGateway.build_messages(request)
        assert "expert python developer" in system_prompt
        assert "Current context: uses numpy" in system_prompt
        assert [m.content for m in messages] == ["sort a list"]

    def test_missing_context(self):
        system_prompt, _ = CodeGenGateway.build_messages(HELLO)
        assert system_prompt == CODEGEN_SYSTEM_PROMPT.format(language="javascript", context="No context provided")


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generate_returns_result(self, make_gateway):
        upstream = _Upstream("console.log('hi')")
        gateway = make_gateway(upstream, api_keys={"groq": GROQ_KEY})

        result = await gateway.generate(HELLO, "ai-stream:1.2.3.4:abcd1234")

        assert result.content == "console.log('hi')"
        assert result.provider == "groq"
        assert result.model == "llama-3.1-8b-instant"
        assert result.tokens == 9
        assert upstream.hosts == ["api.groq.com"]

    @pytest.mark.asyncio
    async def test_invalid_request_never_reaches_upstream(self, make_gateway):
        upstream = _Upstream()
        gateway = make_gateway(upstream, api_keys={"groq": GROQ_KEY})

        with pytest.raises(UserError, match="prompt"):
            await gateway.generate(CodeGenRequest(prompt="", language="python"), "k")
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_rate_limited(self, make_gateway):
        upstream = _Upstream()
        gateway = make_gateway(upstream, api_keys={"groq": GROQ_KEY}, max_requests=1)

        await gateway.generate(HELLO, "caller")
        with pytest.raises(RateLimitExceededError) as exc_info:
            await gateway.generate(HELLO, "caller")

        assert exc_info.value.retry_after >= 1
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, make_gateway):
        gateway = make_gateway(_Upstream(status=500), api_keys={"groq": GROQ_KEY})
        with pytest.raises(ProviderError, match="Groq API error"):
            await gateway.generate(HELLO, "caller")


class TestOpenStream:
    @pytest.mark.asyncio
    async def test_groq_stream_end_to_end(self, make_gateway):
        upstream = _Upstream("function", " hello()")
        gateway = make_gateway(upstream, api_keys={"groq": GROQ_KEY, "openai": OPENAI_KEY})

        stream = await gateway.open_stream(HELLO, "caller")
        chunks = [chunk async for chunk in stream]

        assert [c.content for c in chunks] == ["function", " hello()"]
        assert {c.provider for c in chunks} == {"groq"}
        assert all(isinstance(c.timestamp, int) for c in chunks)
        assert upstream.hosts == ["api.groq.com"]

        body = json.loads(upstream.requests[0].content)
        assert body["stream"] is True
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][1] == {"role": "user", "content": "Write a hello world function"}

    @pytest.mark.asyncio
    async def test_upstream_error_surfaces_before_first_chunk(self, make_gateway):
        gateway = make_gateway(_Upstream(status=401), api_keys={"groq": GROQ_KEY})
        with pytest.raises(ProviderError) as exc_info:
            await gateway.open_stream(HELLO, "caller")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_non_streaming_provider_relayed_as_one_chunk(self, make_gateway):
        def ollama(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"response": "fn main() {}", "eval_count": 3})

        gateway = make_gateway(ollama, priority=("ollama",))
        stream = await gateway.open_stream(HELLO, "caller")
        chunks = [chunk async for chunk in stream]

        assert [(c.content, c.provider, c.model) for c in chunks] == [("fn main() {}", "ollama", "codellama")]

    @pytest.mark.asyncio
    async def test_to_dict_shape(self, make_gateway):
        gateway = make_gateway(_Upstream("x"), api_keys={"groq": GROQ_KEY})
        stream = await gateway.open_stream(HELLO, "caller")
        chunks = [chunk async for chunk in stream]
        assert set(chunks[0].to_dict()) == {"content", "provider", "model", "timestamp"}


class TestChat:
    @pytest.mark.asyncio
    async def test_chat_uses_explicit_provider_and_configured_key(self, make_gateway):
        upstream = _Upstream("hi there")
        gateway = make_gateway(upstream, api_keys={"groq": GROQ_KEY, "openai": OPENAI_KEY})

        settings = ChatSettings(provider_id=ProviderId.OPENAI, model="gpt-4o-mini")
        reply = await gateway.chat([Message.user("hello")], settings)

        assert reply.content == "hi there"
        assert upstream.hosts == ["api.openai.com"]
        assert upstream.requests[0].headers["Authorization"] == f"Bearer {OPENAI_KEY}"

    @pytest.mark.asyncio
    async def test_chat_caller_key_wins(self, make_gateway):
        upstream = _Upstream("ok")
        gateway = make_gateway(upstream, api_keys={"openai": OPENAI_KEY})

        settings = ChatSettings(provider_id=ProviderId.OPENAI, model="gpt-4", api_key="sk-caller-key-12345")
        await gateway.chat([Message.user("hello")], settings)
        assert upstream.requests[0].headers["Authorization"] == "Bearer sk-caller-key-12345"

    @pytest.mark.asyncio
    async def test_chat_without_any_key(self, make_gateway):
        gateway = make_gateway(_Upstream())
        settings = ChatSettings(provider_id=ProviderId.ANTHROPIC, model="claude-3-haiku-20240307")
        with pytest.raises(UserError, match="Anthropic API key is required"):
            await gateway.chat([Message.user("hello")], settings)

    @pytest.mark.asyncio
    async def test_chat_stream(self, make_gateway):
        gateway = make_gateway(_Upstream("a", "b"), api_keys={"mistral": "mistral-key-123456789"})
        settings = ChatSettings(provider_id=ProviderId.MISTRAL, model="mistral-small-latest")
        fragments = [t async for t in gateway.chat_stream([Message.user("hello")], settings)]
        assert fragments == ["a", "b"]


def _drops_after_first(request: httpx.Request) -> httpx.Response:
    async def body():
        yield b'data: {"choices":[{"delta":{"content":"function"}}]}\n\n'
        raise httpx.ReadError("connection reset by peer")

    return httpx.Response(200, content=body())


class TestMidStreamFailure:
    @pytest.mark.asyncio
    async def test_open_stream_marks_failed_and_logs(self, make_gateway, caplog):
        gateway = make_gateway(_drops_after_first, api_keys={"groq": GROQ_KEY})

        stream = await gateway.open_stream(HELLO, "caller")
        received = []
        with caplog.at_level("WARNING", logger="codegen_gateway.gateway.gateway"):
            with pytest.raises(GatewaySystemError, match="stream interrupted"):
                async for chunk in stream:
                    received.append(chunk.content)

        assert received == ["function"]
        assert stream._trace.state is RequestState.FAILED
        assert "failed mid-flight" in caplog.text
        assert GROQ_KEY not in caplog.text

    @pytest.mark.asyncio
    async def test_chat_stream_failure_is_logged(self, make_gateway, caplog):
        gateway = make_gateway(_drops_after_first, api_keys={"groq": GROQ_KEY})
        settings = ChatSettings(provider_id=ProviderId.GROQ, model="llama-3.1-8b-instant")

        received = []
        with caplog.at_level("WARNING", logger="codegen_gateway.gateway.gateway"):
            with pytest.raises(GatewaySystemError):
                async for text in gateway.chat_stream([Message.user("hello")], settings):
                    received.append(text)

        assert received == ["function"]
        assert "GatewaySystemError" in caplog.text
        assert "provider=groq" in caplog.text

    @pytest.mark.asyncio
    async def test_chat_stream_unknown_key_is_logged(self, make_gateway, caplog):
        gateway = make_gateway(_drops_after_first)
        settings = ChatSettings(provider_id=ProviderId.OPENAI, model="gpt-4")

        with caplog.at_level("WARNING", logger="codegen_gateway.gateway.gateway"):
            with pytest.raises(UserError, match="OpenAI API key is required"):
                async for _ in gateway.chat_stream([Message.user("hello")], settings):
                    pass

        assert "UserError" in caplog.text
