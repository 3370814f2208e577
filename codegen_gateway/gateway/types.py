"""Core types for the provider gateway."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from codegen_gateway.gateway.errors import redact


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """Conversation roles understood by every provider."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ProviderId(str, Enum):
    """Supported upstream providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    GROQ = "groq"
    MISTRAL = "mistral"
    OLLAMA = "ollama"


def _new_message_id() -> str:
    return uuid.uuid4().hex[:16]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Message / Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Message:
    """One conversation turn. Immutable."""

    role: Role
    content: str
    id: str = field(default_factory=_new_message_id)
    timestamp: datetime = field(default_factory=_utcnow)
    tokens: int | None = None

    def __post_init__(self) -> None:
        # Role("bogus") raises ValueError, which is what we want
        object.__setattr__(self, "role", Role(self.role))

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tokens: int | None = None) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tokens=tokens)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict for the API."""
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tokens is not None:
            data["tokens"] = self.tokens
        return data


@dataclass(frozen=True)
class ChatSettings:
    """Per-request provider settings.

    Bounds (temperature 0..2, max_tokens 1..4000) are enforced by the API
    schema before one of these is built; adapters trust the values.
    """

    provider_id: ProviderId
    model: str
    api_key: str | None = field(default=None, repr=False)
    temperature: float = 0.7
    max_tokens: int = 1000
    system_prompt: str = ""
    personality: str = "hex"

    def __repr__(self) -> str:
        return (
            f"ChatSettings(provider_id={self.provider_id.value!r}, model={self.model!r}, "
            f"api_key={redact(self.api_key)!r}, temperature={self.temperature}, "
            f"max_tokens={self.max_tokens}, personality={self.personality!r})"
        )


# ---------------------------------------------------------------------------
# Provider catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderInfo:
    """Static description of an upstream provider."""

    id: ProviderId
    name: str
    requires_api_key: bool
    models: tuple[str, ...]
    default_model: str
    endpoint: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.value,
            "name": self.name,
            "requires_api_key": self.requires_api_key,
            "models": list(self.models),
            "default_model": self.default_model,
            "endpoint": self.endpoint,
        }


PROVIDER_CATALOG: dict[ProviderId, ProviderInfo] = {
    ProviderId.OPENAI: ProviderInfo(
        id=ProviderId.OPENAI,
        name="OpenAI",
        requires_api_key=True,
        models=("gpt-4", "gpt-4-turbo", "gpt-4o-mini", "gpt-3.5-turbo"),
        default_model="gpt-3.5-turbo",
        endpoint="https://api.openai.com/v1/chat/completions",
    ),
    ProviderId.ANTHROPIC: ProviderInfo(
        id=ProviderId.ANTHROPIC,
        name="Anthropic",
        requires_api_key=True,
        models=("claude-3-opus-20240229", "claude-3-sonnet-20240229", "claude-3-haiku-20240307"),
        default_model="claude-3-haiku-20240307",
        endpoint="https://api.anthropic.com/v1/messages",
    ),
    ProviderId.GOOGLE: ProviderInfo(
        id=ProviderId.GOOGLE,
        name="Google",
        requires_api_key=True,
        models=("gemini-1.5-flash", "gemini-1.5-pro", "gemini-pro"),
        default_model="gemini-1.5-flash",
        endpoint="https://generativelanguage.googleapis.com/v1beta/models",
    ),
    ProviderId.GROQ: ProviderInfo(
        id=ProviderId.GROQ,
        name="Groq",
        requires_api_key=True,
        models=(
            "llama-3.1-8b-instant",
            "llama-3.1-70b-versatile",
            "mixtral-8x7b-32768",
            "gemma2-9b-it",
            "llama3-8b-8192",
        ),
        default_model="llama-3.1-8b-instant",
        endpoint="https://api.groq.com/openai/v1/chat/completions",
    ),
    ProviderId.MISTRAL: ProviderInfo(
        id=ProviderId.MISTRAL,
        name="Mistral",
        requires_api_key=True,
        models=("mistral-small-latest", "mistral-large-latest", "codestral-latest"),
        default_model="mistral-small-latest",
        endpoint="https://api.mistral.ai/v1/chat/completions",
    ),
    ProviderId.OLLAMA: ProviderInfo(
        id=ProviderId.OLLAMA,
        name="Ollama",
        requires_api_key=False,
        models=("codellama", "llama2", "mistral", "phi"),
        default_model="codellama",
        endpoint="http://localhost:11434/api/generate",
    ),
}


def validate_api_key_format(provider_id: ProviderId | str, api_key: str) -> bool:
    """Cheap shape check for a provider key. Not a substitute for calling the API."""
    provider_id = ProviderId(provider_id)
    if provider_id is ProviderId.OLLAMA:
        return True
    if not api_key:
        return False
    if provider_id is ProviderId.OPENAI:
        return api_key.startswith("sk-")
    if provider_id is ProviderId.ANTHROPIC:
        return api_key.startswith("sk-ant-")
    if provider_id is ProviderId.GROQ:
        return api_key.startswith("gsk_")
    if provider_id is ProviderId.GOOGLE:
        return len(api_key) > 20
    return True


# ---------------------------------------------------------------------------
# Code generation request (orchestrator input)
# ---------------------------------------------------------------------------

PROMPT_MAX_LENGTH = 8000
LANGUAGE_MAX_LENGTH = 50
CONTEXT_MAX_LENGTH = 10000
MAX_TOKENS_LIMIT = 4000
TEMPERATURE_LIMIT = 2.0


@dataclass(frozen=True)
class CodeGenRequest:
    """A single code generation prompt from the editor."""

    prompt: str
    language: str
    context: str = ""
    max_tokens: int = 1000
    temperature: float = 0.7
    stream: bool = True

    def validation_errors(self) -> list[str]:
        """Bounds violations, empty when the request is acceptable."""
        errors: list[str] = []
        if not 1 <= len(self.prompt) <= PROMPT_MAX_LENGTH:
            errors.append(f"prompt must be 1..{PROMPT_MAX_LENGTH} characters")
        if not 1 <= len(self.language) <= LANGUAGE_MAX_LENGTH:
            errors.append(f"language must be 1..{LANGUAGE_MAX_LENGTH} characters")
        if len(self.context) > CONTEXT_MAX_LENGTH:
            errors.append(f"context must be at most {CONTEXT_MAX_LENGTH} characters")
        if not 1 <= self.max_tokens <= MAX_TOKENS_LIMIT:
            errors.append(f"maxTokens must be 1..{MAX_TOKENS_LIMIT}")
        if not 0 <= self.temperature <= TEMPERATURE_LIMIT:
            errors.append(f"temperature must be 0..{TEMPERATURE_LIMIT:g}")
        return errors
