"""Pydantic schemas for the code generation API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from codegen_gateway.gateway.types import (
    CONTEXT_MAX_LENGTH,
    LANGUAGE_MAX_LENGTH,
    MAX_TOKENS_LIMIT,
    PROMPT_MAX_LENGTH,
    TEMPERATURE_LIMIT,
    ChatSettings,
    CodeGenRequest,
    Message,
    ProviderId,
)


class _CamelModel(BaseModel):
    # Editor clients send camelCase; snake_case is accepted too
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# POST /ai/stream
# ---------------------------------------------------------------------------


class GenerateRequest(_CamelModel):
    """Code generation prompt from the editor."""

    prompt: str = Field(min_length=1, max_length=PROMPT_MAX_LENGTH)
    language: str = Field(min_length=1, max_length=LANGUAGE_MAX_LENGTH)
    context: str = Field("", max_length=CONTEXT_MAX_LENGTH)
    max_tokens: int = Field(1000, ge=1, le=MAX_TOKENS_LIMIT, alias="maxTokens")
    temperature: float = Field(0.7, ge=0, le=TEMPERATURE_LIMIT)
    stream: bool = True

    def to_domain(self) -> CodeGenRequest:
        return CodeGenRequest(
            prompt=self.prompt,
            language=self.language,
            context=self.context,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            stream=self.stream,
        )


class GenerateResponse(BaseModel):
    """Non-streaming generation result."""

    content: str
    provider: str
    model: str
    timestamp: int
    tokens: int | None = None


# ---------------------------------------------------------------------------
# POST /ai/chat
# ---------------------------------------------------------------------------


class ChatMessageIn(_CamelModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(max_length=CONTEXT_MAX_LENGTH)
    id: str | None = None
    timestamp: datetime | None = None

    def to_domain(self) -> Message:
        extra: dict = {}
        if self.id:
            extra["id"] = self.id
        if self.timestamp:
            extra["timestamp"] = self.timestamp
        return Message(role=self.role, content=self.content, **extra)


class ChatSettingsIn(_CamelModel):
    provider: ProviderId
    model: str = Field(min_length=1, max_length=100)
    api_key: str | None = Field(None, alias="apiKey")
    temperature: float = Field(0.7, ge=0, le=TEMPERATURE_LIMIT)
    max_tokens: int = Field(1000, ge=1, le=MAX_TOKENS_LIMIT, alias="maxTokens")
    system_prompt: str = Field("", max_length=CONTEXT_MAX_LENGTH, alias="systemPrompt")
    personality: str = Field("hex", max_length=50)

    def to_domain(self) -> ChatSettings:
        return ChatSettings(
            provider_id=self.provider,
            model=self.model,
            api_key=self.api_key or None,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            system_prompt=self.system_prompt,
            personality=self.personality,
        )


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = Field(min_length=1, max_length=100)
    settings: ChatSettingsIn


class MessageOut(BaseModel):
    id: str
    role: str
    content: str
    timestamp: datetime
    tokens: int | None = None

    @classmethod
    def from_domain(cls, message: Message) -> MessageOut:
        return cls(
            id=message.id,
            role=message.role.value,
            content=message.content,
            timestamp=message.timestamp,
            tokens=message.tokens,
        )


# ---------------------------------------------------------------------------
# GET /ai/providers
# ---------------------------------------------------------------------------


class ProviderOut(BaseModel):
    id: str
    name: str
    requires_api_key: bool
    models: list[str]
    default_model: str
    configured: bool
