"""Provider registry — static provider id → adapter lookup.

Populated once; adding a provider means writing an adapter class and
adding one entry to ``ADAPTER_CLASSES``. The orchestrator never branches
on provider ids.
"""

from __future__ import annotations

import functools
from collections.abc import Iterable, Iterator, Mapping

import httpx

from codegen_gateway.core.config import settings
from codegen_gateway.gateway.retry import RetryPolicy
from codegen_gateway.gateway.types import ProviderId
from codegen_gateway.gateway.vendor_adapters import (
    AnthropicAdapter,
    BaseProviderAdapter,
    GoogleAdapter,
    GroqAdapter,
    MistralAdapter,
    OllamaAdapter,
    OpenAIAdapter,
)

ADAPTER_CLASSES: dict[ProviderId, type[BaseProviderAdapter]] = {
    ProviderId.OPENAI: OpenAIAdapter,
    ProviderId.GROQ: GroqAdapter,
    ProviderId.ANTHROPIC: AnthropicAdapter,
    ProviderId.GOOGLE: GoogleAdapter,
    ProviderId.MISTRAL: MistralAdapter,
    ProviderId.OLLAMA: OllamaAdapter,
}


class ProviderRegistry:
    """Read-only mapping of provider id to its singleton adapter."""

    def __init__(self, adapters: Iterable[BaseProviderAdapter]):
        self._adapters: Mapping[str, BaseProviderAdapter] = {a.id: a for a in adapters}

    def get(self, provider_id: str | ProviderId) -> BaseProviderAdapter | None:
        """Adapter for *provider_id*, or None when the id is unknown."""
        key = provider_id.value if isinstance(provider_id, ProviderId) else str(provider_id)
        return self._adapters.get(key)

    def ids(self) -> list[str]:
        return list(self._adapters)

    def __contains__(self, provider_id: object) -> bool:
        if isinstance(provider_id, ProviderId):
            provider_id = provider_id.value
        return provider_id in self._adapters

    def __iter__(self) -> Iterator[BaseProviderAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)


def build_registry(
    timeout: float = 60.0,
    retry_policy: RetryPolicy | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    ollama_base_url: str = "http://localhost:11434",
) -> ProviderRegistry:
    """Instantiate one adapter per provider."""
    adapters: list[BaseProviderAdapter] = []
    for provider_id, cls in ADAPTER_CLASSES.items():
        kwargs: dict = {"timeout": timeout, "retry_policy": retry_policy, "transport": transport}
        if provider_id is ProviderId.OLLAMA:
            kwargs["base_url"] = ollama_base_url
        adapters.append(cls(**kwargs))
    return ProviderRegistry(adapters)


@functools.lru_cache(maxsize=1)
def get_registry() -> ProviderRegistry:
    """Process-wide registry built from settings on first use."""
    return build_registry(
        timeout=settings.request_timeout_seconds,
        retry_policy=RetryPolicy(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay_seconds,
        ),
        ollama_base_url=settings.ollama_base_url,
    )
