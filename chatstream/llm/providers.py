"""Provider resolution and model client construction."""

import logging
from typing import Protocol

from chatstream.errors import ChatError
from chatstream.llm.anthropic_client import AnthropicClient
from chatstream.llm.base import ModelClient
from chatstream.llm.openai_compat import OpenAICompatibleClient
from chatstream.models.provider import Provider, ProviderKind

logger = logging.getLogger(__name__)

GOOGLE_HOST = "generativelanguage.googleapis.com"
GOOGLE_OPENAI_BASE_URL = f"https://{GOOGLE_HOST}/v1beta/openai"


class ProviderLookup(Protocol):
    async def get_provider(self, provider_id: str) -> Provider | None: ...

    async def list_providers(self) -> list[Provider]: ...


def normalize_base_url(base_url: str | None) -> str | None:
    """Point Google endpoints at their OpenAI-compatible path."""
    if not base_url:
        return base_url
    if GOOGLE_HOST in base_url and not base_url.rstrip("/").endswith("/v1beta/openai"):
        return GOOGLE_OPENAI_BASE_URL
    if GOOGLE_HOST in base_url:
        return base_url.rstrip("/")
    return base_url


class ProviderResolver:
    """Finds the provider that should serve a turn."""

    def __init__(self, lookup: ProviderLookup):
        self._lookup = lookup

    async def resolve(self, provider_id: str | None, model: str | None) -> Provider:
        """Resolve by explicit id, else the first enabled provider serving ``model``.

        Raises:
            ChatError: ``bad_request:chat`` when nothing matches or the
                provider is incomplete.
        """
        provider: Provider | None = None
        if provider_id:
            provider = await self._lookup.get_provider(provider_id)
            if provider is None:
                raise ChatError("bad_request:chat", f"Provider not found: {provider_id}")
        elif model:
            for candidate in await self._lookup.list_providers():
                if candidate.enabled and candidate.model == model:
                    provider = candidate
                    break

        if provider is None:
            raise ChatError("bad_request:chat", "Provider not found")
        if not provider.enabled:
            raise ChatError("bad_request:chat", f"Provider {provider.name} is disabled")
        if not provider.api_key:
            raise ChatError("bad_request:chat", "Provider configuration is incomplete")

        return provider.model_copy(update={"base_url": normalize_base_url(provider.base_url)})


def create_model_client(provider: Provider, model: str | None = None) -> ModelClient:
    """Build the client matching the provider's protocol."""
    if provider.kind == ProviderKind.ANTHROPIC:
        return AnthropicClient(provider, model)
    if not provider.base_url:
        raise ChatError("bad_request:chat", "Provider configuration is incomplete")
    return OpenAICompatibleClient(provider, model)
