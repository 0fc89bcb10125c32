"""Upstream model clients and provider resolution."""

from chatstream.llm.anthropic_client import AnthropicClient
from chatstream.llm.base import ModelClient, ModelError, to_model_messages
from chatstream.llm.openai_compat import OpenAICompatibleClient
from chatstream.llm.providers import ProviderResolver, create_model_client, normalize_base_url

__all__ = [
    "AnthropicClient",
    "ModelClient",
    "ModelError",
    "OpenAICompatibleClient",
    "ProviderResolver",
    "create_model_client",
    "normalize_base_url",
    "to_model_messages",
]
