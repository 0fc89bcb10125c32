"""Pydantic models for upstream model providers."""

from enum import Enum

from pydantic import BaseModel, Field


class ProviderKind(str, Enum):
    """Wire protocol spoken by a provider."""

    OPENAI = "openai"  # any OpenAI-compatible /chat/completions endpoint
    ANTHROPIC = "anthropic"


class ProviderBase(BaseModel):
    name: str
    kind: ProviderKind = ProviderKind.OPENAI
    base_url: str | None = Field(default=None, alias="baseUrl")
    model: str
    enabled: bool = True

    model_config = {"populate_by_name": True, "use_enum_values": True}


class ProviderCreate(ProviderBase):
    """Request model for creating or replacing a provider."""

    id: str | None = None
    api_key: str = Field(alias="apiKey")


class Provider(ProviderBase):
    """A configured provider, including its decrypted API key."""

    id: str
    api_key: str = Field(alias="apiKey")


class ProviderSummary(ProviderBase):
    """Provider as returned by the API (API key omitted)."""

    id: str
    has_api_key: bool = Field(default=False, alias="hasApiKey")
