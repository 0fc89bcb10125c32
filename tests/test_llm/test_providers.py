"""Tests for provider resolution, client construction and message conversion."""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from chatstream.errors import ChatError
from chatstream.llm.anthropic_client import AnthropicClient
from chatstream.llm.base import ModelError, to_model_messages
from chatstream.llm.openai_compat import OpenAICompatibleClient
from chatstream.llm.providers import (
    GOOGLE_OPENAI_BASE_URL,
    ProviderResolver,
    create_model_client,
    normalize_base_url,
)
from chatstream.models.chat import FilePart, Message, TextPart


class StaticLookup:
    def __init__(self, *providers):
        self.providers = list(providers)

    async def get_provider(self, provider_id):
        return next((p for p in self.providers if p.id == provider_id), None)

    async def list_providers(self):
        return list(self.providers)


class TestNormalizeBaseUrl:
    def test_google_host_rewritten(self):
        url = "https://generativelanguage.googleapis.com/v1beta"
        assert normalize_base_url(url) == GOOGLE_OPENAI_BASE_URL

    def test_google_openai_path_kept(self):
        assert normalize_base_url(GOOGLE_OPENAI_BASE_URL + "/") == GOOGLE_OPENAI_BASE_URL

    def test_other_hosts_untouched(self):
        assert normalize_base_url("http://localhost:11434/v1") == "http://localhost:11434/v1"
        assert normalize_base_url(None) is None


class TestProviderResolver:
    """Tests for choosing the provider of a turn."""

    @pytest.mark.asyncio
    async def test_explicit_id(self, provider):
        other = provider.model_copy(update={"id": "prov-2", "model": "other"})
        resolver = ProviderResolver(StaticLookup(provider, other))

        resolved = await resolver.resolve("prov-2", "test-model")
        assert resolved.id == "prov-2"

    @pytest.mark.asyncio
    async def test_by_model_skips_disabled(self, provider):
        disabled = provider.model_copy(update={"id": "off", "enabled": False})
        resolver = ProviderResolver(StaticLookup(disabled, provider))

        resolved = await resolver.resolve(None, "test-model")
        assert resolved.id == "prov-1"

    @pytest.mark.asyncio
    async def test_unknown_id(self, provider):
        resolver = ProviderResolver(StaticLookup(provider))
        with pytest.raises(ChatError) as exc_info:
            await resolver.resolve("nope", None)
        assert exc_info.value.message == "Provider not found: nope"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_no_model_match(self, provider):
        resolver = ProviderResolver(StaticLookup(provider))
        with pytest.raises(ChatError, match="Provider not found"):
            await resolver.resolve(None, "unknown-model")

    @pytest.mark.asyncio
    async def test_disabled_explicit_provider(self, provider):
        disabled = provider.model_copy(update={"enabled": False})
        resolver = ProviderResolver(StaticLookup(disabled))
        with pytest.raises(ChatError, match="disabled"):
            await resolver.resolve("prov-1", None)

    @pytest.mark.asyncio
    async def test_missing_api_key(self, provider):
        keyless = provider.model_copy(update={"api_key": ""})
        resolver = ProviderResolver(StaticLookup(keyless))
        with pytest.raises(ChatError, match="incomplete"):
            await resolver.resolve("prov-1", None)

    @pytest.mark.asyncio
    async def test_google_url_normalized(self, provider):
        google = provider.model_copy(
            update={"base_url": "https://generativelanguage.googleapis.com/v1beta"}
        )
        resolved = await ProviderResolver(StaticLookup(google)).resolve("prov-1", None)
        assert resolved.base_url == GOOGLE_OPENAI_BASE_URL


class TestCreateModelClient:
    def test_openai_kind(self, provider):
        assert isinstance(create_model_client(provider), OpenAICompatibleClient)

    def test_anthropic_kind(self, provider):
        claude = provider.model_copy(update={"kind": "anthropic", "base_url": None})
        client = create_model_client(claude, "claude-test")
        assert isinstance(client, AnthropicClient)
        assert client.model == "claude-test"

    def test_openai_without_base_url(self, provider):
        with pytest.raises(ChatError):
            create_model_client(provider.model_copy(update={"base_url": None}))


class FakeStream:
    def __init__(self, texts, error=None):
        self.texts = texts
        self.error = error

    async def __aenter__(self):
        if self.error:
            raise self.error
        return self

    async def __aexit__(self, *exc):
        return False

    @property
    async def text_stream(self):
        for text in self.texts:
            yield text

    async def get_final_message(self):
        return SimpleNamespace(usage=SimpleNamespace(input_tokens=4, output_tokens=2))


class FakeMessages:
    def __init__(self, stream):
        self._stream = stream
        self.kwargs = None

    def stream(self, **kwargs):
        self.kwargs = kwargs
        return self._stream


class FakeAnthropic:
    def __init__(self, stream):
        self.messages = FakeMessages(stream)
        self.closed = False

    async def close(self):
        self.closed = True


class TestAnthropicClient:
    """Tests for AnthropicClient with a stubbed SDK client."""

    @pytest.mark.asyncio
    async def test_streams_text_and_usage(self, provider):
        fake = FakeAnthropic(FakeStream(["Hel", "lo"]))
        client = AnthropicClient(provider, "claude-test", client=fake)

        messages = [
            {"role": "system", "content": "Extra rules"},
            {"role": "user", "content": "hi"},
        ]
        deltas = [d async for d in client.stream_text(messages, system="Be brief")]

        assert deltas == ["Hel", "lo"]
        assert fake.messages.kwargs["system"] == "Be brief\n\nExtra rules"
        assert fake.messages.kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert client.usage["totalTokens"] == 6

        await client.aclose()
        assert fake.closed

    @pytest.mark.asyncio
    async def test_status_error_mapped(self, provider):
        response = httpx.Response(401, request=httpx.Request("POST", "https://api.anthropic.com"))
        error = anthropic.APIStatusError("invalid x-api-key", response=response, body=None)
        client = AnthropicClient(provider, client=FakeAnthropic(FakeStream([], error=error)))

        with pytest.raises(ModelError) as exc_info:
            [d async for d in client.stream_text([{"role": "user", "content": "hi"}])]

        assert exc_info.value.status_code == 401
        assert "Authentication Failed" in str(exc_info.value)


class TestToModelMessages:
    def test_text_joined_and_empty_skipped(self):
        messages = [
            Message(id="1", role="user", parts=[TextPart(text="a"), TextPart(text="b")]),
            Message(
                id="2",
                role="user",
                parts=[FilePart(url="http://x.test/a.png", name="a.png", media_type="image/png")],
            ),
            Message(id="3", role="tool", parts=[TextPart(text="tool output")]),
            Message(id="4", role="assistant", parts=[TextPart(text="c")]),
        ]

        assert to_model_messages(messages) == [
            {"role": "user", "content": "a\nb"},
            {"role": "assistant", "content": "c"},
        ]
