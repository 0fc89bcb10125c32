"""Anthropic Messages API client."""

import logging
from collections.abc import AsyncIterator

import anthropic

from chatstream.llm.base import DEFAULT_MAX_TOKENS, ModelClient, ModelError
from chatstream.models.provider import Provider

logger = logging.getLogger(__name__)


class AnthropicClient(ModelClient):
    """Streams replies through ``AsyncAnthropic().messages.stream``."""

    def __init__(
        self,
        provider: Provider,
        model: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        super().__init__(provider, model)
        self.max_tokens = max_tokens
        self._client = client or anthropic.AsyncAnthropic(
            api_key=provider.api_key,
            base_url=provider.base_url or None,
        )

    async def stream_text(
        self, messages: list[dict[str, str]], system: str | None = None
    ) -> AsyncIterator[str]:
        # System turns go in the dedicated parameter
        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        if system:
            system_parts.insert(0, system)
        conversation = [m for m in messages if m["role"] != "system"]

        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": conversation,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield text
                final = await stream.get_final_message()
        except anthropic.APIStatusError as e:
            logger.error(f"Anthropic returned {e.status_code}: {e.message}")
            if e.status_code == 401:
                raise ModelError("Authentication Failed (401). Check your API Key.", 401) from e
            raise ModelError(e.message, status_code=e.status_code) from e
        except anthropic.APIError as e:
            raise ModelError(f"Failed to reach provider: {e}") from e

        self.usage = self._usage(final.usage.input_tokens, final.usage.output_tokens)

    async def aclose(self) -> None:
        await self._client.close()
