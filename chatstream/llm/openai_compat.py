"""Client for OpenAI-compatible ``/chat/completions`` streaming endpoints."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from chatstream.chat.frames import SseFrameDecoder
from chatstream.llm.base import ModelClient, ModelError
from chatstream.models.provider import Provider

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "chat/completions"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


def friendly_error(status_code: int, reason: str, body: str) -> str:
    """Readable message for a failed upstream call."""
    if status_code == 401:
        return "Authentication Failed (401). Check your API Key."
    if status_code == 404:
        return "Not Found (404). Check the Base URL and Model Name."
    if "API key" in body:
        return "Invalid API key"
    return f"HTTP {status_code}: {reason}"


class OpenAICompatibleClient(ModelClient):
    """Streams completions from any OpenAI-compatible provider."""

    def __init__(
        self,
        provider: Provider,
        model: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        super().__init__(provider, model)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def url(self) -> str:
        base_url = self.provider.base_url or DEFAULT_OPENAI_BASE_URL
        if not base_url.endswith("/"):
            base_url += "/"
        return f"{base_url}{CHAT_COMPLETIONS_PATH}"

    async def stream_text(
        self, messages: list[dict[str, str]], system: str | None = None
    ) -> AsyncIterator[str]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": ([{"role": "system", "content": system}] if system else []) + messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        headers = {"Authorization": f"Bearer {self.provider.api_key}"}

        logger.debug(f"POST {self.url} model={self.model} messages={len(messages)}")
        try:
            async with self._client.stream("POST", self.url, json=payload, headers=headers) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Upstream returned {response.status_code}: {body[:500]}")
                    raise ModelError(
                        friendly_error(response.status_code, response.reason_phrase, body),
                        status_code=response.status_code,
                    )

                decoder = SseFrameDecoder()
                async for event in decoder.payloads(response.aiter_bytes()):
                    if not isinstance(event, dict):
                        continue
                    if event.get("error"):
                        error = event["error"]
                        message = error.get("message") if isinstance(error, dict) else str(error)
                        raise ModelError(message or "Upstream error")

                    usage = event.get("usage")
                    if usage:
                        self.usage = self._usage(
                            usage.get("prompt_tokens"), usage.get("completion_tokens")
                        )

                    choices = event.get("choices") or []
                    if not choices:
                        continue
                    content = (choices[0].get("delta") or {}).get("content")
                    if content:
                        yield content
        except httpx.HTTPError as e:
            raise ModelError(f"Failed to reach provider: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
