"""
Adapters for backends that speak the OpenAI chat-completions protocol.

Groq, Cerebras, OpenRouter and Together all expose an OpenAI-compatible
endpoint; they differ only in base URL, credential and extra headers.
None of them report usage in streamed chunks, so token counts are estimated.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncOpenAI

from arbiter.core.models import AdapterKind, Message
from arbiter.providers.base import (
    BackendError,
    BaseProvider,
    ProviderError,
    ProviderTimeoutError,
    StreamDelta,
)


class OpenAICompatibleProvider(BaseProvider):
    """Streaming chat completions through the OpenAI SDK."""

    default_base_url: str = ""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_headers: dict[str, str] | None = None,
        client: AsyncOpenAI | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self.base_url = base_url or self.default_base_url
        self.default_headers = default_headers or {}
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Built on first use: the SDK refuses to construct without a key.
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                default_headers=self.default_headers or None,
                max_retries=0,
            )
        return self._client

    async def _stream_deltas(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int,
    ) -> AsyncIterator[StreamDelta]:
        stream = await self.client.chat.completions.create(
            model=model,
            messages=self._to_wire(messages),
            max_tokens=max_tokens,
            stream=True,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            yield StreamDelta(text=chunk.choices[0].delta.content or "")

    def _map_error(self, exc: Exception) -> ProviderError | None:
        if isinstance(exc, APITimeoutError):
            return ProviderTimeoutError(provider=self.name)
        if isinstance(exc, APIStatusError):
            return BackendError(
                f"{self.name} API error: {exc.status_code} - {exc.message}",
                provider=self.name,
                status_code=exc.status_code,
            )
        if isinstance(exc, APIConnectionError):
            return BackendError(f"{self.name} connection failed: {exc}", provider=self.name)
        if isinstance(exc, APIError):
            return BackendError(f"{self.name} API error: {exc.message}", provider=self.name)
        return super()._map_error(exc)


class GroqProvider(OpenAICompatibleProvider):
    """Groq LPU inference."""

    adapter_kind = AdapterKind.GROQ
    credential_name = "GROQ_API_KEY"
    default_base_url = "https://api.groq.com/openai/v1"


class CerebrasProvider(OpenAICompatibleProvider):
    """Cerebras wafer-scale inference."""

    adapter_kind = AdapterKind.CEREBRAS
    credential_name = "CEREBRAS_API_KEY"
    default_base_url = "https://api.cerebras.ai/v1"


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter, which asks callers to identify themselves via headers."""

    adapter_kind = AdapterKind.OPENROUTER
    credential_name = "OPENROUTER_API_KEY"
    default_base_url = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        referer: str | None = None,
        title: str | None = None,
        **kwargs: Any,
    ):
        headers = {}
        if referer:
            headers["HTTP-Referer"] = referer
        if title:
            headers["X-Title"] = title
        super().__init__(api_key, base_url=base_url, default_headers=headers, **kwargs)


class TogetherProvider(OpenAICompatibleProvider):
    """Together AI hosted open-weight models."""

    adapter_kind = AdapterKind.TOGETHER
    credential_name = "TOGETHER_API_KEY"
    default_base_url = "https://api.together.xyz/v1"
