"""
Anthropic provider implementation for Claude models.

Streams the native Messages API. Claude reports exact usage: input tokens
in ``message_start`` and output tokens in ``message_delta``.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

from anthropic import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncAnthropic

from arbiter.core.models import AdapterKind, Message, MessageRole
from arbiter.providers.base import (
    BackendError,
    BaseProvider,
    ProviderError,
    ProviderTimeoutError,
    StreamDelta,
)


class AnthropicProvider(BaseProvider):
    """Anthropic provider for Claude models."""

    adapter_kind = AdapterKind.ANTHROPIC
    credential_name = "ANTHROPIC_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncAnthropic | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self.base_url = base_url
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=0,
            )
        return self._client

    def _extract_system_message(
        self,
        messages: list[Message],
    ) -> tuple[str | None, list[Message]]:
        """Extract system messages from the list (Claude takes them separately)."""
        system_parts = []
        filtered_messages = []

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
            else:
                filtered_messages.append(msg)

        return ("\n\n".join(system_parts) or None), filtered_messages

    async def _stream_deltas(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int,
    ) -> AsyncIterator[StreamDelta]:
        system_content, filtered_messages = self._extract_system_message(messages)

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._to_wire(filtered_messages),
            "max_tokens": max_tokens,
            "stream": True,
        }
        if system_content:
            kwargs["system"] = system_content

        stream = await self.client.messages.create(**kwargs)
        async for event in stream:
            if event.type == "message_start":
                yield StreamDelta(input_tokens=event.message.usage.input_tokens)
            elif event.type == "content_block_delta":
                yield StreamDelta(text=getattr(event.delta, "text", None) or "")
            elif event.type == "message_delta" and event.usage is not None:
                yield StreamDelta(output_tokens=event.usage.output_tokens)

    def _map_error(self, exc: Exception) -> ProviderError | None:
        if isinstance(exc, APITimeoutError):
            return ProviderTimeoutError(provider=self.name)
        if isinstance(exc, APIStatusError):
            return BackendError(
                f"Anthropic API error: {exc.status_code} - {exc.message}",
                provider=self.name,
                status_code=exc.status_code,
            )
        if isinstance(exc, APIConnectionError):
            return BackendError(f"Anthropic connection failed: {exc}", provider=self.name)
        if isinstance(exc, APIError):
            return BackendError(f"Anthropic API error: {exc.message}", provider=self.name)
        return super()._map_error(exc)
