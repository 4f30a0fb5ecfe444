"""
Adapters for backends reached over raw server-sent events.

DeepSeek and MiniMax are called with plain ``httpx`` streaming requests and
their ``data:`` lines are parsed here.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
import structlog

from arbiter.core.models import AdapterKind, Message
from arbiter.providers.base import (
    BackendError,
    BaseProvider,
    ConfigError,
    ProtocolError,
    StreamDelta,
)

logger = structlog.get_logger()


class SSEChatProvider(BaseProvider):
    """Chat completions streamed as ``data: {json}`` lines ending with ``[DONE]``."""

    display_label: str = "SSE"
    default_url: str = ""

    def __init__(
        self,
        api_key: str | None = None,
        url: str | None = None,
        client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self.url = url or self.default_url
        self._client = client

    def _endpoint(self) -> str:
        return self.url

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str | None:
        """Pull the content delta out of one parsed chunk."""
        choices = data.get("choices") or []
        if choices:
            delta = choices[0].get("delta") or {}
            return delta.get("content")
        return None

    @staticmethod
    def _failure_message(data: dict[str, Any]) -> str | None:
        """Error text carried in a chunk that has no content."""
        error = data.get("error")
        if isinstance(error, dict):
            return error.get("message") or None
        if isinstance(error, str):
            return error or None
        return None

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        timeout_config = httpx.Timeout(connect=15.0, read=None, write=60.0, pool=60.0)
        async with httpx.AsyncClient(timeout=timeout_config) as client:
            yield client

    async def _stream_deltas(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int,
    ) -> AsyncIterator[StreamDelta]:
        payload = {
            "model": model,
            "messages": self._to_wire(messages),
            "max_tokens": max_tokens,
            "stream": True,
        }

        data_lines = 0
        parsed_lines = 0
        recognized = 0
        failure: str | None = None

        async with self._http() as client:
            async with client.stream(
                "POST", self._endpoint(), headers=self._headers(), json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "Backend returned an error status",
                        provider=self.name,
                        status_code=response.status_code,
                    )
                    raise BackendError(
                        f"{self.display_label} API error: {response.status_code} - {body}",
                        provider=self.name,
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data_str = line[5:].strip()
                    if data_str == "[DONE]":
                        break
                    data_lines += 1
                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(data, dict):
                        continue
                    parsed_lines += 1

                    usage = data.get("usage")
                    if not isinstance(usage, dict):
                        usage = {}
                    text = self._extract_text(data)
                    if text is None and not usage:
                        failure = self._failure_message(data) or failure
                        continue
                    recognized += 1
                    yield StreamDelta(
                        text=text or "",
                        input_tokens=usage.get("prompt_tokens"),
                        output_tokens=usage.get("completion_tokens"),
                    )

        if data_lines and not parsed_lines:
            raise ProtocolError(
                f"{self.display_label} stream had {data_lines} data lines but none parsed",
                provider=self.name,
            )
        if parsed_lines and not recognized:
            detail = f": {failure}" if failure else ""
            raise ProtocolError(
                f"{self.display_label} stream carried no content{detail}",
                provider=self.name,
            )


class DeepSeekProvider(SSEChatProvider):
    """DeepSeek chat API."""

    adapter_kind = AdapterKind.DEEPSEEK
    credential_name = "DEEPSEEK_API_KEY"
    display_label = "DeepSeek"
    default_url = "https://api.deepseek.com/chat/completions"


class MiniMaxProvider(SSEChatProvider):
    """MiniMax chatcompletion_v2, addressed by group id."""

    adapter_kind = AdapterKind.MINIMAX
    credential_name = "MINIMAX_API_KEY"
    display_label = "MiniMax"
    default_url = "https://api.minimax.io/v1/text/chatcompletion_v2"

    def __init__(
        self,
        api_key: str | None = None,
        group_id: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        self.group_id = group_id

    def check_credentials(self) -> None:
        super().check_credentials()
        if not self.group_id:
            raise ConfigError("MINIMAX_GROUP_ID not configured", provider=self.name)

    def _endpoint(self) -> str:
        return f"{self.url}?GroupId={self.group_id}"

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str | None:
        text = SSEChatProvider._extract_text(data)
        if text is not None:
            return text
        delta = data.get("delta") or {}
        return delta.get("content") if isinstance(delta, dict) else None

    @staticmethod
    def _failure_message(data: dict[str, Any]) -> str | None:
        base_resp = data.get("base_resp")
        if isinstance(base_resp, dict) and base_resp.get("status_code"):
            return f"{base_resp.get('status_msg') or 'error'} ({base_resp['status_code']})"
        return SSEChatProvider._failure_message(data)
