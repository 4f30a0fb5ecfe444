"""
Base provider interface for LLM backends.

Every adapter turns one backend's streaming wire format into a sequence of
``StreamDelta`` events. ``BaseProvider`` owns everything that is the same
across backends: credential checks, the per-call deadline, time-to-first-token,
content accumulation, usage estimation and error mapping.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx
import structlog

from arbiter.core.context import estimate_tokens
from arbiter.core.models import AdapterKind, CompletionResult, Message

logger = structlog.get_logger()

TIMEOUT_MESSAGE = "⏱️ Response timed out (query too complex)"


class ProviderError(Exception):
    """Base exception for provider errors."""

    kind = "backend"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        """Text suitable for showing in place of a model's answer."""
        return f"Error: {self}"


class ConfigError(ProviderError):
    """Raised when a backend's credentials are missing."""

    kind = "config"


class ProviderTimeoutError(ProviderError):
    """Raised when a call misses its deadline."""

    kind = "timeout"

    def __init__(self, message: str = TIMEOUT_MESSAGE, provider: str | None = None):
        super().__init__(message, provider)

    @property
    def user_message(self) -> str:
        return TIMEOUT_MESSAGE


class ProtocolError(ProviderError):
    """Raised when a stream carries nothing recognizable."""

    kind = "protocol"


class BackendError(ProviderError):
    """Raised when a backend reports a failure."""

    kind = "backend"


@dataclass(frozen=True)
class StreamDelta:
    """
    One normalized stream event.

    ``text`` is the incremental content (may be empty for bookkeeping
    chunks); the token fields are set only when the backend reports exact
    usage in that chunk.
    """

    text: str = ""
    input_tokens: int | None = None
    output_tokens: int | None = None


class BaseProvider(ABC):
    """
    Abstract base class for backend adapters.

    Subclasses implement ``_stream_deltas`` and may refine ``_map_error`` to
    translate their SDK's exceptions.
    """

    adapter_kind: AdapterKind
    credential_name: str = "API_KEY"

    def __init__(self, api_key: str | None = None, **kwargs: Any):
        self.api_key = api_key

    @property
    def name(self) -> str:
        return self.adapter_kind.value

    def check_credentials(self) -> None:
        """Fail fast before any network I/O when credentials are absent."""
        if not self.api_key:
            raise ConfigError(f"{self.credential_name} not configured", provider=self.name)

    @abstractmethod
    def _stream_deltas(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int,
    ) -> AsyncIterator[StreamDelta]:
        """Open one streaming request and yield normalized deltas."""
        ...

    def _map_error(self, exc: Exception) -> ProviderError | None:
        """
        Translate a transport or SDK exception into the provider taxonomy.

        Returns None for exceptions that should propagate unchanged.
        """
        if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
            return ProviderTimeoutError(provider=self.name)
        if isinstance(exc, httpx.HTTPStatusError):
            return BackendError(
                f"{self.name} API error: {exc.response.status_code}",
                provider=self.name,
                status_code=exc.response.status_code,
            )
        if isinstance(exc, httpx.HTTPError):
            return BackendError(f"{self.name} request failed: {exc}", provider=self.name)
        return None

    @staticmethod
    def _to_wire(messages: list[Message]) -> list[dict[str, str]]:
        return [{"role": m.role.value, "content": m.content} for m in messages]

    async def stream(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int,
    ) -> AsyncIterator[StreamDelta]:
        """
        Stream normalized deltas with errors mapped to ``ProviderError``.

        No deadline is applied here; callers that stream enforce their own.
        """
        self.check_credentials()
        try:
            async for delta in self._stream_deltas(model, messages, max_tokens):
                yield delta
        except ProviderError:
            raise
        except Exception as e:
            mapped = self._map_error(e)
            if mapped is None:
                raise
            raise mapped from e

    async def invoke(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int,
        timeout: float,
    ) -> CompletionResult:
        """
        Run one completion to the end and return a ``CompletionResult``.

        Args:
            model: Backend-native model name
            messages: Conversation in turn order
            max_tokens: Output token cap
            timeout: Deadline in seconds for the whole call

        Raises:
            ConfigError: Credentials are missing
            ProviderTimeoutError: The deadline elapsed first
            ProtocolError: The stream carried no recognizable delta
            BackendError: The backend reported a failure
        """
        self.check_credentials()
        try:
            return await asyncio.wait_for(
                self._collect(model, messages, max_tokens),
                timeout=timeout,
            )
        except TimeoutError as e:
            logger.warning("Provider call timed out", provider=self.name, model=model, timeout=timeout)
            raise ProviderTimeoutError(provider=self.name) from e

    async def _collect(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int,
    ) -> CompletionResult:
        start_time = time.perf_counter()
        ttft_ms = 0
        chunks: list[str] = []
        seen = 0
        input_tokens: int | None = None
        output_tokens: int | None = None

        async for delta in self.stream(model, messages, max_tokens):
            seen += 1
            if delta.text:
                if not chunks:
                    ttft_ms = int((time.perf_counter() - start_time) * 1000)
                chunks.append(delta.text)
            if delta.input_tokens is not None:
                input_tokens = delta.input_tokens
            if delta.output_tokens is not None:
                output_tokens = delta.output_tokens

        if seen == 0:
            raise ProtocolError(
                f"{self.name} stream ended without a recognizable delta",
                provider=self.name,
            )

        content = "".join(chunks)
        total_ms = int((time.perf_counter() - start_time) * 1000)
        estimated = input_tokens is None or output_tokens is None
        if input_tokens is None:
            input_tokens = estimate_tokens("".join(m.content for m in messages))
        if output_tokens is None:
            output_tokens = estimate_tokens(content)

        tokens_per_second = round(output_tokens / (total_ms / 1000), 1) if total_ms > 0 else 0.0

        logger.debug(
            "Provider call completed",
            provider=self.name,
            model=model,
            ttft_ms=ttft_ms,
            total_ms=total_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_usage=estimated,
        )

        return CompletionResult(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            ttft_ms=ttft_ms,
            total_ms=total_ms,
            tokens_per_second=tokens_per_second,
            estimated_usage=estimated,
        )
