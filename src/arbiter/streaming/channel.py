"""
Streaming delivery for single-model runs ("wind tunnel").

A ``StreamingChannel`` enforces the event order for one request:
OPEN, then any number of token events, then exactly one terminal
``complete`` or ``error`` event. ``WindTunnel`` drives a channel from one
backend's delta stream.

The ``progress`` field on token events is an advisory estimate (token count
over an assumed response length, capped below 1.0), not a prediction.
"""

from __future__ import annotations

import asyncio
import json
import time
from enum import Enum
from typing import AsyncIterator, Callable, Iterable, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict

from arbiter.billing.costs import calculate_cost
from arbiter.core.config import ArbiterSettings
from arbiter.core.context import estimate_tokens
from arbiter.core.gateway import CompletionGateway
from arbiter.core.models import AdapterKind, Message
from arbiter.providers.base import ProviderError, ProviderTimeoutError

logger = structlog.get_logger()

MAX_ADVISORY_PROGRESS = 0.99


class ChannelState(str, Enum):
    OPEN = "open"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


class StreamStateError(RuntimeError):
    """An event was emitted out of order."""


class TokenEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["token"] = "token"
    content: str
    token_count: int
    elapsed: int
    progress: float


class CompleteEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["complete"] = "complete"
    content: str
    input_tokens: int
    output_tokens: int
    latency: int
    cost: float


class ErrorEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    error: str


StreamEvent = Union[TokenEvent, CompleteEvent, ErrorEvent]


class StreamingChannel:
    """Event factory and state machine for one streaming request."""

    def __init__(
        self,
        assumed_response_tokens: int = 500,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.assumed_response_tokens = assumed_response_tokens
        self._clock = clock
        self._started = clock()
        self.state = ChannelState.OPEN
        self.token_count = 0
        self._chunks: list[str] = []

    @property
    def terminated(self) -> bool:
        return self.state in (ChannelState.COMPLETE, ChannelState.ERROR)

    @property
    def content(self) -> str:
        return "".join(self._chunks)

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def _require_open(self, event: str) -> None:
        if self.terminated:
            raise StreamStateError(f"Cannot emit {event} after {self.state.value}")

    def token(self, delta: str) -> TokenEvent:
        self._require_open("token")
        self.state = ChannelState.STREAMING
        self.token_count += 1
        self._chunks.append(delta)
        progress = min(self.token_count / self.assumed_response_tokens, MAX_ADVISORY_PROGRESS)
        return TokenEvent(
            content=delta,
            token_count=self.token_count,
            elapsed=self.elapsed_ms(),
            progress=round(progress, 3),
        )

    def complete(
        self,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        content: str | None = None,
    ) -> CompleteEvent:
        """
        Close the stream successfully.

        ``content`` overrides the accumulated deltas when the producer has a
        more complete copy of the answer.
        """
        self._require_open("complete")
        self.state = ChannelState.COMPLETE
        return CompleteEvent(
            content=self.content if content is None else content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency=self.elapsed_ms(),
            cost=cost,
        )

    def error(self, message: str) -> ErrorEvent:
        self._require_open("error")
        self.state = ChannelState.ERROR
        return ErrorEvent(error=message)


def to_ndjson(event: StreamEvent) -> str:
    """One newline-delimited JSON record."""
    return event.model_dump_json() + "\n"


def to_sse(event: StreamEvent) -> dict[str, str]:
    """Payload for an ``EventSourceResponse`` data frame."""
    return {"data": event.model_dump_json()}


def ensure_terminated(events: Iterable[StreamEvent | dict]) -> StreamEvent:
    """
    Validate a received event sequence and return its terminal event.

    Raises:
        StreamStateError: No terminal event, or events after the terminal one
    """
    terminal: StreamEvent | None = None
    for raw in events:
        event = _coerce(raw)
        if terminal is not None:
            raise StreamStateError(f"Event {event.type!r} received after {terminal.type!r}")
        if event.type in ("complete", "error"):
            terminal = event
    if terminal is None:
        raise StreamStateError("Stream ended without a complete or error event")
    return terminal


def parse_event(line: str) -> StreamEvent:
    """Parse one NDJSON line or SSE data payload."""
    return _coerce(json.loads(line))


def _coerce(raw: StreamEvent | dict) -> StreamEvent:
    if isinstance(raw, (TokenEvent, CompleteEvent, ErrorEvent)):
        return raw
    kind = raw.get("type")
    if kind == "token":
        return TokenEvent(**raw)
    if kind == "complete":
        return CompleteEvent(**raw)
    if kind == "error":
        return ErrorEvent(**raw)
    raise StreamStateError(f"Unknown event type: {kind!r}")


class WindTunnel:
    """Stream one model's answer as channel events."""

    def __init__(
        self,
        gateway: CompletionGateway,
        settings: ArbiterSettings | None = None,
    ):
        self.gateway = gateway
        self.settings = settings or gateway.settings

    def max_tokens_for(self, model_id: str) -> int:
        spec = self.gateway.resolve(model_id)
        if spec.adapter_kind == AdapterKind.ANTHROPIC:
            return self.settings.wind_tunnel_anthropic_max_tokens
        return self.settings.wind_tunnel_max_tokens

    async def stream(
        self,
        model_id: str,
        messages: list[Message],
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield token events followed by exactly one terminal event.

        Provider failures, including the deadline, become an ``error`` event.

        Raises:
            UnknownModelError: ``model_id`` is not registered (before any event)
        """
        max_tokens = max_tokens or self.max_tokens_for(model_id)
        timeout = timeout or self.settings.default_timeout
        channel = StreamingChannel(self.settings.assumed_response_tokens)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        deltas = self.gateway.stream(model_id, messages, max_tokens)
        input_tokens: int | None = None
        output_tokens: int | None = None

        logger.info("Wind tunnel stream started", model=model_id, max_tokens=max_tokens)
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise ProviderTimeoutError()
                try:
                    delta = await asyncio.wait_for(deltas.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                except TimeoutError as e:
                    raise ProviderTimeoutError() from e

                if delta.input_tokens is not None:
                    input_tokens = delta.input_tokens
                if delta.output_tokens is not None:
                    output_tokens = delta.output_tokens
                if delta.text:
                    yield channel.token(delta.text)
        except ProviderError as e:
            logger.warning("Wind tunnel stream failed", model=model_id, error=str(e), error_kind=e.kind)
            yield channel.error(e.user_message if e.kind == "timeout" else str(e))
            return
        except Exception as e:
            logger.exception("Wind tunnel stream failed unexpectedly", model=model_id)
            yield channel.error(str(e) or type(e).__name__)
            return
        finally:
            await deltas.aclose()

        content = channel.content
        if input_tokens is None:
            input_tokens = estimate_tokens("".join(m.content for m in messages))
        if output_tokens is None:
            output_tokens = estimate_tokens(content)

        event = channel.complete(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=calculate_cost(model_id, input_tokens, output_tokens),
        )
        logger.info(
            "Wind tunnel stream completed",
            model=model_id,
            latency=event.latency,
            output_tokens=output_tokens,
        )
        yield event

    async def run(
        self,
        model_id: str,
        messages: list[Message],
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> CompleteEvent:
        """Non-streaming variant; provider errors propagate."""
        result = await self.gateway.dispatch(
            model_id,
            messages,
            max_tokens or self.max_tokens_for(model_id),
            timeout,
        )
        return CompleteEvent(
            content=result.content,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            latency=result.total_ms,
            cost=calculate_cost(model_id, result.input_tokens, result.output_tokens),
        )
