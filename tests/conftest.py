"""Shared fixtures: a scripted backend and a gateway wired to it."""

import asyncio
from typing import Any, AsyncIterator, Callable, Union

import pytest

from arbiter.core.config import ArbiterSettings
from arbiter.core.gateway import CompletionGateway, ProviderRegistry
from arbiter.core.models import AdapterKind, Message
from arbiter.providers.base import BaseProvider, StreamDelta
from arbiter.utils.metrics import Metrics

Reply = Union[str, Exception, Callable[[str, list[Message]], str]]


class ScriptedProvider(BaseProvider):
    """
    Backend double keyed by native model name.

    A reply may be a string (streamed word by word), an exception (raised
    before any delta), or a callable taking the model and messages and
    returning text.
    """

    adapter_kind = AdapterKind.GROQ
    credential_name = "SCRIPTED_API_KEY"

    def __init__(
        self,
        replies: dict[str, Reply] | None = None,
        default: Reply = "ok",
        delays: dict[str, float] | None = None,
        usage: tuple[int, int] | None = None,
        api_key: str | None = "test-key",
    ):
        super().__init__(api_key)
        self.replies = replies or {}
        self.default = default
        self.delays = delays or {}
        self.usage = usage
        self.calls: list[tuple[str, list[Message], int]] = []

    async def _stream_deltas(
        self,
        model: str,
        messages: list[Message],
        max_tokens: int,
    ) -> AsyncIterator[StreamDelta]:
        self.calls.append((model, messages, max_tokens))
        delay = self.delays.get(model, 0.0)
        if delay:
            await asyncio.sleep(delay)

        reply = self.replies.get(model, self.default)
        if isinstance(reply, Exception):
            raise reply
        text = reply(model, messages) if callable(reply) else reply

        words = text.split(" ")
        for i, word in enumerate(words):
            yield StreamDelta(text=word if i == 0 else " " + word)
        if self.usage is not None:
            yield StreamDelta(input_tokens=self.usage[0], output_tokens=self.usage[1])


def make_gateway(provider: BaseProvider, **settings: Any) -> CompletionGateway:
    """Gateway that sends every adapter kind to ``provider``."""
    return CompletionGateway(
        registry=ProviderRegistry(providers={kind: provider for kind in AdapterKind}),
        settings=ArbiterSettings(**settings),
        metrics=Metrics(),
    )


@pytest.fixture
def scripted_provider():
    """A backend that answers "ok" for every model."""
    return ScriptedProvider()


@pytest.fixture
def gateway(scripted_provider):
    """Gateway wired to the scripted backend."""
    return make_gateway(scripted_provider)
