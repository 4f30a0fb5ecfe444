"""Backend adapter implementations."""

from arbiter.providers.base import (
    BackendError,
    BaseProvider,
    ConfigError,
    ProtocolError,
    ProviderError,
    ProviderTimeoutError,
    StreamDelta,
)
from arbiter.providers.anthropic_provider import AnthropicProvider
from arbiter.providers.openai_compatible import (
    CerebrasProvider,
    GroqProvider,
    OpenRouterProvider,
    TogetherProvider,
)
from arbiter.providers.sse_provider import DeepSeekProvider, MiniMaxProvider

__all__ = [
    "BaseProvider",
    "StreamDelta",
    "ProviderError",
    "ConfigError",
    "ProviderTimeoutError",
    "ProtocolError",
    "BackendError",
    "AnthropicProvider",
    "GroqProvider",
    "CerebrasProvider",
    "OpenRouterProvider",
    "TogetherProvider",
    "DeepSeekProvider",
    "MiniMaxProvider",
]
