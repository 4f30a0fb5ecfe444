"""
Completion gateway: the single point of dispatch to every backend.

A logical model id is looked up in the model registry to find its adapter
kind and backend-native name; nothing above this layer knows which wire
protocol a model speaks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping

import structlog

from arbiter.billing.costs import calculate_cost
from arbiter.core.config import ArbiterSettings, ProviderSettings, get_settings
from arbiter.core.models import (
    MODEL_REGISTRY,
    AdapterKind,
    CompletionResult,
    Message,
    ModelSpec,
)
from arbiter.providers.anthropic_provider import AnthropicProvider
from arbiter.providers.base import BaseProvider, ProviderError, StreamDelta
from arbiter.providers.openai_compatible import (
    CerebrasProvider,
    GroqProvider,
    OpenRouterProvider,
    TogetherProvider,
)
from arbiter.providers.sse_provider import DeepSeekProvider, MiniMaxProvider
from arbiter.utils.metrics import Metrics, metrics as global_metrics

logger = structlog.get_logger()


class UnknownModelError(LookupError):
    """Raised for a model id that is not in the registry."""

    def __init__(self, model_id: str):
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id


@dataclass
class ProviderRegistry:
    """One adapter instance per adapter kind."""

    providers: dict[AdapterKind, BaseProvider] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "ProviderRegistry":
        """
        Build every adapter from settings.

        Adapters are created even without credentials; they raise
        ``ConfigError`` when called.
        """
        return cls(providers={
            AdapterKind.ANTHROPIC: AnthropicProvider(
                api_key=settings.secret("anthropic_api_key"),
                base_url=settings.anthropic_base_url,
            ),
            AdapterKind.GROQ: GroqProvider(
                api_key=settings.secret("groq_api_key"),
                base_url=settings.groq_base_url,
            ),
            AdapterKind.CEREBRAS: CerebrasProvider(
                api_key=settings.secret("cerebras_api_key"),
                base_url=settings.cerebras_base_url,
            ),
            AdapterKind.OPENROUTER: OpenRouterProvider(
                api_key=settings.secret("openrouter_api_key"),
                base_url=settings.openrouter_base_url,
                referer=settings.openrouter_referer,
                title=settings.openrouter_title,
            ),
            AdapterKind.TOGETHER: TogetherProvider(
                api_key=settings.secret("together_api_key"),
                base_url=settings.together_base_url,
            ),
            AdapterKind.DEEPSEEK: DeepSeekProvider(
                api_key=settings.secret("deepseek_api_key"),
                url=settings.deepseek_url,
            ),
            AdapterKind.MINIMAX: MiniMaxProvider(
                api_key=settings.secret("minimax_api_key"),
                group_id=settings.minimax_group_id,
                url=settings.minimax_url,
            ),
        })

    def get(self, kind: AdapterKind) -> BaseProvider:
        provider = self.providers.get(kind)
        if provider is None:
            raise KeyError(f"No adapter registered for {kind.value}")
        return provider


class CompletionGateway:
    """
    Resolve logical model ids and dispatch completions.

    Example:
        gateway = CompletionGateway()
        result = await gateway.dispatch(
            "deepseek/deepseek-chat",
            [Message.user("Hello")],
        )
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        settings: ArbiterSettings | None = None,
        models: Mapping[str, ModelSpec] | None = None,
        metrics: Metrics | None = None,
    ):
        app_settings = get_settings() if registry is None or settings is None else None
        self.registry = registry or ProviderRegistry.from_settings(app_settings.providers)
        self.settings = settings or app_settings.arbiter
        self.models = models if models is not None else MODEL_REGISTRY
        self.metrics = metrics if metrics is not None else global_metrics

    def resolve(self, model_id: str) -> ModelSpec:
        """Look up a logical model id, failing hard when it is unknown."""
        spec = self.models.get(model_id)
        if spec is None:
            raise UnknownModelError(model_id)
        return spec

    def display_name(self, model_id: str) -> str:
        return self.resolve(model_id).display_name

    async def dispatch(
        self,
        model_id: str,
        messages: list[Message],
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> CompletionResult:
        """
        Run one completion against the backend behind ``model_id``.

        Args:
            model_id: Logical model id from the registry
            messages: Conversation in turn order
            max_tokens: Output cap (defaults to settings)
            timeout: Deadline in seconds (defaults to settings)

        Raises:
            UnknownModelError: ``model_id`` is not registered
            ProviderError: Any adapter failure, unchanged
        """
        spec = self.resolve(model_id)
        provider = self.registry.get(spec.adapter_kind)

        try:
            with structlog.contextvars.bound_contextvars(model_id=model_id):
                result = await provider.invoke(
                    spec.native_name,
                    messages,
                    max_tokens or self.settings.default_max_tokens,
                    timeout or self.settings.default_timeout,
                )
        except ProviderError as e:
            self.metrics.record_error(spec.adapter_kind.value, model_id, e.kind)
            logger.warning(
                "Dispatch failed",
                model_id=model_id,
                provider=spec.adapter_kind.value,
                error=str(e),
                error_kind=e.kind,
            )
            raise

        self.metrics.record_completion(
            backend=spec.adapter_kind.value,
            model=model_id,
            latency_ms=result.total_ms,
            ttft_ms=result.ttft_ms,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost=calculate_cost(model_id, result.input_tokens, result.output_tokens),
        )
        logger.info(
            "Dispatch completed",
            model_id=model_id,
            provider=spec.adapter_kind.value,
            ttft_ms=result.ttft_ms,
            total_ms=result.total_ms,
            output_tokens=result.output_tokens,
        )
        return result

    def stream(
        self,
        model_id: str,
        messages: list[Message],
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamDelta]:
        """Open a raw delta stream; the caller owns the deadline."""
        spec = self.resolve(model_id)
        provider = self.registry.get(spec.adapter_kind)
        return provider.stream(
            spec.native_name,
            messages,
            max_tokens or self.settings.default_max_tokens,
        )
