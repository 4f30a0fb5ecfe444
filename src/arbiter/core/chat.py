"""
Chat modes built on the gateway, classifier and fan-out orchestrator.

- single: one named model
- auto: the classifier picks the model
- all: every roster model, with per-model cost figures
"""

from __future__ import annotations

from typing import Sequence

import structlog

from arbiter.billing.costs import cost_stats
from arbiter.core.config import ArbiterSettings
from arbiter.core.context import trim_messages
from arbiter.core.gateway import CompletionGateway
from arbiter.core.models import (
    DEFAULT_ROSTER,
    BackendDescriptor,
    ChatMode,
    ChatReply,
    ChatResponse,
    FanOutEntry,
    Message,
    MessageRole,
)
from arbiter.core.orchestrator import FanOutOrchestrator
from arbiter.providers.base import TIMEOUT_MESSAGE
from arbiter.routing.classifier import QueryClassifier

logger = structlog.get_logger()


def failure_text(entry: FanOutEntry) -> str:
    """User-facing stand-in for a failed slot's answer."""
    if entry.error_kind == "timeout":
        return TIMEOUT_MESSAGE
    return f"Error: {entry.error}"


def last_user_content(messages: list[Message]) -> str:
    for message in reversed(messages):
        if message.role == MessageRole.USER:
            return message.content
    raise ValueError("Conversation has no user message")


class ChatService:
    """Entry point for one chat turn in any mode."""

    def __init__(
        self,
        gateway: CompletionGateway,
        orchestrator: FanOutOrchestrator | None = None,
        classifier: QueryClassifier | None = None,
        settings: ArbiterSettings | None = None,
    ):
        self.gateway = gateway
        self.orchestrator = orchestrator or FanOutOrchestrator(gateway)
        self.classifier = classifier or QueryClassifier()
        self.settings = settings or gateway.settings

    def _trim(self, messages: list[Message]) -> tuple[list[Message], bool]:
        trimmed, was_trimmed = trim_messages(messages, self.settings.context_token_budget)
        if was_trimmed:
            logger.info(
                "Conversation trimmed",
                kept=len(trimmed),
                dropped=len(messages) - len(trimmed),
                budget=self.settings.context_token_budget,
            )
        return trimmed, was_trimmed

    async def single(self, model_id: str, messages: list[Message]) -> ChatResponse:
        """Dispatch to one model; provider errors propagate."""
        spec = self.gateway.resolve(model_id)
        trimmed, was_trimmed = self._trim(messages)
        result = await self.gateway.dispatch(model_id, trimmed)
        return ChatResponse(
            mode=ChatMode.SINGLE,
            replies=[ChatReply(
                model_id=model_id,
                model_name=spec.display_name,
                content=result.content,
                cost_stats=cost_stats(model_id, result, self.settings.baseline_model),
            )],
            was_trimmed=was_trimmed,
        )

    async def auto(self, messages: list[Message]) -> ChatResponse:
        """Classify the latest user message and dispatch to the routed model."""
        decision = self.classifier.classify(last_user_content(messages))
        logger.info(
            "Auto-routed",
            route=decision.route.value,
            score=decision.score,
            model=decision.model_id,
        )
        response = await self.single(decision.model_id, messages)
        return response.model_copy(update={"mode": ChatMode.AUTO, "routing": decision})

    async def all_models(
        self,
        messages: list[Message],
        roster: Sequence[BackendDescriptor] = DEFAULT_ROSTER,
    ) -> ChatResponse:
        """Fan out to the whole roster; failures become per-model replies."""
        trimmed, was_trimmed = self._trim(messages)
        entries = await self.orchestrator.run_all(roster, trimmed)

        replies = []
        for entry in entries:
            if entry.result is None:
                replies.append(ChatReply(
                    model_id=entry.backend_id,
                    model_name=entry.model_name,
                    content=failure_text(entry),
                    error=entry.error,
                ))
            else:
                replies.append(ChatReply(
                    model_id=entry.backend_id,
                    model_name=entry.model_name,
                    content=entry.result.content,
                    cost_stats=cost_stats(
                        entry.backend_id, entry.result, self.settings.baseline_model
                    ),
                ))

        return ChatResponse(mode=ChatMode.ALL, replies=replies, was_trimmed=was_trimmed)

    async def chat(
        self,
        mode: ChatMode,
        messages: list[Message],
        model_id: str | None = None,
    ) -> ChatResponse:
        if mode == ChatMode.SINGLE:
            if not model_id:
                raise ValueError("Single mode requires a model id")
            return await self.single(model_id, messages)
        if mode == ChatMode.AUTO:
            return await self.auto(messages)
        return await self.all_models(messages)
