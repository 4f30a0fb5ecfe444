"""
Arbiter - multi-provider LLM orchestration

Dispatches one conversation to many hosted models at once, routes single
queries to a model by a cheap heuristic, ranks answers by blind peer review
with a chairman synthesis, and streams single-model runs.
"""

__version__ = "0.1.0"

from arbiter.core.models import (
    DEFAULT_ROSTER,
    MODEL_REGISTRY,
    CompletionResult,
    Message,
    RankingReport,
    RoutingDecision,
)
from arbiter.core.gateway import CompletionGateway, UnknownModelError
from arbiter.core.chat import ChatService

__all__ = [
    "CompletionGateway",
    "ChatService",
    "UnknownModelError",
    "Message",
    "CompletionResult",
    "RoutingDecision",
    "RankingReport",
    "DEFAULT_ROSTER",
    "MODEL_REGISTRY",
]
