"""
Heuristic query classifier for auto-routing.

Scores a prompt's complexity from keyword and length signals and maps the
score to one of four fixed routes. Never calls a model.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from arbiter.core.models import Route, RoutingDecision, display_name_for

logger = structlog.get_logger()

CODE_SCORE = -999

# Checked case-sensitively against the raw query, first match wins
CODE_MARKERS: tuple[str, ...] = (
    "```", "function ", "def ", "const ", "import ", "class ", "export ",
    "async ", "await ", "return ", "if (", "for (", "while (",
)

DEEP_ANALYSIS_KEYWORDS: tuple[str, ...] = (
    "analyze", "explain why", "compare", "contrast",
    "step by step", "in depth", "detailed", "comprehensive",
    "write an essay", "write a story", "draft", "compose",
)

EXPLANATORY_KEYWORDS: tuple[str, ...] = (
    "why", "should i", "would", "could you explain",
    "pros and cons", "advantages", "disadvantages",
)

FACTUAL_STARTS: tuple[str, ...] = ("what is", "who is", "when did", "define", "how many")

FAST_LOOKUP_KEYWORDS: tuple[str, ...] = (
    "capital of", "population of", "who won", "what year",
    "translate", "say in", "how do you say",
)

LONG_QUERY_WORDS = 30
SHORT_QUERY_WORDS = 10


@dataclass(frozen=True)
class RouteTarget:
    """Where a route sends the query."""

    model_id: str
    label: str


ROUTE_TABLE: dict[Route, RouteTarget] = {
    Route.CODE: RouteTarget("deepseek/deepseek-chat", "Code Path"),
    Route.ULTRA_FAST: RouteTarget("meta-llama/llama-4-maverick:groq", "Ultra-Fast Path"),
    Route.FAST: RouteTarget("moonshotai/kimi-k2", "Balanced Path"),
    Route.PREMIUM: RouteTarget("anthropic/claude-sonnet-4.5", "Premium Path"),
}


def score_query(query: str) -> tuple[int, list[str]]:
    """
    Score a query and list the rules that fired, in evaluation order.

    A code marker short-circuits with ``CODE_SCORE``.
    """
    signals: list[str] = []

    for marker in CODE_MARKERS:
        if marker in query:
            signals.append(f'code: "{marker.strip()}"')
            return CODE_SCORE, signals

    lower_query = query.lower().strip()
    word_count = len(query.split())
    score = 0

    if word_count > LONG_QUERY_WORDS:
        score += 2
        signals.append(f"long query ({word_count} words): +2")

    for keyword in DEEP_ANALYSIS_KEYWORDS:
        if keyword in lower_query:
            score += 2
            signals.append(f'"{keyword}": +2')

    for keyword in EXPLANATORY_KEYWORDS:
        if keyword in lower_query:
            score += 1
            signals.append(f'"{keyword}": +1')

    if word_count < SHORT_QUERY_WORDS:
        score -= 2
        signals.append(f"short query ({word_count} words): -2")

    for start in FACTUAL_STARTS:
        if lower_query.startswith(start):
            score -= 1
            signals.append(f'starts with "{start}": -1')
            break

    for keyword in FAST_LOOKUP_KEYWORDS:
        if keyword in lower_query:
            score -= 1
            signals.append(f'"{keyword}": -1')

    return score, signals


def route_for_score(score: int) -> Route:
    """Map a non-code score to a route."""
    if score <= 0:
        return Route.ULTRA_FAST
    if score <= 2:
        return Route.FAST
    return Route.PREMIUM


class QueryClassifier:
    """Deterministic router from query text to a ``RoutingDecision``."""

    def __init__(self, route_table: dict[Route, RouteTarget] | None = None):
        self.route_table = route_table or ROUTE_TABLE

    def classify(self, query: str) -> RoutingDecision:
        score, signals = score_query(query)
        route = Route.CODE if score == CODE_SCORE else route_for_score(score)
        target = self.route_table[route]

        decision = RoutingDecision(
            model_id=target.model_id,
            model_name=display_name_for(target.model_id),
            route=route,
            route_label=target.label,
            score=score,
            signals=signals,
        )
        logger.debug(
            "Query classified",
            route=route.value,
            score=score,
            signals=signals,
            model=target.model_id,
        )
        return decision
