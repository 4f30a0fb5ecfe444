"""Tests for the heuristic query classifier."""

import pytest

from arbiter.core.models import Route
from arbiter.routing.classifier import (
    CODE_SCORE,
    QueryClassifier,
    route_for_score,
    score_query,
)


@pytest.fixture
def classifier():
    return QueryClassifier()


class TestScoreQuery:
    """Tests for scoring rules."""

    def test_short_factual_lookup(self):
        score, signals = score_query("What is the capital of France?")
        # short (-2), factual start (-1), lookup keyword (-1)
        assert score == -4
        assert len(signals) == 3

    def test_code_marker_short_circuits(self):
        score, signals = score_query("Please analyze this in depth: def foo(): return 1")
        assert score == CODE_SCORE
        assert len(signals) == 1

    def test_code_markers_are_case_sensitive(self):
        score, _ = score_query("Define the word Import please")
        assert score != CODE_SCORE

    def test_deep_analysis_keywords(self):
        query = (
            "Can you analyze and compare the economic policies of two countries "
            "in a detailed and comprehensive way, covering history, outcomes, "
            "trade relationships, labor markets and long term consequences for growth"
        )
        score, _ = score_query(query)
        assert score >= 3

    def test_explanatory_keywords(self):
        score, signals = score_query("Could you explain why the sky looks blue during most of the day?")
        assert any('"why"' in s for s in signals)
        assert score > 0

    def test_pure(self):
        query = "Should I learn Rust or Go for backend services at a small startup?"
        assert score_query(query) == score_query(query)


class TestRouteForScore:
    """Tests for score thresholds."""

    @pytest.mark.parametrize("score,route", [
        (-5, Route.ULTRA_FAST),
        (0, Route.ULTRA_FAST),
        (1, Route.FAST),
        (2, Route.FAST),
        (3, Route.PREMIUM),
        (10, Route.PREMIUM),
    ])
    def test_thresholds(self, score, route):
        assert route_for_score(score) == route


class TestQueryClassifier:
    """Tests for routing decisions."""

    def test_capital_of_france_is_ultra_fast(self, classifier):
        decision = classifier.classify("What is the capital of France?")
        assert decision.route == Route.ULTRA_FAST
        assert decision.model_id == "meta-llama/llama-4-maverick:groq"
        assert decision.route_label == "Ultra-Fast Path"

    def test_code_goes_to_code_model(self, classifier):
        decision = classifier.classify("```python\nprint('hi')\n```")
        assert decision.route == Route.CODE
        assert decision.model_id == "deepseek/deepseek-chat"
        assert decision.score == CODE_SCORE

    def test_premium_route(self, classifier):
        decision = classifier.classify(
            "Write an essay that will analyze in depth why empires decline"
        )
        assert decision.route == Route.PREMIUM
        assert decision.model_id == "anthropic/claude-sonnet-4.5"

    def test_model_name_is_display_name(self, classifier):
        decision = classifier.classify("hi")
        assert decision.model_name == "Groq: Llama 4 Maverick"

    def test_same_query_same_decision(self, classifier):
        query = "Explain why databases need indexes"
        assert classifier.classify(query) == classifier.classify(query)
