"""
Cost accounting against the static price table.

Prices live on ``ModelSpec`` in USD per million tokens. Token counts fed in
here are often estimates, so every figure is an approximation.
"""

from __future__ import annotations

from arbiter.core.models import MODEL_REGISTRY, CompletionResult, CostStats


def calculate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    """
    Cost in USD of one completion.

    Unknown model ids cost nothing rather than raising, so cost reporting
    never breaks a response.
    """
    spec = MODEL_REGISTRY.get(model_id)
    if spec is None:
        return 0.0
    return (
        input_tokens * spec.input_cost_per_million / 1_000_000
        + output_tokens * spec.output_cost_per_million / 1_000_000
    )


def cost_stats(
    model_id: str,
    result: CompletionResult,
    baseline_model: str = "anthropic/claude-sonnet-4.5",
) -> CostStats:
    """Cost of ``result`` and what the same tokens would cost on the baseline model."""
    cost = calculate_cost(model_id, result.input_tokens, result.output_tokens)
    baseline_cost = calculate_cost(baseline_model, result.input_tokens, result.output_tokens)
    saved = baseline_cost - cost
    saved_percent = (saved / baseline_cost) * 100 if baseline_cost > 0 else 0.0

    return CostStats(
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
        ttft_ms=result.ttft_ms,
        total_ms=result.total_ms,
        tokens_per_second=result.tokens_per_second,
        cost=cost,
        baseline_cost=baseline_cost,
        saved=saved,
        saved_percent=saved_percent,
    )
