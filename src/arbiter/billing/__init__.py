"""Cost accounting."""

from arbiter.billing.costs import calculate_cost, cost_stats

__all__ = ["calculate_cost", "cost_stats"]
