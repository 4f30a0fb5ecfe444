"""Auto-routing."""

from arbiter.routing.classifier import ROUTE_TABLE, QueryClassifier, score_query

__all__ = ["QueryClassifier", "ROUTE_TABLE", "score_query"]
