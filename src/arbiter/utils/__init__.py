"""Utility modules for Arbiter."""

from arbiter.utils.logging import RequestLogger, setup_logging
from arbiter.utils.metrics import Metrics, metrics

__all__ = [
    "setup_logging",
    "RequestLogger",
    "metrics",
    "Metrics",
]
