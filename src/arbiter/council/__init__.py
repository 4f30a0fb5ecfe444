"""Blind peer review and chairman synthesis."""

from arbiter.council.ranking import (
    PeerReviewEngine,
    aggregate,
    anonymize,
    build_judging_prompt,
    neutral_rank,
    parse_rankings,
)
from arbiter.council.synthesis import ChairmanSynthesizer

__all__ = [
    "PeerReviewEngine",
    "ChairmanSynthesizer",
    "aggregate",
    "anonymize",
    "build_judging_prompt",
    "neutral_rank",
    "parse_rankings",
]
