"""
Conversation context budgeting.

Token counts here are character estimates (about four characters per
token), not tokenizer output.
"""

from __future__ import annotations

import math
from typing import Iterable

from arbiter.core.models import Message

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate token count for a piece of text, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(messages: Iterable[Message]) -> int:
    """Sum of per-message estimates."""
    return sum(estimate_tokens(m.content) for m in messages)


def trim_messages(
    messages: list[Message],
    max_tokens: int,
) -> tuple[list[Message], bool]:
    """
    Drop the oldest messages until the conversation fits ``max_tokens``.

    The most recent message is always kept, even when it alone exceeds the
    budget; the backend decides what to do with an oversized prompt.

    Args:
        messages: Conversation in turn order
        max_tokens: Token budget

    Returns:
        Tuple of (trimmed messages, whether anything was dropped)

    Raises:
        ValueError: If ``messages`` is empty or the budget is not positive
    """
    if not messages:
        raise ValueError("Cannot trim an empty conversation")
    if max_tokens <= 0:
        raise ValueError(f"Token budget must be positive, got {max_tokens}")

    costs = [estimate_tokens(m.content) for m in messages]
    total = sum(costs)
    start = 0

    while total > max_tokens and len(messages) - start > 1:
        total -= costs[start]
        start += 1

    return list(messages[start:]), start > 0
