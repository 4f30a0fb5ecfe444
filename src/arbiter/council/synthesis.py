"""
Chairman synthesis: one extra call that merges the ranked answers into a
single cited response.
"""

from __future__ import annotations

from typing import Sequence

import structlog

from arbiter.core.config import ArbiterSettings
from arbiter.core.gateway import CompletionGateway
from arbiter.core.models import Judgment, Message, RankedEntry
from arbiter.providers.base import ProviderError

logger = structlog.get_logger()


def build_synthesis_prompt(
    question: str,
    ranked: Sequence[RankedEntry],
    judgments: Sequence[Judgment],
) -> str:
    ranked_text = "\n\n".join(
        f"{r.place}. {r.model_name} (avg rank: {r.average_rank}): {r.content}"
        for r in ranked
    )
    critiques = "\n".join(
        f"{j.model_name}: {j.reasoning}" for j in judgments if not j.failed
    ) or "(no usable critiques)"
    example = ranked[0].model_name if ranked else "Model Name"

    return f"""You are the Chairman synthesizing a council's collective wisdom.

Original question: {question}

Here are {len(ranked)} AI responses ranked by democratic peer review (lowest average rank = best):
{ranked_text}

Peer critiques from the judges:
{critiques}

Create a final synthesized answer that:
- Incorporates the best insights from top-ranked responses
- Cites which model contributed each key point using brackets: [Model Name]
- Is better than any single response

Format: Natural flowing answer with inline citations like [{example}]."""


class ChairmanSynthesizer:
    """Produces the final cited answer; failure means no synthesis, not no ranking."""

    def __init__(
        self,
        gateway: CompletionGateway,
        model_id: str | None = None,
        settings: ArbiterSettings | None = None,
    ):
        self.gateway = gateway
        self.settings = settings or gateway.settings
        self.model_id = model_id or self.settings.chairman_model

    async def synthesize(
        self,
        question: str,
        ranked: Sequence[RankedEntry],
        judgments: Sequence[Judgment],
    ) -> str | None:
        """
        Return the synthesized answer, or None if the chairman call failed.

        Raises:
            UnknownModelError: The chairman model id is not registered
        """
        self.gateway.resolve(self.model_id)
        prompt = build_synthesis_prompt(question, ranked, judgments)
        try:
            result = await self.gateway.dispatch(
                self.model_id,
                [Message.user(prompt)],
                timeout=self.settings.synthesis_timeout,
            )
        except ProviderError as e:
            logger.warning(
                "Chairman synthesis failed",
                model=self.model_id,
                error=str(e),
                error_kind=e.kind,
            )
            return None
        except Exception:
            logger.exception("Chairman synthesis failed unexpectedly", model=self.model_id)
            return None
        return result.content
