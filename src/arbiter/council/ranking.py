"""
Blind peer review.

Every roster backend ranks an anonymized set of answers. Ranks are mapped
back to the original answers and averaged. A judge whose reply cannot be
used still contributes a neutral rank for every answer.
"""

from __future__ import annotations

import asyncio
import json
import math
import random
import re
from typing import Any, Sequence

import structlog

from arbiter.billing.costs import cost_stats
from arbiter.core.chat import failure_text, last_user_content
from arbiter.core.config import ArbiterSettings
from arbiter.core.context import trim_messages
from arbiter.core.gateway import CompletionGateway
from arbiter.core.models import (
    DEFAULT_ROSTER,
    AnonymizedEntry,
    BackendDescriptor,
    Candidate,
    CompetitionMode,
    Judgment,
    Message,
    RankedEntry,
    RankingReport,
)
from arbiter.core.orchestrator import FanOutOrchestrator
from arbiter.council.synthesis import ChairmanSynthesizer
from arbiter.providers.base import ProviderError

logger = structlog.get_logger()

LABELS = "ABCDEFGH"
MAX_CANDIDATES = len(LABELS)


class JudgmentParseError(ValueError):
    """A judge's reply did not contain a usable ranking."""


def neutral_rank(k: int) -> int:
    """Median rank position, ``k / 2`` rounded half up."""
    return (k + 1) // 2


def round_rank(value: float) -> float:
    """Round half up to one decimal place."""
    return math.floor(value * 10 + 0.5) / 10


def anonymize(
    candidates: Sequence[Candidate],
    rng: random.Random,
) -> list[AnonymizedEntry]:
    """
    Shuffle candidates and label them A, B, C... in shuffled order.

    Each entry keeps the candidate's original index, so the labels form a
    bijection with the input positions.
    """
    order = list(range(len(candidates)))
    rng.shuffle(order)
    return [
        AnonymizedEntry(label=LABELS[position], content=candidates[index].content, original_index=index)
        for position, index in enumerate(order)
    ]


def build_judging_prompt(question: str, entries: Sequence[AnonymizedEntry]) -> str:
    k = len(entries)
    labels = ", ".join(e.label for e in entries)
    responses_text = "\n\n".join(f"Response {e.label}: {e.content}" for e in entries)
    example = list(range(1, k + 1))
    if k > 1:
        example[0], example[1] = example[1], example[0]

    return f"""You are a judge evaluating AI responses. Below are {k} anonymous responses ({labels}) to the question: "{question}"

{responses_text}

Rank these responses from best (1) to worst ({k}) based on accuracy and insight.
Respond with ONLY a JSON object: {{"rankings": {json.dumps(example)}, "reasoning": "brief explanation"}}

The rankings array should contain {k} numbers representing the rank position for responses {labels} in that order."""


def extract_json(text: str) -> dict[str, Any] | None:
    """Find a JSON object in free text: whole reply, fenced block, then outermost braces."""
    candidates = [text]
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    braces = re.search(r"\{[\s\S]*\}", text)
    if braces:
        candidates.append(braces.group())

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_rankings(text: str, k: int) -> tuple[list[int], str]:
    """
    Parse a judge reply into ``(rankings, reasoning)``.

    Raises:
        JudgmentParseError: No JSON, wrong length, or not a permutation of 1..k
    """
    parsed = extract_json(text)
    if parsed is None:
        raise JudgmentParseError("No JSON found in response")

    rankings = parsed.get("rankings")
    if not isinstance(rankings, list) or len(rankings) != k:
        raise JudgmentParseError("Invalid rankings format")
    if any(isinstance(r, bool) or not isinstance(r, int) for r in rankings):
        raise JudgmentParseError("Rankings must be integers")
    if sorted(rankings) != list(range(1, k + 1)):
        raise JudgmentParseError(f"Rankings are not a permutation of 1..{k}")

    reasoning = parsed.get("reasoning") or ""
    return rankings, str(reasoning)


def neutral_judgment(judge: BackendDescriptor, k: int, error: str) -> Judgment:
    return Judgment(
        judge_id=judge.id,
        model_name=judge.display_name,
        rankings=[neutral_rank(k)] * k,
        reasoning="",
        failed=True,
        error=error,
    )


def aggregate(
    candidates: Sequence[Candidate],
    entries: Sequence[AnonymizedEntry],
    judgments: Sequence[Judgment],
) -> list[RankedEntry]:
    """
    Average each candidate's rank across judges and sort best first.

    Ties keep the candidates' original order.
    """
    k = len(candidates)
    label_position = {e.original_index: position for position, e in enumerate(entries)}

    scored = []
    for index, candidate in enumerate(candidates):
        position = label_position[index]
        ranks = [j.rankings[position] for j in judgments]
        mean = sum(ranks) / len(ranks) if ranks else float(neutral_rank(k))
        scored.append((round_rank(mean), index, candidate))

    scored.sort(key=lambda item: item[0])

    return [
        RankedEntry(
            place=place,
            original_index=index,
            model_id=candidate.model_id,
            model_name=candidate.model_name,
            average_rank=mean,
            is_original=candidate.is_original,
            content=candidate.content,
            cost_stats=candidate.cost_stats,
        )
        for place, (mean, index, candidate) in enumerate(scored, start=1)
    ]


class PeerReviewEngine:
    """
    Run a blind peer-review round over a fixed roster.

    Two calling modes differ only in where the candidates come from:
    ``compete_single`` queries the whole roster fresh and marks one model as
    the original; ``compete_all`` reuses an existing complete answer set.
    """

    def __init__(
        self,
        gateway: CompletionGateway,
        orchestrator: FanOutOrchestrator | None = None,
        synthesizer: ChairmanSynthesizer | None = None,
        roster: Sequence[BackendDescriptor] = DEFAULT_ROSTER,
        rng: random.Random | None = None,
        settings: ArbiterSettings | None = None,
    ):
        if not 0 < len(roster) <= MAX_CANDIDATES:
            raise ValueError(f"Peer review roster must have 1 to {MAX_CANDIDATES} backends")
        self.gateway = gateway
        self.orchestrator = orchestrator or FanOutOrchestrator(gateway)
        self.settings = settings or gateway.settings
        self.synthesizer = synthesizer or ChairmanSynthesizer(gateway, settings=self.settings)
        self.roster = list(roster)
        self.rng = rng or random.SystemRandom()

    async def judge(
        self,
        judge: BackendDescriptor,
        prompt: str,
        k: int,
    ) -> Judgment:
        """Ask one backend for a ranking; any failure yields a neutral judgment."""
        try:
            result = await self.gateway.dispatch(judge.id, [Message.user(prompt)])
            rankings, reasoning = parse_rankings(result.content, k)
        except (ProviderError, JudgmentParseError) as e:
            logger.warning("Judge failed", judge=judge.id, error=str(e))
            return neutral_judgment(judge, k, str(e))
        except Exception as e:
            logger.exception("Judge failed unexpectedly", judge=judge.id)
            return neutral_judgment(judge, k, str(e))

        return Judgment(
            judge_id=judge.id,
            model_name=judge.display_name,
            rankings=rankings,
            reasoning=reasoning,
        )

    async def rank(
        self,
        question: str,
        candidates: Sequence[Candidate],
        mode: CompetitionMode,
        original_model: str | None = None,
    ) -> RankingReport:
        """
        Anonymize, judge, aggregate and synthesize.

        Raises:
            ValueError: The candidate count does not match the roster size
            UnknownModelError: A judge id is not registered
        """
        k = len(candidates)
        if k != len(self.roster):
            raise ValueError(
                f"Expected {len(self.roster)} responses for peer review, found {k}"
            )
        for judge in self.roster:
            self.gateway.resolve(judge.id)

        entries = anonymize(candidates, self.rng)
        prompt = build_judging_prompt(question, entries)

        logger.info("Peer review started", mode=mode.value, judges=len(self.roster))
        judgments = list(await asyncio.gather(
            *(self.judge(judge, prompt, k) for judge in self.roster)
        ))

        results = aggregate(candidates, entries, judgments)

        original_placement = None
        better_responses: list[RankedEntry] = []
        if mode == CompetitionMode.SINGLE:
            original = next((r for r in results if r.is_original), None)
            if original is not None:
                original_placement = original.place
                better_responses = [
                    r for r in results if r.place < original.place and not r.is_original
                ]

        synthesis = await self.synthesizer.synthesize(question, results, judgments)

        logger.info(
            "Peer review finished",
            mode=mode.value,
            failed_judges=sum(1 for j in judgments if j.failed),
            winner=results[0].model_id if results else None,
            synthesized=synthesis is not None,
        )

        return RankingReport(
            mode=mode,
            results=results,
            original_placement=original_placement,
            original_model=original_model,
            better_responses=better_responses,
            chairman_synthesis=synthesis,
            judgments=judgments,
        )

    async def compete_single(
        self,
        messages: list[Message],
        original_model: str,
    ) -> RankingReport:
        """
        Query the whole roster fresh and rank the answers.

        ``original_model`` may be a logical id or a display name. Failed
        backends stay in the comparison set with an error text as content.
        """
        question = last_user_content(messages)
        trimmed, _ = trim_messages(messages, self.settings.context_token_budget)
        entries = await self.orchestrator.run_all(self.roster, trimmed)

        original_name = original_model
        candidates = []
        for backend, entry in zip(self.roster, entries):
            is_original = original_model in (backend.id, backend.display_name)
            if is_original:
                original_name = backend.display_name
            if entry.result is None:
                candidates.append(Candidate(
                    model_id=backend.id,
                    model_name=backend.display_name,
                    content=failure_text(entry),
                    is_original=is_original,
                ))
            else:
                candidates.append(Candidate(
                    model_id=backend.id,
                    model_name=backend.display_name,
                    content=entry.result.content,
                    is_original=is_original,
                    cost_stats=cost_stats(backend.id, entry.result, self.settings.baseline_model),
                ))

        return await self.rank(question, candidates, CompetitionMode.SINGLE, original_name)

    async def compete_all(
        self,
        question: str,
        candidates: Sequence[Candidate],
    ) -> RankingReport:
        """Rank an already collected, complete answer set."""
        return await self.rank(question, candidates, CompetitionMode.ALL)
