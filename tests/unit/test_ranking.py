"""Tests for blind peer review and chairman synthesis."""

import json
import random
import re

import anthropic
import httpx
import openai
import pytest

from conftest import ScriptedProvider, make_gateway

from arbiter.core.gateway import UnknownModelError
from arbiter.core.models import (
    DEFAULT_ROSTER,
    MODEL_REGISTRY,
    AdapterKind,
    AnonymizedEntry,
    BackendDescriptor,
    Candidate,
    CompetitionMode,
    Judgment,
    Message,
)
from arbiter.council.ranking import (
    JudgmentParseError,
    PeerReviewEngine,
    aggregate,
    anonymize,
    build_judging_prompt,
    extract_json,
    neutral_rank,
    parse_rankings,
    round_rank,
)
from arbiter.council.synthesis import ChairmanSynthesizer, build_synthesis_prompt
from arbiter.providers.base import BackendError

K = len(DEFAULT_ROSTER)
QUALITY = re.compile(r"Response ([A-H]): quality (\d+)")


def _candidates(k=K):
    # Candidate i carries "quality i+1"; lower is better.
    return [
        Candidate(model_id=b.id, model_name=b.display_name, content=f"quality {i + 1}")
        for i, b in enumerate(DEFAULT_ROSTER[:k])
    ]


def honest_judge(model, messages):
    """Ranks each label by the quality number in its content."""
    prompt = messages[-1].content
    if prompt.startswith("You are the Chairman"):
        return "Synthesized answer [Claude Sonnet 4.5]"
    ranks = [int(q) for _, q in QUALITY.findall(prompt)]
    return json.dumps({"rankings": ranks, "reasoning": "lower quality number is better"})


def _engine(provider, seed=7):
    return PeerReviewEngine(make_gateway(provider), rng=random.Random(seed))


class TestRankHelpers:
    """Tests for rank arithmetic."""

    @pytest.mark.parametrize("k,expected", [(1, 1), (2, 1), (3, 2), (4, 2), (7, 4), (8, 4)])
    def test_neutral_rank(self, k, expected):
        assert neutral_rank(k) == expected

    @pytest.mark.parametrize("value,expected", [
        (2.25, 2.3),
        (1.125, 1.1),
        (4.0, 4.0),
        (3.96, 4.0),
    ])
    def test_round_rank_half_up(self, value, expected):
        assert round_rank(value) == pytest.approx(expected)


class TestAnonymize:
    """Tests for shuffling and labelling."""

    def test_labels_form_a_bijection(self):
        candidates = _candidates()
        entries = anonymize(candidates, random.Random(1))

        assert [e.label for e in entries] == list("ABCDEFGH")
        assert sorted(e.original_index for e in entries) == list(range(K))
        for e in entries:
            assert e.content == candidates[e.original_index].content

    def test_same_seed_same_order(self):
        candidates = _candidates()
        first = anonymize(candidates, random.Random(42))
        second = anonymize(candidates, random.Random(42))
        assert first == second

    def test_prompt_lists_every_label(self):
        entries = anonymize(_candidates(3), random.Random(0))
        prompt = build_judging_prompt("Why?", entries)

        assert '"Why?"' in prompt
        for e in entries:
            assert f"Response {e.label}: {e.content}" in prompt
        assert "worst (3)" in prompt


class TestParseRankings:
    """Tests for judge reply parsing."""

    def test_plain_json(self):
        rankings, reasoning = parse_rankings('{"rankings": [2, 1, 3], "reasoning": "B wins"}', 3)
        assert rankings == [2, 1, 3]
        assert reasoning == "B wins"

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n{"rankings": [1, 2], "reasoning": "ok"}\n```'
        assert parse_rankings(text, 2)[0] == [1, 2]

    def test_json_in_prose(self):
        text = 'My verdict is {"rankings": [3, 1, 2], "reasoning": "x"} and that is final.'
        assert parse_rankings(text, 3)[0] == [3, 1, 2]

    def test_missing_reasoning(self):
        assert parse_rankings('{"rankings": [1]}', 1) == ([1], "")

    @pytest.mark.parametrize("text", [
        "I refuse to rank these.",
        '{"rankings": [1, 2]}',
        '{"rankings": [1, 1, 2]}',
        '{"rankings": [0, 1, 2]}',
        '{"rankings": [1, 2, 4]}',
        '{"rankings": [1.0, 2, 3]}',
        '{"rankings": [true, 2, 3]}',
        '{"rankings": "1,2,3"}',
        '[1, 2, 3]',
    ])
    def test_rejects_invalid(self, text):
        with pytest.raises(JudgmentParseError):
            parse_rankings(text, 3)

    def test_extract_json_none(self):
        assert extract_json("no braces here") is None


class TestAggregate:
    """Tests for de-anonymization and averaging."""

    def test_maps_labels_back_to_candidates(self):
        candidates = _candidates(3)
        # Shuffled: A -> candidate 2, B -> candidate 0, C -> candidate 1
        entries = [
            AnonymizedEntry(label="A", content=candidates[2].content, original_index=2),
            AnonymizedEntry(label="B", content=candidates[0].content, original_index=0),
            AnonymizedEntry(label="C", content=candidates[1].content, original_index=1),
        ]
        judgments = [
            Judgment(judge_id="j1", model_name="J1", rankings=[3, 1, 2]),
            Judgment(judge_id="j2", model_name="J2", rankings=[3, 2, 1]),
        ]

        results = aggregate(candidates, entries, judgments)

        assert [r.original_index for r in results] == [0, 1, 2]
        assert [r.average_rank for r in results] == [1.5, 1.5, 3.0]
        assert [r.place for r in results] == [1, 2, 3]

    def test_ties_keep_original_order(self):
        candidates = _candidates(4)
        entries = anonymize(candidates, random.Random(3))
        judgments = [Judgment(judge_id="j", model_name="J", rankings=[2, 2, 2, 2])]

        results = aggregate(candidates, entries, judgments)

        assert [r.original_index for r in results] == [0, 1, 2, 3]


class TestPeerReviewEngine:
    """Tests for full peer-review rounds."""

    def test_roster_size_limits(self, gateway):
        with pytest.raises(ValueError):
            PeerReviewEngine(gateway, roster=[])
        with pytest.raises(ValueError):
            PeerReviewEngine(gateway, roster=list(DEFAULT_ROSTER) * 2)

    @pytest.mark.asyncio
    async def test_compete_all_ranks_by_quality(self):
        provider = ScriptedProvider(default=honest_judge)

        report = await _engine(provider).compete_all("Which is best?", _candidates())

        assert report.mode == CompetitionMode.ALL
        assert [r.content for r in report.results] == [f"quality {i}" for i in range(1, K + 1)]
        assert [r.average_rank for r in report.results] == [float(i) for i in range(1, K + 1)]
        assert report.original_placement is None
        assert report.better_responses == []
        assert report.chairman_synthesis == "Synthesized answer [Claude Sonnet 4.5]"
        assert not any(j.failed for j in report.judgments)

    @pytest.mark.asyncio
    async def test_every_roster_member_judges(self):
        provider = ScriptedProvider(default=honest_judge)

        await _engine(provider).compete_all("Q", _candidates())

        judge_calls = [
            model for model, messages, _ in provider.calls
            if messages[-1].content.startswith("You are a judge")
        ]
        assert len(judge_calls) == K
        assert len(set(judge_calls)) == K

    @pytest.mark.asyncio
    async def test_result_independent_of_shuffle(self):
        for seed in (1, 2, 3):
            provider = ScriptedProvider(default=honest_judge)
            report = await _engine(provider, seed=seed).compete_all("Q", _candidates())
            assert report.results[0].content == "quality 1"

    @pytest.mark.asyncio
    async def test_all_judges_fail(self):
        def garbage(model, messages):
            if messages[-1].content.startswith("You are the Chairman"):
                return "summary"
            return "I cannot rank these."

        provider = ScriptedProvider(default=garbage)

        report = await _engine(provider).compete_all("Q", _candidates())

        assert all(j.failed for j in report.judgments)
        assert all(j.rankings == [neutral_rank(K)] * K for j in report.judgments)
        assert [r.model_id for r in report.results] == [b.id for b in DEFAULT_ROSTER]
        assert all(r.average_rank == float(neutral_rank(K)) for r in report.results)

    @pytest.mark.asyncio
    async def test_failed_judge_contributes_neutral_rank(self):
        broken_judge = DEFAULT_ROSTER[3]

        def mostly_honest(model, messages):
            prompt = messages[-1].content
            if prompt.startswith("You are a judge") and model == "deepseek-chat":
                raise BackendError("judge down", status_code=503)
            return honest_judge(model, messages)

        provider = ScriptedProvider(default=mostly_honest)

        report = await _engine(provider).compete_all("Q", _candidates())

        failed = [j for j in report.judgments if j.failed]
        assert [j.judge_id for j in failed] == [broken_judge.id]
        best = report.results[0]
        assert best.content == "quality 1"
        # seven judges give 1, the failed one gives the neutral 4
        assert best.average_rank == round_rank((7 * 1 + 4) / 8)
        for r in report.results:
            assert 1 <= r.average_rank <= K

    @pytest.mark.asyncio
    async def test_judge_sdk_error_becomes_neutral_judgment(self):
        native = MODEL_REGISTRY["moonshotai/kimi-k2"].native_name
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")

        def sdk_failure(model, messages):
            if messages[-1].content.startswith("You are a judge") and model == native:
                raise openai.APIError("stream error from upstream", request, body=None)
            return honest_judge(model, messages)

        provider = ScriptedProvider(default=sdk_failure)

        report = await _engine(provider).compete_all("Q", _candidates())

        failed = [j for j in report.judgments if j.failed]
        assert [j.judge_id for j in failed] == ["moonshotai/kimi-k2"]
        assert failed[0].rankings == [neutral_rank(K)] * K
        assert "stream error from upstream" in failed[0].error
        assert len(report.judgments) == K
        assert len(report.results) == K
        assert report.results[0].content == "quality 1"
        assert report.chairman_synthesis is not None

    @pytest.mark.asyncio
    async def test_unknown_judge_fails_before_dispatch(self):
        provider = ScriptedProvider(default=honest_judge)
        roster = [*DEFAULT_ROSTER[:-1], BackendDescriptor(
            id="nobody/nothing", display_name="Nobody", adapter_kind=AdapterKind.GROQ,
        )]
        engine = PeerReviewEngine(make_gateway(provider), roster=roster, rng=random.Random(7))

        with pytest.raises(UnknownModelError):
            await engine.compete_all("Q", _candidates())
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_wrong_candidate_count(self):
        provider = ScriptedProvider(default=honest_judge)
        with pytest.raises(ValueError):
            await _engine(provider).compete_all("Q", _candidates(3))

    @pytest.mark.asyncio
    async def test_synthesis_failure_keeps_ranking(self):
        def no_chairman(model, messages):
            if messages[-1].content.startswith("You are the Chairman"):
                raise BackendError("chairman down", status_code=500)
            return honest_judge(model, messages)

        provider = ScriptedProvider(default=no_chairman)

        report = await _engine(provider).compete_all("Q", _candidates())

        assert report.chairman_synthesis is None
        assert len(report.results) == K

    @pytest.mark.asyncio
    async def test_unexpected_synthesis_error_keeps_ranking(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")

        def broken_chairman(model, messages):
            if messages[-1].content.startswith("You are the Chairman"):
                raise anthropic.APIError("overloaded", request, body=None)
            return honest_judge(model, messages)

        provider = ScriptedProvider(default=broken_chairman)

        report = await _engine(provider).compete_all("Q", _candidates())

        assert report.chairman_synthesis is None
        assert report.results[0].content == "quality 1"
        assert not any(j.failed for j in report.judgments)

    @pytest.mark.asyncio
    async def test_compete_single_places_original(self):
        quality = {b.id: i + 1 for i, b in enumerate(DEFAULT_ROSTER)}
        natives = {MODEL_REGISTRY[b.id].native_name: b.id for b in DEFAULT_ROSTER}

        def council(model, messages):
            prompt = messages[-1].content
            if prompt.startswith(("You are a judge", "You are the Chairman")):
                return honest_judge(model, messages)
            return f"quality {quality[natives[model]]}"

        provider = ScriptedProvider(default=council)

        report = await _engine(provider).compete_single(
            [Message.user("What is entropy?")], "DeepSeek-V3"
        )

        assert report.mode == CompetitionMode.SINGLE
        assert report.original_model == "DeepSeek-V3"
        assert report.original_placement == 4
        assert [r.content for r in report.better_responses] == ["quality 1", "quality 2", "quality 3"]
        original = next(r for r in report.results if r.is_original)
        assert original.model_id == "deepseek/deepseek-chat"
        assert original.cost_stats is not None

    @pytest.mark.asyncio
    async def test_compete_single_keeps_failed_slots(self):
        def council(model, messages):
            prompt = messages[-1].content
            if prompt.startswith("You are a judge"):
                return "unparseable"
            if prompt.startswith("You are the Chairman"):
                return "summary"
            if model == "MiniMax-M2":
                raise BackendError("MiniMax API error: 500 - boom", status_code=500)
            return "an answer"

        provider = ScriptedProvider(default=council)

        report = await _engine(provider).compete_single([Message.user("Q")], "minimax/minimax-m2")

        assert len(report.results) == K
        failed = next(r for r in report.results if r.model_id == "minimax/minimax-m2")
        assert failed.content == "Error: MiniMax API error: 500 - boom"
        assert failed.cost_stats is None
        assert failed.is_original
        assert report.original_placement == failed.place

    @pytest.mark.asyncio
    async def test_compete_single_unknown_original(self):
        provider = ScriptedProvider(default=honest_judge)

        report = await _engine(provider).compete_single([Message.user("Q")], "nobody/nothing")

        assert report.original_placement is None
        assert not any(r.is_original for r in report.results)


class TestChairmanSynthesizer:
    """Tests for the chairman call."""

    def test_prompt_excludes_failed_critiques(self):
        candidates = _candidates(2)
        entries = anonymize(candidates, random.Random(0))
        judgments = [
            Judgment(judge_id="a", model_name="Good Judge", rankings=[1, 2], reasoning="sharp"),
            Judgment(judge_id="b", model_name="Bad Judge", rankings=[1, 1], failed=True, error="x"),
        ]
        ranked = aggregate(candidates, entries, judgments)

        prompt = build_synthesis_prompt("Q", ranked, judgments)

        assert "Good Judge: sharp" in prompt
        assert "Bad Judge" not in prompt
        assert "[Model Name]" in prompt

    @pytest.mark.asyncio
    async def test_uses_chairman_model(self):
        provider = ScriptedProvider(default="merged")
        gateway = make_gateway(provider)

        text = await ChairmanSynthesizer(gateway).synthesize("Q", [], [])

        assert text == "merged"
        assert provider.calls[0][0] == "claude-sonnet-4-5-20250929"
