"""Unit tests for CompatibilityScorer — parsing, clamping and fallbacks."""
import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from google.api_core.exceptions import ResourceExhausted

from app.exceptions import LLMError, LLMQuotaExceededError
from app.services.compatibility_scorer import (
    CompatibilityScorer,
    CompatibilityScores,
    ScoringPolicy,
    format_profile_for_llm,
)


def _profile(name, **overrides):
    fields = {
        "id": name.lower(),
        "first_name": name,
        "name": name,
        "age": 29,
        "gender": "female",
        "sexual_orientation": "heterosexual",
        "bio": "Loves hiking.",
        "interests": ["hiking", "jazz"],
        "search_objectives": ["serious"],
        "ai_profile": {"personality": "Warm", "love": "Quality time"},
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def llm():
    client = AsyncMock()
    client.complete = AsyncMock()
    return client


@pytest.fixture
def scorer(llm):
    return CompatibilityScorer(llm_client=llm, timeout_seconds=1.0)


class TestScoreParsing:

    @pytest.mark.asyncio
    async def test_valid_json(self, scorer, llm):
        llm.complete.return_value = json.dumps(
            {"global": 85, "love": 82, "friendship": 88, "carnal": 79, "insight": "Both love jazz."}
        )

        scores = await scorer.score(_profile("Ana"), _profile("Ben", gender="male"))

        assert scores == CompatibilityScores(85, 82, 88, 79, "Both love jazz.")
        _, kwargs = llm.complete.call_args
        assert kwargs["json_mode"] is True

    @pytest.mark.asyncio
    async def test_fenced_json(self, scorer, llm):
        llm.complete.return_value = (
            "Here you go:\n```json\n"
            '{"global": 71, "love": 66, "friendship": 80, "carnal": 58, "insight": "Calm pair."}\n'
            "```"
        )

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert (scores.global_score, scores.love, scores.friendship, scores.carnal) == (71, 66, 80, 58)

    @pytest.mark.asyncio
    async def test_scores_clamped_and_rounded(self, scorer, llm):
        llm.complete.return_value = json.dumps(
            {"global": 140, "love": -12, "friendship": "77.6", "carnal": 49.4, "insight": "x"}
        )

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert (scores.global_score, scores.love, scores.friendship, scores.carnal) == (100, 0, 78, 49)
        assert all(isinstance(v, int) for v in (scores.global_score, scores.love, scores.friendship, scores.carnal))

    @pytest.mark.asyncio
    async def test_missing_key_takes_optimistic_path(self, scorer, llm):
        llm.complete.return_value = json.dumps({"global": 80, "love": 70, "insight": "partial"})

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert scores == scorer.policy.optimistic


class TestFallbacks:

    @pytest.mark.asyncio
    async def test_quota_error_gives_neutral_quadruple(self, scorer, llm):
        llm.complete.side_effect = LLMQuotaExceededError("402 Payment Required")

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert (scores.global_score, scores.love, scores.friendship, scores.carnal) == (50, 50, 50, 50)
        assert scores.insight

    @pytest.mark.asyncio
    async def test_payment_message_classified_as_quota(self, scorer, llm):
        llm.complete.side_effect = RuntimeError("Billing account has insufficient credits")

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert scores.global_score == 50

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_treated_as_payment_failure(self, scorer, llm):
        llm.complete.side_effect = ResourceExhausted(
            "Resource has been exhausted (e.g. check quota)."
        )

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert (scores.global_score, scores.love, scores.friendship, scores.carnal) == (70, 65, 70, 60)

    @pytest.mark.asyncio
    async def test_generic_error_gives_optimistic_quadruple(self, scorer, llm):
        llm.complete.side_effect = LLMError("All models in the chain failed")

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert (scores.global_score, scores.love, scores.friendship, scores.carnal) == (70, 65, 70, 60)
        assert scores.insight

    @pytest.mark.asyncio
    async def test_malformed_output_gives_optimistic_quadruple(self, scorer, llm):
        llm.complete.return_value = "I cannot rate these people."

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert scores.global_score == 70

    @pytest.mark.asyncio
    async def test_timeout_gives_optimistic_quadruple(self, llm):
        async def slow(*args, **kwargs):
            await asyncio.sleep(5)
            return "{}"

        llm.complete.side_effect = slow
        scorer = CompatibilityScorer(llm_client=llm, timeout_seconds=0.05)

        scores = await scorer.score(_profile("Ana"), _profile("Ben"))

        assert scores == scorer.policy.optimistic

    @pytest.mark.asyncio
    async def test_injected_policy_overrides_defaults(self, llm):
        policy = ScoringPolicy(
            neutral=CompatibilityScores(10, 11, 12, 13, "neutral"),
            optimistic=CompatibilityScores(90, 91, 92, 93, "optimistic"),
        )
        scorer = CompatibilityScorer(llm_client=llm, policy=policy)
        llm.complete.side_effect = LLMQuotaExceededError("quota exceeded")

        assert await scorer.score(_profile("Ana"), _profile("Ben")) == policy.neutral


class TestProfileFormatting:

    def test_includes_relevant_fields(self):
        text = format_profile_for_llm(_profile("Ana"))
        assert "Ana, 29 years old" in text
        assert "Interests: hiking, jazz" in text
        assert "- Personality: Warm" in text
        assert "- Love: Quality time" in text

    def test_sparse_profile(self):
        text = format_profile_for_llm(SimpleNamespace(first_name=None, name=None, age=None))
        assert "User, unknown years old" in text
        assert "Gender: unspecified" in text
