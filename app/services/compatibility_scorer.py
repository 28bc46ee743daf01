"""
Kindred — Compatibility Scorer

Asks the LLM for four integer scores (global, love, friendship, carnal) and
a short insight for an ordered pair of profiles.

The scorer never raises.  Failures map onto a ``ScoringPolicy``:

  - payment / quota failure from the provider  -> neutral quadruple
    (50/50/50/50) with a "temporarily degraded" insight
  - any other failure (timeout, network, malformed JSON)  -> optimistic
    quadruple (70/65/70/60) with an "analysis pending" insight

Both quadruples are configuration, loaded from settings by default and
overridable at construction.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Any

import structlog

from app.config import get_settings
from app.services.llm_service import LLMClient, is_quota_error, parse_json_response

logger = structlog.get_logger("kindred.compatibility_scorer")


# ──────────────────────────────────────────────────────────────────────────────
# Value types
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CompatibilityScores:
    global_score: int
    love: int
    friendship: int
    carnal: int
    insight: str
    embedding_score: float | None = None

    @classmethod
    def from_cache_entry(cls, entry: Any) -> "CompatibilityScores":
        return cls(
            global_score=entry.score_global,
            love=entry.score_love or 0,
            friendship=entry.score_friendship or 0,
            carnal=entry.score_carnal or 0,
            insight=entry.compatibility_insight or "",
            embedding_score=entry.embedding_score,
        )

    def with_embedding_score(self, embedding_score: float | None) -> "CompatibilityScores":
        return replace(self, embedding_score=embedding_score)

    def as_dict(self) -> dict:
        return {
            "global": self.global_score,
            "love": self.love,
            "friendship": self.friendship,
            "carnal": self.carnal,
            "insight": self.insight,
            "embedding_score": self.embedding_score,
        }


@dataclass(frozen=True)
class ScoringPolicy:
    """Fallback quadruples applied when the LLM cannot score a pair."""

    neutral: CompatibilityScores
    optimistic: CompatibilityScores

    @classmethod
    def from_settings(cls) -> "ScoringPolicy":
        settings = get_settings()
        return cls(
            neutral=CompatibilityScores(
                global_score=settings.NEUTRAL_SCORE_GLOBAL,
                love=settings.NEUTRAL_SCORE_LOVE,
                friendship=settings.NEUTRAL_SCORE_FRIENDSHIP,
                carnal=settings.NEUTRAL_SCORE_CARNAL,
                insight=settings.NEUTRAL_INSIGHT,
            ),
            optimistic=CompatibilityScores(
                global_score=settings.OPTIMISTIC_SCORE_GLOBAL,
                love=settings.OPTIMISTIC_SCORE_LOVE,
                friendship=settings.OPTIMISTIC_SCORE_FRIENDSHIP,
                carnal=settings.OPTIMISTIC_SCORE_CARNAL,
                insight=settings.OPTIMISTIC_INSIGHT,
            ),
        )


# ──────────────────────────────────────────────────────────────────────────────
# Prompt
# ──────────────────────────────────────────────────────────────────────────────

COMPATIBILITY_ANALYSIS_PROMPT = """You are an expert in relationship psychology and algorithmic matching for a dating application.

# USER PROFILE 1
{user1_profile}

# USER PROFILE 2
{user2_profile}

# Task
Analyse the compatibility between these two profiles on 4 dimensions:

1. **global** (0-100): overall compatibility
2. **love** (0-100): romantic relationship potential
3. **friendship** (0-100): deep friendship potential
4. **carnal** (0-100): physical and sensual affinity

# Criteria
- Values and vision of the future
- Shared interests and passions
- Communication style and humour
- Life goals and lifestyle
- Emotional depth and approach to intimacy

# Instructions
1. Identify common ground AND enriching differences.
2. Be honest: 50-60 = compatible, 70-80 = very compatible, 90+ = exceptional.
3. The insight must be concrete and personal, at most 2 short sentences,
   mentioning 1-2 specific points of compatibility.

# Response format
Reply ONLY with a valid JSON object (no markdown, no backticks):

{{"global": 85, "love": 82, "friendship": 88, "carnal": 79, "insight": "..."}}
"""

# AI profile keys in display order, with their label.
_AI_PROFILE_LABELS: tuple[tuple[str, str], ...] = (
    ("personality", "Personality"),
    ("intention", "Intention"),
    ("identity", "Identity"),
    ("friendship", "Friendship"),
    ("love", "Love"),
    ("sexuality", "Sexuality"),
)

_SCORE_KEYS: dict[str, str] = {
    "global_score": "global",
    "love": "love",
    "friendship": "friendship",
    "carnal": "carnal",
}


def format_profile_for_llm(profile: Any) -> str:
    """Render the matching-relevant fields of a profile as prompt text."""
    name = getattr(profile, "first_name", None) or getattr(profile, "name", None) or "User"
    age = getattr(profile, "age", None)
    parts = [f"**Profile: {name}, {age if age is not None else 'unknown'} years old**"]
    parts.append(f"Gender: {getattr(profile, 'gender', None) or 'unspecified'}")

    orientation = getattr(profile, "sexual_orientation", None)
    if orientation:
        parts.append(f"Sexual orientation: {orientation}")

    bio = getattr(profile, "bio", None)
    if bio:
        parts.append(f"\nBio: {bio}")

    interests = getattr(profile, "interests", None)
    if interests:
        parts.append(f"\nInterests: {', '.join(str(i) for i in interests)}")

    objectives = getattr(profile, "search_objectives", None)
    if objectives:
        parts.append(f"\nLooking for: {', '.join(str(o) for o in objectives)}")

    ai_profile = getattr(profile, "ai_profile", None)
    if ai_profile:
        parts.append("\n**AI profile**:")
        for key, label in _AI_PROFILE_LABELS:
            if ai_profile.get(key):
                parts.append(f"- {label}: {ai_profile[key]}")

    return "\n".join(parts)


def _clamp_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        raise ValueError(f"Score is not numeric: {value!r}") from None
    return max(0, min(100, score))


# ──────────────────────────────────────────────────────────────────────────────
# Scorer
# ──────────────────────────────────────────────────────────────────────────────

class CompatibilityScorer:
    """LLM-backed pairwise compatibility scoring with policy fallbacks.

    Parameters
    ----------
    llm_client:
        Object exposing ``complete(prompt, json_mode, temperature,
        max_tokens)``.  Defaults to a Gemini ``LLMClient``.
    policy:
        Fallback quadruples.  Defaults to ``ScoringPolicy.from_settings()``.
    timeout_seconds:
        Upper bound on one LLM call; exceeding it takes the optimistic path.
    """

    def __init__(
        self,
        llm_client: Any | None = None,
        policy: ScoringPolicy | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self.llm_client = llm_client if llm_client is not None else LLMClient()
        self.policy = policy if policy is not None else ScoringPolicy.from_settings()
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else settings.LLM_TIMEOUT_SECONDS
        )
        self.temperature = settings.COMPATIBILITY_TEMPERATURE
        self.max_tokens = settings.COMPATIBILITY_MAX_TOKENS

        logger.info(
            "compatibility_scorer_initialised",
            timeout_seconds=self.timeout_seconds,
        )

    async def score(self, profile_a: Any, profile_b: Any) -> CompatibilityScores:
        """Score the ordered pair ``(profile_a, profile_b)``.

        Returns
        -------
        CompatibilityScores
            Integer scores clamped to [0, 100].  Never raises.
        """
        prompt = COMPATIBILITY_ANALYSIS_PROMPT.format(
            user1_profile=format_profile_for_llm(profile_a),
            user2_profile=format_profile_for_llm(profile_b),
        )
        log = logger.bind(
            user_id=str(getattr(profile_a, "id", "")),
            target=str(getattr(profile_b, "id", "")),
        )

        try:
            raw = await asyncio.wait_for(
                self.llm_client.complete(
                    prompt,
                    json_mode=True,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout_seconds,
            )
            scores = self._parse_scores(raw)
        except asyncio.TimeoutError:
            log.warning("scorer_timeout_fallback", timeout_seconds=self.timeout_seconds)
            return self.policy.optimistic
        except Exception as exc:
            if is_quota_error(exc):
                log.error("scorer_quota_fallback", error=str(exc))
                return self.policy.neutral
            log.error("scorer_generic_fallback", error=str(exc), error_type=type(exc).__name__)
            return self.policy.optimistic

        log.info("scorer_completed", score_global=scores.global_score)
        return scores

    @staticmethod
    def _parse_scores(raw: str) -> CompatibilityScores:
        data = parse_json_response(raw)
        values = {field: _clamp_score(data[key]) for field, key in _SCORE_KEYS.items()}
        insight = data.get("insight")
        return CompatibilityScores(
            insight=str(insight).strip() if insight else "",
            **values,
        )
