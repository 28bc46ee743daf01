"""
Kindred — Discovery Pipeline

Produces the capped, filtered, ranked candidate list for a requester:

  1. Exclusion set: self, passed users, matched users (either direction).
     Liked users stay visible and are flagged ``is_liked``.
  2. Embedding branch (requester has a profile embedding): pgvector cosine
     distance under the hard filters (age range, gender list, onboarding
     complete, embedding present), similarity descending then id, capped.
  3. Legacy branch (no embedding): same hard filters ordered by
     ``created_at`` then id, capped.  No compatibility is computed and
     ``has_profile_embedding`` is False.
  4. Embedding branch only: batch compatibility (cache first, misses scored
     concurrently and stored) before the response is built.
  5. Haversine post-filter against the maximum distance.  When either side
     has no GPS fix the candidate is kept with an unknown distance.
  6. Signed photo URLs and ``is_liked`` attached per candidate.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Callable

import structlog
from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import InvalidFilterError
from app.models.match import Like, Match, Pass
from app.models.user import User
from app.schemas.matching import DiscoverFilters
from app.services.compatibility_scorer import CompatibilityScores
from app.services.compatibility_service import CompatibilityService
from app.services.photo_urls import PhotoURL, default_url_signer, sign_photos
from app.utils.gender import normalize_gender_list
from app.utils.geo import haversine_km

logger = structlog.get_logger("kindred.discovery_service")


# ──────────────────────────────────────────────────────────────────────────────
# Result types
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class ScoredCandidate:
    user: User
    is_liked: bool = False
    embedding_score: float | None = None
    scores: CompatibilityScores | None = None
    distance_km: int | None = None
    photos: list[PhotoURL] = field(default_factory=list)

    @property
    def has_compatibility(self) -> bool:
        return self.scores is not None


@dataclass
class DiscoveryResult:
    has_profile_embedding: bool
    candidates: list[ScoredCandidate]


@dataclass(frozen=True)
class _Criteria:
    age_min: int | None
    age_max: int | None
    genders: list[str]
    max_distance_km: int


# ──────────────────────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────────────────────

class DiscoveryService:
    """Discovery orchestration over the profile store and compatibility.

    Parameters
    ----------
    compatibility_service:
        Cache-first compatibility for the embedding branch.
    url_signer:
        Callable turning a photo storage path into a time-limited URL.
        Defaults to GCS V4 signed URLs.
    candidate_limit:
        Maximum candidates returned.  Defaults to
        ``DISCOVERY_CANDIDATE_LIMIT`` (20).
    """

    def __init__(
        self,
        compatibility_service: CompatibilityService | None = None,
        url_signer: Callable[[str], str] | None = None,
        candidate_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self.compatibility_service = (
            compatibility_service
            if compatibility_service is not None
            else CompatibilityService()
        )
        self.url_signer = url_signer or default_url_signer
        self.candidate_limit = candidate_limit or settings.DISCOVERY_CANDIDATE_LIMIT
        self.default_max_distance_km = settings.DISCOVERY_DEFAULT_MAX_DISTANCE_KM

        logger.info(
            "discovery_service_initialised",
            candidate_limit=self.candidate_limit,
            default_max_distance_km=self.default_max_distance_km,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def discover(
        self,
        user: User,
        db_session: AsyncSession,
        filters: DiscoverFilters | None = None,
    ) -> DiscoveryResult:
        """Return at most ``candidate_limit`` scored candidates for ``user``.

        Parameters
        ----------
        user:
            The requesting user.
        db_session:
            Active SQLAlchemy async session.
        filters:
            Optional overrides of the stored age range, gender list and
            maximum distance.

        Raises
        ------
        InvalidFilterError
            If the effective age range is inverted.
        """
        log = logger.bind(user_id=str(user.id))
        criteria = self._resolve_criteria(user, filters)

        excluded_ids = await self._excluded_ids(user.id, db_session)
        liked_ids = await self._liked_ids(user.id, db_session)
        log.info(
            "discovery_exclusions_built",
            excluded=len(excluded_ids),
            liked=len(liked_ids),
            age_min=criteria.age_min,
            age_max=criteria.age_max,
            genders=criteria.genders,
        )

        has_embedding = user.profile_embedding is not None

        if has_embedding:
            ranked = await self._find_candidates_by_embedding(
                user, criteria, excluded_ids, db_session
            )
            ranked = ranked[: self.candidate_limit]
            candidates = [
                ScoredCandidate(
                    user=candidate,
                    is_liked=candidate.id in liked_ids,
                    embedding_score=similarity,
                )
                for candidate, similarity in ranked
            ]
            log.info("discovery_embedding_candidates", count=len(candidates))

            scores = await self.compatibility_service.calculate_batch(
                user,
                [c.user for c in candidates],
                db_session,
                embedding_scores={c.user.id: c.embedding_score for c in candidates},
            )
            for candidate in candidates:
                candidate.scores = scores.get(candidate.user.id)
        else:
            log.warning("discovery_legacy_branch", reason="no_profile_embedding")
            rows = await self._find_candidates_legacy(criteria, excluded_ids, db_session)
            candidates = [
                ScoredCandidate(user=candidate, is_liked=candidate.id in liked_ids)
                for candidate in rows[: self.candidate_limit]
            ]
            log.info("discovery_legacy_candidates", count=len(candidates))

        candidates = self._filter_by_distance(user, candidates, criteria.max_distance_km)

        for candidate in candidates:
            candidate.photos = sign_photos(candidate.user, self.url_signer)

        log.info(
            "discovery_complete",
            has_profile_embedding=has_embedding,
            returned=len(candidates),
        )
        return DiscoveryResult(has_profile_embedding=has_embedding, candidates=candidates)

    # ── Criteria + exclusions ─────────────────────────────────────────────

    def _resolve_criteria(
        self,
        user: User,
        filters: DiscoverFilters | None,
    ) -> _Criteria:
        filters = filters or DiscoverFilters()

        age_min = filters.age_min if filters.age_min is not None else user.preference_age_min
        age_max = filters.age_max if filters.age_max is not None else user.preference_age_max
        if age_min is not None and age_max is not None and age_min > age_max:
            raise InvalidFilterError(
                f"age_min ({age_min}) must not exceed age_max ({age_max})"
            )

        if filters.genders is not None:
            genders = list(filters.genders)
        else:
            genders = normalize_gender_list(user.preference_genders)

        max_distance = (
            filters.max_distance_km
            or user.preference_distance_km
            or self.default_max_distance_km
        )
        return _Criteria(
            age_min=age_min,
            age_max=age_max,
            genders=genders,
            max_distance_km=max_distance,
        )

    async def _excluded_ids(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> set[uuid.UUID]:
        passed = await db_session.execute(
            select(Pass.passed_user_id).where(Pass.user_id == user_id)
        )
        matches = await db_session.execute(
            select(Match.user_id, Match.matched_user_id).where(
                or_(Match.user_id == user_id, Match.matched_user_id == user_id)
            )
        )

        excluded = {user_id}
        excluded.update(passed.scalars().all())
        for a, b in matches.all():
            excluded.add(b if a == user_id else a)
        return excluded

    async def _liked_ids(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> set[uuid.UUID]:
        result = await db_session.execute(
            select(Like.liked_user_id).where(Like.user_id == user_id)
        )
        return set(result.scalars().all())

    @staticmethod
    def _hard_filters(criteria: _Criteria, excluded_ids: set[uuid.UUID]) -> list:
        clauses = [
            User.id.not_in(list(excluded_ids)),
            User.onboarding_complete.is_(True),
        ]
        if criteria.age_min is not None:
            clauses.append(User.age >= criteria.age_min)
        if criteria.age_max is not None:
            clauses.append(User.age <= criteria.age_max)
        if criteria.genders:
            clauses.append(User.gender.in_(criteria.genders))
        return clauses

    # ── Candidate queries ─────────────────────────────────────────────────

    def _embedding_query(
        self,
        user: User,
        criteria: _Criteria,
        excluded_ids: set[uuid.UUID],
    ) -> Select:
        distance = User.profile_embedding.cosine_distance(user.profile_embedding)
        return (
            select(User, distance.label("distance"))
            .where(
                *self._hard_filters(criteria, excluded_ids),
                User.profile_embedding.is_not(None),
            )
            .order_by(distance.asc(), User.id.asc())
            .limit(self.candidate_limit)
        )

    async def _find_candidates_by_embedding(
        self,
        user: User,
        criteria: _Criteria,
        excluded_ids: set[uuid.UUID],
        db_session: AsyncSession,
    ) -> list[tuple[User, float]]:
        """pgvector query returning ``(candidate, cosine_similarity)`` pairs."""
        stmt = self._embedding_query(user, criteria, excluded_ids)
        rows = (await db_session.execute(stmt)).all()
        return [(candidate, 1.0 - float(dist)) for candidate, dist in rows]

    async def _find_candidates_legacy(
        self,
        criteria: _Criteria,
        excluded_ids: set[uuid.UUID],
        db_session: AsyncSession,
    ) -> list[User]:
        stmt = (
            select(User)
            .where(*self._hard_filters(criteria, excluded_ids))
            .order_by(User.created_at.asc(), User.id.asc())
            .limit(self.candidate_limit)
        )
        return list((await db_session.execute(stmt)).scalars().all())

    # ── Post-processing ───────────────────────────────────────────────────

    def _filter_by_distance(
        self,
        user: User,
        candidates: list[ScoredCandidate],
        max_distance_km: int,
    ) -> list[ScoredCandidate]:
        if not user.has_coordinates:
            logger.info("distance_filter_skipped", user_id=str(user.id), reason="no_gps")
            return candidates

        kept: list[ScoredCandidate] = []
        for candidate in candidates:
            candidate.distance_km = haversine_km(
                user.location_latitude,
                user.location_longitude,
                candidate.user.location_latitude,
                candidate.user.location_longitude,
            )
            if candidate.distance_km is None or candidate.distance_km <= max_distance_km:
                kept.append(candidate)

        logger.info(
            "distance_filter_applied",
            user_id=str(user.id),
            max_distance_km=max_distance_km,
            kept=len(kept),
            dropped=len(candidates) - len(kept),
        )
        return kept

