"""
Kindred — Compatibility Service

Glue between the fingerprint-keyed cache and the LLM scorer.

``calculate_batch`` is the discovery hot path:
  1. fingerprint the requester once and every target once
  2. one ``batch_lookup`` round-trip for all targets
  3. score every miss concurrently (bounded by ``LLM_MAX_CONCURRENCY``)
  4. persist each fresh score, then return the merged map

Cache reads happen before scoring, and scoring finishes before any write.
Writes share the caller's session and therefore run sequentially.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Mapping, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.services.compatibility_cache import CompatibilityCache
from app.services.compatibility_scorer import CompatibilityScorer, CompatibilityScores
from app.services.profile_hash import fingerprint

logger = structlog.get_logger("kindred.compatibility_service")


class CompatibilityService:
    """Cache-first pairwise compatibility.

    Dependencies are injected at construction so tests can pass a mock
    scorer and a cache with a fixed clock.
    """

    def __init__(
        self,
        cache: CompatibilityCache | None = None,
        scorer: Any | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        settings = get_settings()
        self.cache = cache if cache is not None else CompatibilityCache()
        self.scorer = scorer if scorer is not None else CompatibilityScorer()
        self.max_concurrency = max_concurrency or settings.LLM_MAX_CONCURRENCY
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

        logger.info(
            "compatibility_service_initialised",
            max_concurrency=self.max_concurrency,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def get_or_calculate(
        self,
        user: Any,
        target: Any,
        db_session: AsyncSession,
        embedding_score: float | None = None,
    ) -> CompatibilityScores:
        """Return cached scores for ``(user, target)`` or compute and store them."""
        user_digest = fingerprint(user)
        target_digest = fingerprint(target)

        entry = await self.cache.lookup(
            user.id, target.id, user_digest, target_digest, db_session
        )
        if entry is not None:
            return CompatibilityScores.from_cache_entry(entry)

        scores = (await self._score(user, target)).with_embedding_score(embedding_score)
        stored = await self.cache.store(
            user.id, target.id, scores, user_digest, target_digest, db_session
        )
        return CompatibilityScores.from_cache_entry(stored)

    async def calculate_batch(
        self,
        user: Any,
        targets: Sequence[Any],
        db_session: AsyncSession,
        embedding_scores: Mapping[uuid.UUID, float] | None = None,
    ) -> dict[uuid.UUID, CompatibilityScores]:
        """Compatibility for many targets with a single cache round-trip.

        Parameters
        ----------
        user:
            The requesting user (cache source).
        targets:
            Candidate users.
        db_session:
            Active SQLAlchemy async session.
        embedding_scores:
            Optional target id to cosine similarity, stored with fresh
            entries.

        Returns
        -------
        dict
            Target id to scores, one entry per target.
        """
        if not targets:
            return {}

        embedding_scores = embedding_scores or {}
        user_digest = fingerprint(user)
        target_digests = {target.id: fingerprint(target) for target in targets}

        hits = await self.cache.batch_lookup(
            user.id, target_digests, user_digest, db_session
        )
        results: dict[uuid.UUID, CompatibilityScores] = {
            target_id: CompatibilityScores.from_cache_entry(entry)
            for target_id, entry in hits.items()
        }
        misses = [target for target in targets if target.id not in hits]

        log = logger.bind(user_id=str(user.id))
        log.info("compatibility_batch_start", hits=len(hits), misses=len(misses))

        if not misses:
            return results

        fresh = await asyncio.gather(
            *(self._score(user, target) for target in misses)
        )

        for target, scores in zip(misses, fresh):
            scores = scores.with_embedding_score(embedding_scores.get(target.id))
            stored = await self.cache.store(
                user.id,
                target.id,
                scores,
                user_digest,
                target_digests[target.id],
                db_session,
            )
            results[target.id] = CompatibilityScores.from_cache_entry(stored)

        log.info("compatibility_batch_complete", calculated=len(misses))
        return results

    # ── Internals ─────────────────────────────────────────────────────────

    async def _score(self, user: Any, target: Any) -> CompatibilityScores:
        async with self._semaphore:
            return await self.scorer.score(user, target)
