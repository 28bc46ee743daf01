"""
Kindred — Compatibility Cache

Persists LLM-computed compatibility for ordered (user, target) pairs in the
``compatibility_cache`` table.  An entry is a hit only when both stored
profile fingerprints equal the current ones and it has not expired, so any
profile drift is an ordinary miss.

Write policy:
  - Rows are never updated in place.  ``store`` removes a stale row for the
    pair (fingerprint drift or expiry) and inserts a fresh one.
  - Concurrent writers for the same pair race on the unique constraint.  The
    insert runs inside a SAVEPOINT; the loser re-reads and returns the
    winner's row.  No lock is taken, so duplicate LLM work is tolerated.

Invalidation is explicit: ``invalidate_for_user`` is called synchronously by
the profile-update and account-deletion paths, and ``sweep_expired`` by an
external cron trigger.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Mapping

import structlog
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import utcnow
from app.models.compatibility import CompatibilityCacheEntry

if TYPE_CHECKING:
    from app.services.compatibility_scorer import CompatibilityScores

logger = structlog.get_logger("kindred.compatibility_cache")


class CompatibilityCache:
    """Directional, fingerprint-keyed cache of pairwise compatibility.

    Parameters
    ----------
    ttl_days:
        Lifetime of a fresh entry.  Defaults to
        ``COMPATIBILITY_CACHE_TTL_DAYS`` (30).
    clock:
        Callable returning the current timezone-aware UTC time.  Tests
        inject a fixed clock to exercise expiry deterministically.
    """

    def __init__(
        self,
        ttl_days: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.ttl = timedelta(
            days=ttl_days if ttl_days is not None
            else settings.COMPATIBILITY_CACHE_TTL_DAYS
        )
        self._clock = clock

        logger.info("compatibility_cache_initialised", ttl_days=self.ttl.days)

    # ── Query helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _pair_clause(user_id: uuid.UUID, target_user_id: uuid.UUID):
        return and_(
            CompatibilityCacheEntry.user_id == user_id,
            CompatibilityCacheEntry.target_user_id == target_user_id,
        )

    @staticmethod
    def _not_expired_clause(now: datetime):
        return or_(
            CompatibilityCacheEntry.expires_at.is_(None),
            CompatibilityCacheEntry.expires_at > now,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def lookup(
        self,
        user_id: uuid.UUID,
        target_user_id: uuid.UUID,
        user_digest: str,
        target_digest: str,
        db_session: AsyncSession,
    ) -> CompatibilityCacheEntry | None:
        """Return the cached entry for the ordered pair, or ``None`` on a
        miss (absent, fingerprint mismatch or expired).
        """
        stmt = select(CompatibilityCacheEntry).where(
            self._pair_clause(user_id, target_user_id),
            CompatibilityCacheEntry.user_profile_hash == user_digest,
            CompatibilityCacheEntry.target_profile_hash == target_digest,
            self._not_expired_clause(self._clock()),
        )
        entry = (await db_session.execute(stmt)).scalar_one_or_none()

        if entry is None:
            logger.debug("cache_miss", user_id=str(user_id), target=str(target_user_id))
        else:
            logger.debug("cache_hit", user_id=str(user_id), target=str(target_user_id))
        return entry

    async def batch_lookup(
        self,
        user_id: uuid.UUID,
        target_digests: Mapping[uuid.UUID, str],
        user_digest: str,
        db_session: AsyncSession,
    ) -> dict[uuid.UUID, CompatibilityCacheEntry]:
        """Single round-trip lookup for many targets sharing one source.

        Parameters
        ----------
        user_id:
            The requesting (source) user.
        target_digests:
            Mapping of target user id to that target's current fingerprint,
            computed once by the caller.
        user_digest:
            The source user's current fingerprint.

        Returns
        -------
        dict
            Target id to entry, for hits only.  Targets absent from the
            result are misses.
        """
        if not target_digests:
            return {}

        stmt = select(CompatibilityCacheEntry).where(
            CompatibilityCacheEntry.user_id == user_id,
            CompatibilityCacheEntry.target_user_id.in_(list(target_digests)),
            CompatibilityCacheEntry.user_profile_hash == user_digest,
            self._not_expired_clause(self._clock()),
        )
        rows = (await db_session.execute(stmt)).scalars().all()

        hits = {
            row.target_user_id: row
            for row in rows
            if target_digests.get(row.target_user_id) == row.target_profile_hash
        }

        logger.info(
            "cache_batch_lookup",
            user_id=str(user_id),
            requested=len(target_digests),
            hits=len(hits),
            misses=len(target_digests) - len(hits),
        )
        return hits

    async def store(
        self,
        user_id: uuid.UUID,
        target_user_id: uuid.UUID,
        scores: "CompatibilityScores",
        user_digest: str,
        target_digest: str,
        db_session: AsyncSession,
        embedding_score: float | None = None,
    ) -> CompatibilityCacheEntry:
        """Insert a fresh entry expiring ``ttl`` from now.

        If another writer already holds a valid row for the pair, that row
        is returned unchanged.
        """
        now = self._clock()
        log = logger.bind(user_id=str(user_id), target=str(target_user_id))

        stale = await db_session.execute(
            delete(CompatibilityCacheEntry).where(
                self._pair_clause(user_id, target_user_id),
                or_(
                    CompatibilityCacheEntry.user_profile_hash != user_digest,
                    CompatibilityCacheEntry.target_profile_hash != target_digest,
                    CompatibilityCacheEntry.expires_at <= now,
                ),
            ).execution_options(synchronize_session=False)
        )
        if stale.rowcount:
            log.info("cache_stale_entry_replaced", removed=stale.rowcount)

        if embedding_score is None:
            embedding_score = scores.embedding_score

        entry = CompatibilityCacheEntry(
            user_id=user_id,
            target_user_id=target_user_id,
            score_global=scores.global_score,
            score_love=scores.love,
            score_friendship=scores.friendship,
            score_carnal=scores.carnal,
            compatibility_insight=scores.insight,
            user_profile_hash=user_digest,
            target_profile_hash=target_digest,
            embedding_score=embedding_score,
            computed_at=now,
            expires_at=now + self.ttl,
        )

        try:
            async with db_session.begin_nested():
                db_session.add(entry)
        except IntegrityError:
            existing = (
                await db_session.execute(
                    select(CompatibilityCacheEntry).where(
                        self._pair_clause(user_id, target_user_id)
                    )
                )
            ).scalar_one_or_none()
            if existing is None:
                raise
            log.info("cache_store_conflict_resolved", entry_id=str(existing.id))
            return existing

        log.debug("cache_stored", score_global=entry.score_global)
        return entry

    async def invalidate_for_user(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        """Delete every entry where ``user_id`` is the source or the target."""
        result = await db_session.execute(
            delete(CompatibilityCacheEntry).where(
                or_(
                    CompatibilityCacheEntry.user_id == user_id,
                    CompatibilityCacheEntry.target_user_id == user_id,
                )
            ).execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        logger.info("cache_invalidated_for_user", user_id=str(user_id), deleted=count)
        return count

    async def sweep_expired(self, db_session: AsyncSession) -> int:
        """Delete all entries whose expiry has passed."""
        result = await db_session.execute(
            delete(CompatibilityCacheEntry).where(
                CompatibilityCacheEntry.expires_at.is_not(None),
                CompatibilityCacheEntry.expires_at <= self._clock(),
            ).execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        logger.info("cache_expired_swept", deleted=count)
        return count

    async def stats(self, db_session: AsyncSession) -> dict:
        """Return entry count, expired count and computed_at bounds."""
        now = self._clock()
        total, oldest, newest = (
            await db_session.execute(
                select(
                    func.count(CompatibilityCacheEntry.id),
                    func.min(CompatibilityCacheEntry.computed_at),
                    func.max(CompatibilityCacheEntry.computed_at),
                )
            )
        ).one()
        expired = (
            await db_session.execute(
                select(func.count(CompatibilityCacheEntry.id)).where(
                    CompatibilityCacheEntry.expires_at.is_not(None),
                    CompatibilityCacheEntry.expires_at <= now,
                )
            )
        ).scalar_one()

        return {
            "total_entries": total,
            "expired_entries": expired,
            "oldest_entry": oldest,
            "newest_entry": newest,
        }
