"""Tests for CompatibilityCache against an SQLite-backed session."""
import asyncio
import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.compatibility import CompatibilityCacheEntry
from app.services.compatibility_cache import CompatibilityCache
from app.services.compatibility_scorer import CompatibilityScores

DIGEST_A = "a" * 64
DIGEST_B = "b" * 64
DIGEST_C = "c" * 64


def _scores(global_score=82, love=78, friendship=85, carnal=74, insight="Shared love of hiking."):
    return CompatibilityScores(
        global_score=global_score,
        love=love,
        friendship=friendship,
        carnal=carnal,
        insight=insight,
    )


async def _row_count(db_session, user_id, target_id) -> int:
    result = await db_session.execute(
        select(func.count(CompatibilityCacheEntry.id)).where(
            CompatibilityCacheEntry.user_id == user_id,
            CompatibilityCacheEntry.target_user_id == target_id,
        )
    )
    return result.scalar_one()


@pytest.fixture
def cache(clock):
    return CompatibilityCache(ttl_days=30, clock=clock)


@pytest_asyncio.fixture
async def pair(user_factory):
    a = await user_factory()
    b = await user_factory(gender="male")
    return a, b


class TestLookup:

    @pytest.mark.asyncio
    async def test_hit_with_matching_digests(self, cache, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)

        entry = await cache.lookup(a.id, b.id, DIGEST_A, DIGEST_B, db_session)

        assert entry is not None
        assert entry.score_global == 82
        assert entry.compatibility_insight == "Shared love of hiking."

    @pytest.mark.asyncio
    async def test_miss_when_user_digest_differs(self, cache, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)

        assert await cache.lookup(a.id, b.id, DIGEST_C, DIGEST_B, db_session) is None

    @pytest.mark.asyncio
    async def test_miss_when_target_digest_differs(self, cache, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)

        assert await cache.lookup(a.id, b.id, DIGEST_A, DIGEST_C, db_session) is None

    @pytest.mark.asyncio
    async def test_miss_after_expiry(self, cache, clock, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)

        clock.advance(days=30, seconds=1)

        assert await cache.lookup(a.id, b.id, DIGEST_A, DIGEST_B, db_session) is None

    @pytest.mark.asyncio
    async def test_hit_just_before_expiry(self, cache, clock, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)

        clock.advance(days=29, hours=23)

        assert await cache.lookup(a.id, b.id, DIGEST_A, DIGEST_B, db_session) is not None

    @pytest.mark.asyncio
    async def test_entries_are_directional(self, cache, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)

        assert await cache.lookup(b.id, a.id, DIGEST_B, DIGEST_A, db_session) is None


class TestStore:

    @pytest.mark.asyncio
    async def test_sets_expiry_from_clock(self, cache, clock, pair, db_session):
        a, b = pair
        entry = await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)

        assert entry.computed_at == clock.now
        assert entry.expires_at == clock.now + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_second_store_returns_first_row(self, cache, pair, db_session):
        """Two writers for the same pair leave exactly one row, the first."""
        a, b = pair
        first = await cache.store(a.id, b.id, _scores(global_score=82), DIGEST_A, DIGEST_B, db_session)
        second = await cache.store(a.id, b.id, _scores(global_score=40), DIGEST_A, DIGEST_B, db_session)

        assert second.id == first.id
        assert second.score_global == 82
        assert await _row_count(db_session, a.id, b.id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_writers_in_separate_sessions_keep_one_row(self, cache, engine):
        """Both writers miss, both score, then both store: the loser gets the winner's row."""
        factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
        a_id, b_id = uuid.uuid4(), uuid.uuid4()
        both_scored = asyncio.Barrier(2)
        # SQLite allows one writer at a time; the lock stands in for that.
        write_lock = asyncio.Lock()

        async def _writer(score):
            async with factory() as session:
                assert await cache.lookup(a_id, b_id, DIGEST_A, DIGEST_B, session) is None
                await session.rollback()
                await both_scored.wait()
                async with write_lock:
                    entry = await cache.store(
                        a_id, b_id, _scores(global_score=score), DIGEST_A, DIGEST_B, session
                    )
                    await session.commit()
                return entry.id, entry.score_global

        results = await asyncio.gather(_writer(82), _writer(40))

        assert results[0] == results[1]
        async with factory() as session:
            assert await _row_count(session, a_id, b_id) == 1
            stored = await cache.lookup(a_id, b_id, DIGEST_A, DIGEST_B, session)
        assert (stored.id, stored.score_global) == results[0]

    @pytest.mark.asyncio
    async def test_stale_row_is_replaced(self, cache, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(global_score=82), DIGEST_A, DIGEST_B, db_session)

        fresh = await cache.store(a.id, b.id, _scores(global_score=61), DIGEST_C, DIGEST_B, db_session)

        assert fresh.score_global == 61
        assert fresh.user_profile_hash == DIGEST_C
        assert await _row_count(db_session, a.id, b.id) == 1

    @pytest.mark.asyncio
    async def test_expired_row_is_replaced(self, cache, clock, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(global_score=82), DIGEST_A, DIGEST_B, db_session)
        clock.advance(days=31)

        fresh = await cache.store(a.id, b.id, _scores(global_score=55), DIGEST_A, DIGEST_B, db_session)

        assert fresh.score_global == 55
        assert await _row_count(db_session, a.id, b.id) == 1

    @pytest.mark.asyncio
    async def test_embedding_score_persisted(self, cache, pair, db_session):
        a, b = pair
        entry = await cache.store(
            a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session, embedding_score=0.87
        )
        assert entry.embedding_score == pytest.approx(0.87)


class TestBatchLookup:

    @pytest.mark.asyncio
    async def test_returns_hits_only(self, cache, user_factory, db_session):
        requester = await user_factory()
        t1 = await user_factory()
        t2 = await user_factory()
        t3 = await user_factory()
        await cache.store(requester.id, t1.id, _scores(global_score=90), DIGEST_A, DIGEST_B, db_session)
        await cache.store(requester.id, t2.id, _scores(global_score=60), DIGEST_A, DIGEST_B, db_session)

        hits = await cache.batch_lookup(
            requester.id,
            # t2's profile drifted since it was scored
            {t1.id: DIGEST_B, t2.id: DIGEST_C, t3.id: DIGEST_B},
            DIGEST_A,
            db_session,
        )

        assert set(hits) == {t1.id}
        assert hits[t1.id].score_global == 90

    @pytest.mark.asyncio
    async def test_requester_drift_misses_everything(self, cache, pair, db_session):
        a, b = pair
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)

        assert await cache.batch_lookup(a.id, {b.id: DIGEST_B}, DIGEST_C, db_session) == {}

    @pytest.mark.asyncio
    async def test_empty_targets(self, cache, pair, db_session):
        a, _ = pair
        assert await cache.batch_lookup(a.id, {}, DIGEST_A, db_session) == {}


class TestInvalidation:

    @pytest.mark.asyncio
    async def test_removes_both_directions(self, cache, user_factory, db_session):
        x = await user_factory()
        y = await user_factory()
        z = await user_factory()
        await cache.store(x.id, y.id, _scores(), DIGEST_A, DIGEST_B, db_session)
        await cache.store(y.id, x.id, _scores(), DIGEST_B, DIGEST_A, db_session)
        await cache.store(z.id, x.id, _scores(), DIGEST_C, DIGEST_A, db_session)
        await cache.store(y.id, z.id, _scores(), DIGEST_B, DIGEST_C, db_session)

        deleted = await cache.invalidate_for_user(x.id, db_session)

        assert deleted == 3
        remaining = await db_session.execute(
            select(func.count(CompatibilityCacheEntry.id)).where(
                or_(
                    CompatibilityCacheEntry.user_id == x.id,
                    CompatibilityCacheEntry.target_user_id == x.id,
                )
            )
        )
        assert remaining.scalar_one() == 0
        assert await _row_count(db_session, y.id, z.id) == 1

    @pytest.mark.asyncio
    async def test_no_entries_is_zero(self, cache, pair, db_session):
        a, _ = pair
        assert await cache.invalidate_for_user(a.id, db_session) == 0


class TestSweepAndStats:

    @pytest.mark.asyncio
    async def test_sweep_deletes_only_expired(self, cache, clock, user_factory, db_session):
        a = await user_factory()
        b = await user_factory()
        c = await user_factory()
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)
        clock.advance(days=20)
        await cache.store(a.id, c.id, _scores(), DIGEST_A, DIGEST_C, db_session)
        clock.advance(days=15)

        deleted = await cache.sweep_expired(db_session)

        assert deleted == 1
        assert await _row_count(db_session, a.id, b.id) == 0
        assert await _row_count(db_session, a.id, c.id) == 1

    @pytest.mark.asyncio
    async def test_stats(self, cache, clock, user_factory, db_session):
        a = await user_factory()
        b = await user_factory()
        c = await user_factory()
        await cache.store(a.id, b.id, _scores(), DIGEST_A, DIGEST_B, db_session)
        clock.advance(days=31)
        await cache.store(a.id, c.id, _scores(), DIGEST_A, DIGEST_C, db_session)

        stats = await cache.stats(db_session)

        assert stats["total_entries"] == 2
        assert stats["expired_entries"] == 1
        assert stats["oldest_entry"] < stats["newest_entry"]

    @pytest.mark.asyncio
    async def test_stats_empty(self, cache, db_session):
        stats = await cache.stats(db_session)
        assert stats["total_entries"] == 0
        assert stats["oldest_entry"] is None
