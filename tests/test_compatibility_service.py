"""Tests for CompatibilityService — cache-first scoring."""
import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from app.models.compatibility import CompatibilityCacheEntry
from app.services.compatibility_cache import CompatibilityCache
from app.services.compatibility_scorer import CompatibilityScores
from app.services.compatibility_service import CompatibilityService

FRESH = CompatibilityScores(83, 79, 86, 72, "Both are outdoorsy and curious.")


@pytest.fixture
def scorer():
    mock = AsyncMock()
    mock.score = AsyncMock(return_value=FRESH)
    return mock


@pytest.fixture
def service(scorer, clock):
    return CompatibilityService(
        cache=CompatibilityCache(clock=clock),
        scorer=scorer,
        max_concurrency=4,
    )


class TestGetOrCalculate:

    @pytest.mark.asyncio
    async def test_round_trip_scores_once(self, service, scorer, user_factory, db_session):
        a = await user_factory()
        b = await user_factory(gender="male")

        first = await service.get_or_calculate(a, b, db_session)
        second = await service.get_or_calculate(a, b, db_session)

        assert scorer.score.await_count == 1
        assert first == second
        assert (second.global_score, second.love, second.friendship, second.carnal) == (83, 79, 86, 72)
        assert second.insight == FRESH.insight

    @pytest.mark.asyncio
    async def test_profile_change_forces_rescore(self, service, scorer, user_factory, db_session):
        a = await user_factory()
        b = await user_factory(gender="male")
        await service.get_or_calculate(a, b, db_session)

        b.bio = "Changed my mind about everything."
        await service.get_or_calculate(a, b, db_session)

        assert scorer.score.await_count == 2
        count = await db_session.execute(
            select(func.count(CompatibilityCacheEntry.id)).where(
                CompatibilityCacheEntry.user_id == a.id,
                CompatibilityCacheEntry.target_user_id == b.id,
            )
        )
        assert count.scalar_one() == 1

    @pytest.mark.asyncio
    async def test_volatile_change_keeps_cache(self, service, scorer, user_factory, db_session):
        a = await user_factory()
        b = await user_factory(gender="male")
        await service.get_or_calculate(a, b, db_session)

        b.city = "Lyon"
        b.location_latitude = 45.76
        await service.get_or_calculate(a, b, db_session)

        assert scorer.score.await_count == 1

    @pytest.mark.asyncio
    async def test_embedding_score_stored(self, service, user_factory, db_session):
        a = await user_factory()
        b = await user_factory()

        scores = await service.get_or_calculate(a, b, db_session, embedding_score=0.91)

        assert scores.embedding_score == pytest.approx(0.91)


class TestCalculateBatch:

    @pytest.mark.asyncio
    async def test_only_misses_are_scored(self, service, scorer, user_factory, db_session):
        requester = await user_factory()
        targets = [await user_factory() for _ in range(3)]
        await service.get_or_calculate(requester, targets[0], db_session)
        scorer.score.reset_mock()

        results = await service.calculate_batch(
            requester,
            targets,
            db_session,
            embedding_scores={t.id: 0.5 for t in targets},
        )

        assert set(results) == {t.id for t in targets}
        assert scorer.score.await_count == 2
        scored_targets = {call.args[1].id for call in scorer.score.await_args_list}
        assert scored_targets == {targets[1].id, targets[2].id}

    @pytest.mark.asyncio
    async def test_second_batch_is_all_hits(self, service, scorer, user_factory, db_session):
        requester = await user_factory()
        targets = [await user_factory() for _ in range(4)]

        await service.calculate_batch(requester, targets, db_session)
        await service.calculate_batch(requester, targets, db_session)

        assert scorer.score.await_count == 4

    @pytest.mark.asyncio
    async def test_empty_targets(self, service, scorer, user_factory, db_session):
        requester = await user_factory()
        assert await service.calculate_batch(requester, [], db_session) == {}
        scorer.score.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, user_factory, db_session, clock):
        in_flight = 0
        peak = 0

        async def slow_score(a, b):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return FRESH

        scorer = AsyncMock()
        scorer.score = AsyncMock(side_effect=slow_score)
        service = CompatibilityService(
            cache=CompatibilityCache(clock=clock), scorer=scorer, max_concurrency=2
        )
        requester = await user_factory()
        targets = [await user_factory() for _ in range(6)]

        results = await service.calculate_batch(requester, targets, db_session)

        assert len(results) == 6
        assert peak == 2
