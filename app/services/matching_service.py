"""
Kindred — Likes, passes and matches

Reciprocal-like matching with a cap on active conversations:

  - ``like_profile`` refuses new likes while the user is at
    ``MAX_ACTIVE_CONVERSATIONS``; at the cap every pending like of that user
    is dropped.  A reciprocal like creates exactly one match per pair
    (either direction), scored through the compatibility cache with
    default scores when that fails.  Both users are notified best-effort.
  - ``unmatch`` deactivates a conversation and frees a slot.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import utcnow
from app.exceptions import ConversationLimitError, InvalidOperationError, NotFoundError
from app.models.match import Like, Match, Pass
from app.models.user import User
from app.services.compatibility_scorer import CompatibilityScores
from app.services.compatibility_service import CompatibilityService
from app.services.notification_service import NotificationService
from app.services.photo_urls import PhotoURL, UrlSigner, default_url_signer, sign_photos

logger = structlog.get_logger("kindred.matching_service")


@dataclass
class MatchView:
    """A match seen from one participant: ``other_user`` is never the viewer."""

    match: Match
    other_user: User
    photos: list[PhotoURL] = field(default_factory=list)


@dataclass
class LikeResult:
    match: bool
    match_view: MatchView | None = None


class MatchingService:
    """Like / pass / match lifecycle.

    Dependencies are injected at construction so the service can be tested
    with mocks.
    """

    def __init__(
        self,
        compatibility_service: CompatibilityService | None = None,
        notification_service: NotificationService | None = None,
        url_signer: UrlSigner | None = None,
    ) -> None:
        settings = get_settings()
        self.compatibility_service = (
            compatibility_service
            if compatibility_service is not None
            else CompatibilityService()
        )
        self.notification_service = (
            notification_service
            if notification_service is not None
            else NotificationService()
        )
        self.url_signer = url_signer or default_url_signer
        self.max_active_conversations = settings.MAX_ACTIVE_CONVERSATIONS
        self.default_scores = CompatibilityScores(
            global_score=settings.MATCH_DEFAULT_SCORE_GLOBAL,
            love=settings.MATCH_DEFAULT_SCORE_LOVE,
            friendship=settings.MATCH_DEFAULT_SCORE_FRIENDSHIP,
            carnal=settings.MATCH_DEFAULT_SCORE_CARNAL,
            insight=settings.MATCH_DEFAULT_INSIGHT,
        )

        logger.info(
            "matching_service_initialised",
            max_active_conversations=self.max_active_conversations,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def like_profile(
        self,
        user_id: uuid.UUID,
        liked_user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> LikeResult:
        """Record a like and create a match when it is reciprocal.

        Raises
        ------
        InvalidOperationError
            When a user likes themselves.
        NotFoundError
            When either user does not exist.
        ConversationLimitError
            When the user is at the active-conversation cap.  The user's
            pending likes have been deleted (flushed, not committed) by then.
        """
        log = logger.bind(user_id=str(user_id), liked_user_id=str(liked_user_id))

        if user_id == liked_user_id:
            raise InvalidOperationError("Users cannot like themselves")

        user = await self._get_user(user_id, db_session)
        liked_user = await self._get_user(liked_user_id, db_session)

        active = await self._count_active_conversations(user_id, db_session)
        if active >= self.max_active_conversations:
            deleted = await db_session.execute(delete(Like).where(Like.user_id == user_id))
            await db_session.flush()
            log.warning(
                "conversation_limit_reached",
                active=active,
                max=self.max_active_conversations,
                likes_deleted=deleted.rowcount,
            )
            raise ConversationLimitError(self.max_active_conversations, active)

        existing_like = await db_session.execute(
            select(Like.id).where(Like.user_id == user_id, Like.liked_user_id == liked_user_id)
        )
        if existing_like.scalar_one_or_none() is None:
            db_session.add(Like(user_id=user_id, liked_user_id=liked_user_id))
            await db_session.flush()
            log.info("like_recorded")

        reciprocal = await db_session.execute(
            select(Like.id).where(Like.user_id == liked_user_id, Like.liked_user_id == user_id)
        )
        if reciprocal.scalar_one_or_none() is None:
            return LikeResult(match=False)

        match = await self._create_match(user, liked_user, db_session)
        return LikeResult(
            match=True,
            match_view=MatchView(
                match=match,
                other_user=liked_user,
                photos=sign_photos(liked_user, self.url_signer),
            ),
        )

    async def pass_profile(
        self,
        user_id: uuid.UUID,
        passed_user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> None:
        """Record a pass.  Passing the same profile twice is a no-op."""
        if user_id == passed_user_id:
            raise InvalidOperationError("Users cannot pass themselves")

        existing = await db_session.execute(
            select(Pass.id).where(Pass.user_id == user_id, Pass.passed_user_id == passed_user_id)
        )
        if existing.scalar_one_or_none() is not None:
            return

        await self._get_user(passed_user_id, db_session)
        db_session.add(Pass(user_id=user_id, passed_user_id=passed_user_id))
        await db_session.flush()
        logger.info("pass_recorded", user_id=str(user_id), passed_user_id=str(passed_user_id))

    async def get_matches(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[MatchView]:
        """Active matches in either direction, newest first."""
        result = await db_session.execute(
            select(Match)
            .where(self._participant_clause(user_id), Match.is_active.is_(True))
            .order_by(Match.matched_at.desc())
        )
        views = []
        for match in result.scalars().all():
            other = match.matched_user if match.user_id == user_id else match.user
            views.append(
                MatchView(
                    match=match,
                    other_user=other,
                    photos=sign_photos(other, self.url_signer),
                )
            )
        return views

    async def get_interested_profiles(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[tuple[User, list[PhotoURL]]]:
        """Users who liked ``user_id`` that ``user_id`` has not liked back."""
        already_liked = select(Like.liked_user_id).where(Like.user_id == user_id)
        result = await db_session.execute(
            select(Like)
            .where(Like.liked_user_id == user_id, Like.user_id.not_in(already_liked))
            .order_by(Like.created_at.desc())
        )
        return [
            (like.user, sign_photos(like.user, self.url_signer))
            for like in result.scalars().all()
        ]

    async def unmatch(
        self,
        user_id: uuid.UUID,
        match_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict:
        """Deactivate an active match the user takes part in.

        Returns
        -------
        dict
            ``can_like_again`` and ``remaining_slots`` after closing.
        """
        match = (
            await db_session.execute(
                select(Match).where(
                    Match.id == match_id,
                    self._participant_clause(user_id),
                    Match.is_active.is_(True),
                )
            )
        ).scalar_one_or_none()
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")

        match.is_active = False
        match.closed_by = user_id
        match.closed_at = utcnow()
        await db_session.flush()

        active = await self._count_active_conversations(user_id, db_session)
        remaining = max(0, self.max_active_conversations - active)
        logger.info(
            "match_closed",
            user_id=str(user_id),
            match_id=str(match_id),
            other_user_id=str(match.other_user_id(user_id)),
            remaining_slots=remaining,
        )
        return {"can_like_again": remaining > 0, "remaining_slots": remaining}

    async def get_conversations_status(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict:
        active = await self._count_active_conversations(user_id, db_session)
        remaining = max(0, self.max_active_conversations - active)
        return {
            "active_conversations": active,
            "max_conversations": self.max_active_conversations,
            "remaining_slots": remaining,
            "can_like": remaining > 0,
        }

    # ── Internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _participant_clause(user_id: uuid.UUID):
        return or_(Match.user_id == user_id, Match.matched_user_id == user_id)

    @staticmethod
    async def _get_user(user_id: uuid.UUID, db_session: AsyncSession) -> User:
        user = await db_session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def _count_active_conversations(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        result = await db_session.execute(
            select(func.count(Match.id)).where(
                self._participant_clause(user_id),
                Match.is_active.is_(True),
            )
        )
        return result.scalar_one()

    async def _create_match(
        self,
        user: User,
        other: User,
        db_session: AsyncSession,
    ) -> Match:
        log = logger.bind(user_id=str(user.id), other_user_id=str(other.id))

        existing = (
            await db_session.execute(
                select(Match).where(
                    or_(
                        and_(Match.user_id == user.id, Match.matched_user_id == other.id),
                        and_(Match.user_id == other.id, Match.matched_user_id == user.id),
                    )
                )
                .order_by(Match.matched_at, Match.id)
                .limit(1)
            )
        ).scalars().first()
        if existing is not None:
            log.info("match_already_exists", match_id=str(existing.id))
            return existing

        try:
            scores = await self.compatibility_service.get_or_calculate(
                user, other, db_session
            )
        except Exception as exc:
            log.error("match_compatibility_failed", error=str(exc))
            scores = self.default_scores

        match = Match(
            user_id=user.id,
            matched_user_id=other.id,
            compatibility_score_global=scores.global_score,
            compatibility_score_love=scores.love,
            compatibility_score_friendship=scores.friendship,
            compatibility_score_carnal=scores.carnal,
            compatibility_insight=scores.insight,
        )
        db_session.add(match)
        await db_session.flush()
        log.info("match_created", match_id=str(match.id), score_global=scores.global_score)

        await self._notify_match(match, user, other, db_session)
        return match

    async def _notify_match(
        self,
        match: Match,
        user: User,
        other: User,
        db_session: AsyncSession,
    ) -> None:
        for recipient, counterpart in ((user, other), (other, user)):
            try:
                await self.notification_service.send_new_match_notification(
                    recipient.id,
                    counterpart.first_name or counterpart.name,
                    match.id,
                    db_session,
                )
            except Exception as exc:
                logger.error(
                    "match_notification_failed",
                    match_id=str(match.id),
                    recipient=str(recipient.id),
                    error=str(exc),
                )
