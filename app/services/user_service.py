"""
Kindred — User profile lifecycle

Profile updates recompute the compatibility fingerprint.  When it changed,
every cache entry involving the user is deleted before the update returns,
so a client that saw the update succeed can never read a stale score.

An embedding refresh follows any change to the embedded profile text
(which also covers city and search objectives) when an ``EmbeddingService``
is configured.  Its failure leaves the previous vector
in place and does not fail the update.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.exceptions import NotFoundError
from app.models.match import Like, Match, Pass
from app.models.photo import Photo
from app.models.push_token import PushToken
from app.models.user import User
from app.services.compatibility_cache import CompatibilityCache
from app.services.embedding_service import EmbeddingService
from app.services.profile_hash import fingerprint

logger = structlog.get_logger("kindred.user_service")

# Columns a profile update may touch.
UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "name",
        "first_name",
        "age",
        "gender",
        "sexual_orientation",
        "bio",
        "interests",
        "search_objectives",
        "ai_profile",
        "city",
        "location_latitude",
        "location_longitude",
        "onboarding_complete",
        "preference_age_min",
        "preference_age_max",
        "preference_distance_km",
        "preference_genders",
    }
)


@dataclass
class ProfileUpdateResult:
    user: User
    fingerprint_changed: bool
    cache_entries_invalidated: int = 0


def _default_photo_deleter(path: str) -> None:
    from app.utils.storage import delete_file

    delete_file(path)


class UserService:
    def __init__(
        self,
        cache: CompatibilityCache | None = None,
        embedding_service: Any | None = None,
        photo_deleter: Callable[[str], None] | None = None,
    ) -> None:
        self.cache = cache if cache is not None else CompatibilityCache()
        self.embedding_service = embedding_service
        self.photo_deleter = photo_deleter or _default_photo_deleter

    async def get_user(self, user_id: uuid.UUID, db_session: AsyncSession) -> User:
        user = await db_session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def update_profile(
        self,
        user_id: uuid.UUID,
        fields: Mapping[str, Any],
        db_session: AsyncSession,
    ) -> ProfileUpdateResult:
        """Apply ``fields`` and invalidate cached compatibility if needed.

        Parameters
        ----------
        user_id:
            The user being updated.
        fields:
            Column name to new value.  Unknown keys, and ``None`` for a NOT NULL
            column, raise ``ValueError``.
        db_session:
            Active SQLAlchemy async session.

        Returns
        -------
        ProfileUpdateResult
            The updated user, whether the fingerprint changed and how many
            cache entries were deleted.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")
        nulled = sorted(
            name for name, value in fields.items()
            if value is None and not User.__table__.c[name].nullable
        )
        if nulled:
            raise ValueError(f"Fields cannot be null: {nulled}")

        user = await self.get_user(user_id, db_session)
        log = logger.bind(user_id=str(user_id))

        before = fingerprint(user)
        text_before = EmbeddingService.build_profile_text(user)
        for name, value in fields.items():
            setattr(user, name, value)
        user.updated_at = utcnow()
        await db_session.flush()
        fingerprint_changed = fingerprint(user) != before
        # The embedded text also covers city and search objectives.
        embedding_stale = EmbeddingService.build_profile_text(user) != text_before

        invalidated = 0
        if fingerprint_changed:
            invalidated = await self.cache.invalidate_for_user(user_id, db_session)
        log.info(
            "profile_updated",
            fingerprint_changed=fingerprint_changed,
            embedding_stale=embedding_stale,
            fields=sorted(fields),
            cache_entries_invalidated=invalidated,
        )

        if embedding_stale and self.embedding_service is not None:
            try:
                await self.embedding_service.refresh_user_embedding(user, db_session)
            except Exception as exc:
                log.error("profile_embedding_refresh_failed", error=str(exc))

        return ProfileUpdateResult(
            user=user,
            fingerprint_changed=fingerprint_changed,
            cache_entries_invalidated=invalidated,
        )

    async def delete_account(self, user_id: uuid.UUID, db_session: AsyncSession) -> None:
        """Delete the user and everything that references them.

        Photo objects are removed from storage best-effort; a storage
        failure never blocks the account deletion.
        """
        user = await self.get_user(user_id, db_session)
        log = logger.bind(user_id=str(user_id))

        storage_paths = (
            await db_session.execute(
                select(Photo.storage_path).where(Photo.user_id == user_id)
            )
        ).scalars().all()

        await db_session.execute(
            delete(Like).where(or_(Like.user_id == user_id, Like.liked_user_id == user_id))
        )
        await db_session.execute(
            delete(Pass).where(or_(Pass.user_id == user_id, Pass.passed_user_id == user_id))
        )
        await db_session.execute(
            delete(Match).where(
                or_(Match.user_id == user_id, Match.matched_user_id == user_id)
            )
        )
        invalidated = await self.cache.invalidate_for_user(user_id, db_session)
        await db_session.execute(delete(PushToken).where(PushToken.user_id == user_id))

        await db_session.delete(user)
        await db_session.flush()

        for path in storage_paths:
            try:
                self.photo_deleter(path)
            except Exception as exc:
                log.warning("photo_storage_delete_failed", path=path, error=str(exc))

        log.info(
            "account_deleted",
            photos=len(storage_paths),
            cache_entries_invalidated=invalidated,
        )

    async def touch_last_active(self, user_id: uuid.UUID, db_session: AsyncSession) -> None:
        user = await self.get_user(user_id, db_session)
        user.last_active_at = utcnow()
        await db_session.flush()
