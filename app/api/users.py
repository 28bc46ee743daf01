"""
Kindred — Users API

User creation, profile updates (with synchronous compatibility-cache
invalidation), account deletion, photo uploads and push tokens.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_notification_service, get_user_service
from app.database import get_db
from app.exceptions import NotFoundError
from app.models.photo import Photo
from app.models.user import User
from app.schemas.user import (
    PhotoUploadResponse,
    ProfileUpdateResponse,
    PushTokenCreate,
    PushTokenResponse,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from app.utils.storage import build_photo_path, upload_file

logger = structlog.get_logger("kindred.api.users")

router = APIRouter()


async def _get_user_or_404(user_id: uuid.UUID, db: AsyncSession) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found.",
        )
    return user


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Create a new user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new user",
)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Register a user.  Emails are unique; new users start without photos."""
    log = logger.bind(email=payload.email)
    log.info("create_user_start")

    existing = await db.execute(select(User.id).where(User.email == payload.email))
    if existing.scalar_one_or_none() is not None:
        log.warning("create_user_duplicate_email")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists.",
        )

    if payload.preference_age_min > payload.preference_age_max:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="preference_age_min must not exceed preference_age_max.",
        )

    new_user = User(**payload.model_dump(), photos=[])
    db.add(new_user)
    await db.flush()

    log.info("create_user_complete", user_id=str(new_user.id))
    return new_user


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get user by ID",
)
async def get_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> User:
    logger.info("get_user", user_id=str(user_id))
    return await _get_user_or_404(user_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# PATCH /{user_id} — Profile update
# ──────────────────────────────────────────────────────────────────────────────

@router.patch(
    "/{user_id}",
    response_model=ProfileUpdateResponse,
    summary="Update profile fields",
)
async def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: AsyncSession = Depends(get_db),
) -> ProfileUpdateResponse:
    """Apply the fields present in the body.

    When a compatibility-relevant field changes, every cached compatibility
    entry involving the user is deleted before this request returns.
    """
    update_data = payload.model_dump(exclude_unset=True)
    user = await _get_user_or_404(user_id, db)

    age_min = update_data.get("preference_age_min", user.preference_age_min)
    age_max = update_data.get("preference_age_max", user.preference_age_max)
    if age_min is not None and age_max is not None and age_min > age_max:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="preference_age_min must not exceed preference_age_max.",
        )

    try:
        result = await get_user_service().update_profile(user_id, update_data, db)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return ProfileUpdateResponse(
        user=UserResponse.model_validate(result.user),
        fingerprint_changed=result.fingerprint_changed,
        cache_entries_invalidated=result.cache_entries_invalidated,
    )


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /{user_id} — Account deletion
# ──────────────────────────────────────────────────────────────────────────────

@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete account",
)
async def delete_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> Response:
    try:
        await get_user_service().delete_account(user_id, db)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}/photos — Upload photos
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/photos",
    response_model=list[PhotoUploadResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Upload user photos",
)
async def upload_photos(
    user_id: uuid.UUID,
    files: list[UploadFile] = File(..., description="One or more image files"),
    db: AsyncSession = Depends(get_db),
) -> list[Photo]:
    """Upload one or more photos.  The first photo of a user becomes primary.

    Photos are not part of the compatibility fingerprint, so uploads never
    invalidate cached scores.
    """
    log = logger.bind(user_id=str(user_id), file_count=len(files))
    log.info("upload_photos_start")

    await _get_user_or_404(user_id, db)

    next_order = (
        await db.execute(
            select(func.coalesce(func.max(Photo.display_order) + 1, 0)).where(
                Photo.user_id == user_id
            )
        )
    ).scalar_one()

    created: list[Photo] = []
    for upload in files:
        file_bytes = await upload.read()
        content_type = upload.content_type or "image/jpeg"
        path = build_photo_path(user_id, content_type)

        upload_file(path, file_bytes, content_type=content_type)

        photo = Photo(
            user_id=user_id,
            storage_path=path,
            mime_type=content_type,
            display_order=next_order,
            is_primary=next_order == 0,
        )
        db.add(photo)
        created.append(photo)
        next_order += 1
        log.info("photo_uploaded", path=path)

    await db.flush()
    log.info("upload_photos_complete", uploaded=len(created))
    return created


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}/push-tokens — Register a device
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/push-tokens",
    response_model=PushTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a push notification token",
)
async def register_push_token(
    user_id: uuid.UUID,
    payload: PushTokenCreate,
    db: AsyncSession = Depends(get_db),
):
    await _get_user_or_404(user_id, db)
    return await get_notification_service().register_token(
        user_id, payload.token, db, platform=payload.platform
    )
