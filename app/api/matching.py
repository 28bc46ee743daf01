"""
Kindred — Matching API

Discovery feed, likes, passes, matches and conversation slots.  The acting
user is identified by the ``X-User-Id`` header.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_current_user_id,
    get_discovery_service,
    get_matching_service,
)
from app.database import get_db
from app.exceptions import (
    ConversationLimitError,
    InvalidFilterError,
    InvalidOperationError,
    NotFoundError,
)
from app.models.user import User
from app.schemas.matching import (
    CandidateResponse,
    ConversationsStatusResponse,
    DiscoverFilters,
    DiscoverResponse,
    LikeResponse,
    MatchResponse,
    PassResponse,
    PhotoResponse,
    ProfileCard,
    UnmatchResponse,
)
from app.services.discovery_service import ScoredCandidate
from app.services.matching_service import MatchView
from app.services.photo_urls import PhotoURL

logger = structlog.get_logger("kindred.api.matching")

router = APIRouter()


# ── Response shaping ──────────────────────────────────────────────────────────

def _photo_responses(photos: list[PhotoURL]) -> list[PhotoResponse]:
    return [
        PhotoResponse(
            id=p.id,
            url=p.url,
            is_primary=p.is_primary,
            display_order=p.display_order,
        )
        for p in photos
    ]


def _profile_fields(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "first_name": user.first_name,
        "age": user.age,
        "gender": user.gender,
        "bio": user.bio,
        "interests": user.interests or [],
        "search_objectives": user.search_objectives or [],
        "city": user.city,
    }


def _profile_card(user: User, photos: list[PhotoURL]) -> ProfileCard:
    return ProfileCard(**_profile_fields(user), photos=_photo_responses(photos))


def _candidate_response(candidate: ScoredCandidate) -> CandidateResponse:
    scores = candidate.scores
    return CandidateResponse(
        **_profile_fields(candidate.user),
        photos=_photo_responses(candidate.photos),
        is_liked=candidate.is_liked,
        distance_km=candidate.distance_km,
        has_compatibility=candidate.has_compatibility,
        compatibility_score_global=scores.global_score if scores else None,
        compatibility_score_love=scores.love if scores else None,
        compatibility_score_friendship=scores.friendship if scores else None,
        compatibility_score_carnal=scores.carnal if scores else None,
        compatibility_insight=scores.insight if scores else None,
        embedding_score=candidate.embedding_score,
    )


def _match_response(view: MatchView) -> MatchResponse:
    match = view.match
    return MatchResponse(
        id=match.id,
        matched_user=_profile_card(view.other_user, view.photos),
        compatibility_score_global=match.compatibility_score_global,
        compatibility_score_love=match.compatibility_score_love,
        compatibility_score_friendship=match.compatibility_score_friendship,
        compatibility_score_carnal=match.compatibility_score_carnal,
        compatibility_insight=match.compatibility_insight,
        is_active=match.is_active,
        matched_at=match.matched_at,
    )


async def _run_discovery(
    user_id: uuid.UUID,
    filters: DiscoverFilters | None,
    db: AsyncSession,
) -> DiscoverResponse:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found.",
        )

    try:
        result = await get_discovery_service().discover(user, db, filters)
    except InvalidFilterError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        )

    return DiscoverResponse(
        has_profile_embedding=result.has_profile_embedding,
        profiles=[_candidate_response(c) for c in result.candidates],
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET|POST /discover — Discovery feed
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/discover",
    response_model=DiscoverResponse,
    summary="Discovery feed using stored preferences",
)
async def discover(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> DiscoverResponse:
    logger.info("discover_request", user_id=str(user_id), filters=False)
    return await _run_discovery(user_id, None, db)


@router.post(
    "/discover",
    response_model=DiscoverResponse,
    summary="Discovery feed with filter overrides",
)
async def discover_with_filters(
    filters: DiscoverFilters,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> DiscoverResponse:
    """Same as ``GET /discover`` but the body may override the stored age
    range, gender list and maximum distance.
    """
    logger.info("discover_request", user_id=str(user_id), filters=True)
    return await _run_discovery(user_id, filters, db)


# ──────────────────────────────────────────────────────────────────────────────
# POST /like/{target_id} and /pass/{target_id}
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/like/{target_id}",
    response_model=LikeResponse,
    summary="Like a profile",
)
async def like_profile(
    target_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> LikeResponse:
    """Record a like.  A reciprocal like creates a match.

    At the active-conversation cap the user's pending likes are dropped and
    a 400 with ``error_code=MAX_CONVERSATIONS_REACHED`` is returned.
    """
    try:
        result = await get_matching_service().like_profile(user_id, target_id, db)
    except ConversationLimitError as exc:
        # Keep the like cleanup even though the request fails.
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": str(exc),
                "error_code": "MAX_CONVERSATIONS_REACHED",
                "max_conversations": exc.max_conversations,
                "active_conversations": exc.active_conversations,
            },
        )
    except InvalidOperationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    return LikeResponse(
        match=result.match,
        match_data=_match_response(result.match_view) if result.match_view else None,
    )


@router.post(
    "/pass/{target_id}",
    response_model=PassResponse,
    summary="Pass on a profile",
)
async def pass_profile(
    target_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PassResponse:
    try:
        await get_matching_service().pass_profile(user_id, target_id, db)
    except InvalidOperationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return PassResponse()


# ──────────────────────────────────────────────────────────────────────────────
# Matches, interested profiles, conversation slots
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/matches",
    response_model=list[MatchResponse],
    summary="Active matches of the acting user",
)
async def list_matches(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[MatchResponse]:
    views = await get_matching_service().get_matches(user_id, db)
    return [_match_response(v) for v in views]


@router.get(
    "/interested",
    response_model=list[ProfileCard],
    summary="Users who liked the acting user",
)
async def list_interested(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[ProfileCard]:
    profiles = await get_matching_service().get_interested_profiles(user_id, db)
    return [_profile_card(user, photos) for user, photos in profiles]


@router.delete(
    "/matches/{match_id}",
    response_model=UnmatchResponse,
    summary="Close a conversation",
)
async def unmatch(
    match_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> UnmatchResponse:
    try:
        result = await get_matching_service().unmatch(user_id, match_id, db)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return UnmatchResponse(**result)


@router.get(
    "/conversations/status",
    response_model=ConversationsStatusResponse,
    summary="Active conversation slots",
)
async def conversations_status(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ConversationsStatusResponse:
    status_data = await get_matching_service().get_conversations_status(user_id, db)
    return ConversationsStatusResponse(**status_data)
