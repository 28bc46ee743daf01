"""
Kindred — Admin Compatibility Cache API

Operational endpoints over the compatibility cache:
  - Statistics (entry counts, oldest / newest computation)
  - Manual invalidation for one user
  - Expired-entry cleanup, intended as the cron trigger
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_compatibility_cache
from app.database import get_db
from app.schemas.matching import (
    CacheCleanupResponse,
    CacheInvalidateResponse,
    CacheStatsResponse,
)

logger = structlog.get_logger("kindred.api.admin.compatibility")

router = APIRouter()


@router.get(
    "/stats",
    response_model=CacheStatsResponse,
    summary="Compatibility cache statistics",
)
async def cache_stats(db: AsyncSession = Depends(get_db)) -> CacheStatsResponse:
    stats = await get_compatibility_cache().stats(db)
    return CacheStatsResponse(**stats)


@router.post(
    "/invalidate/{user_id}",
    response_model=CacheInvalidateResponse,
    summary="Delete every cache entry involving a user",
)
async def invalidate_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> CacheInvalidateResponse:
    deleted = await get_compatibility_cache().invalidate_for_user(user_id, db)
    logger.info("admin_cache_invalidated", user_id=str(user_id), deleted=deleted)
    return CacheInvalidateResponse(user_id=user_id, deleted=deleted)


@router.post(
    "/cleanup",
    response_model=CacheCleanupResponse,
    summary="Delete expired cache entries",
)
async def cleanup_expired(db: AsyncSession = Depends(get_db)) -> CacheCleanupResponse:
    """Called periodically by an external scheduler."""
    deleted = await get_compatibility_cache().sweep_expired(db)
    logger.info("admin_cache_cleanup", deleted=deleted)
    return CacheCleanupResponse(deleted=deleted)
