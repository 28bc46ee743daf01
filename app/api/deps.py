"""
Kindred — Shared API dependencies

Lazily constructed service singletons (one compatibility cache and one
scorer per process, shared by discovery, matching and admin routes) and the
acting-user header.
"""

from __future__ import annotations

import uuid

from fastapi import Header

from app.services.compatibility_cache import CompatibilityCache
from app.services.compatibility_service import CompatibilityService
from app.services.discovery_service import DiscoveryService
from app.services.embedding_service import EmbeddingService
from app.services.events import RedisEventSink
from app.services.matching_service import MatchingService
from app.services.notification_service import NotificationService
from app.services.user_service import UserService

# ── Service singletons ────────────────────────────────────────────────────────

_compatibility_cache: CompatibilityCache | None = None
_compatibility_service: CompatibilityService | None = None
_discovery_service: DiscoveryService | None = None
_matching_service: MatchingService | None = None
_notification_service: NotificationService | None = None
_user_service: UserService | None = None


def _redis_getter():
    from app.main import get_redis

    return get_redis()


def get_compatibility_cache() -> CompatibilityCache:
    global _compatibility_cache
    if _compatibility_cache is None:
        _compatibility_cache = CompatibilityCache()
    return _compatibility_cache


def get_compatibility_service() -> CompatibilityService:
    global _compatibility_service
    if _compatibility_service is None:
        _compatibility_service = CompatibilityService(cache=get_compatibility_cache())
    return _compatibility_service


def get_discovery_service() -> DiscoveryService:
    global _discovery_service
    if _discovery_service is None:
        _discovery_service = DiscoveryService(
            compatibility_service=get_compatibility_service()
        )
    return _discovery_service


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service


def get_matching_service() -> MatchingService:
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService(
            compatibility_service=get_compatibility_service(),
            notification_service=get_notification_service(),
        )
    return _matching_service


def get_user_service() -> UserService:
    global _user_service
    if _user_service is None:
        _user_service = UserService(
            cache=get_compatibility_cache(),
            embedding_service=EmbeddingService(
                event_sink=RedisEventSink(_redis_getter)
            ),
        )
    return _user_service


# ── Acting user ───────────────────────────────────────────────────────────────

async def get_current_user_id(
    x_user_id: uuid.UUID = Header(..., description="Acting user id"),
) -> uuid.UUID:
    return x_user_id
