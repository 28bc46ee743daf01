"""
Kindred — Push notifications

Registers device tokens and delivers push messages through an HTTP push
gateway (FCM-compatible JSON body).  Delivery is best-effort: callers never
see an exception, only the number of devices reached.
"""

from __future__ import annotations

import uuid
from typing import Any

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.push_token import PushToken

logger = structlog.get_logger("kindred.notification_service")


class NotificationService:
    """Push delivery over ``httpx``.

    Parameters
    ----------
    transport:
        Optional ``httpx`` transport; tests pass an ``httpx.MockTransport``.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        settings = get_settings()
        self.gateway_url = settings.PUSH_GATEWAY_URL
        self.server_key = settings.PUSH_SERVER_KEY
        self.timeout = settings.PUSH_TIMEOUT_SECONDS
        self._transport = transport

        logger.info(
            "notification_service_initialised",
            gateway_configured=bool(self.gateway_url),
        )

    # ── Token registry ────────────────────────────────────────────────────

    async def register_token(
        self,
        user_id: uuid.UUID,
        token: str,
        db_session: AsyncSession,
        platform: str | None = None,
    ) -> PushToken:
        """Attach a device token to ``user_id``.

        A token already known (possibly under another account after a
        re-login on the same device) is reassigned rather than duplicated.
        """
        existing = (
            await db_session.execute(select(PushToken).where(PushToken.token == token))
        ).scalar_one_or_none()

        if existing is not None:
            existing.user_id = user_id
            existing.platform = platform or existing.platform
            await db_session.flush()
            logger.info("push_token_reassigned", user_id=str(user_id))
            return existing

        push_token = PushToken(user_id=user_id, token=token, platform=platform)
        db_session.add(push_token)
        await db_session.flush()
        logger.info("push_token_registered", user_id=str(user_id), platform=platform)
        return push_token

    # ── Delivery ──────────────────────────────────────────────────────────

    async def send_to_user(
        self,
        user_id: uuid.UUID,
        title: str,
        body: str,
        db_session: AsyncSession,
        data: dict[str, Any] | None = None,
    ) -> int:
        """Send a notification to every device of ``user_id``.

        Returns the number of devices the gateway accepted.  Never raises.
        """
        log = logger.bind(user_id=str(user_id), notification_type=(data or {}).get("type"))

        if not self.gateway_url:
            log.info("push_skipped", reason="gateway_not_configured")
            return 0

        try:
            tokens = (
                await db_session.execute(
                    select(PushToken.token).where(PushToken.user_id == user_id)
                )
            ).scalars().all()
        except Exception as exc:
            log.error("push_token_lookup_failed", error=str(exc))
            return 0

        if not tokens:
            log.info("push_skipped", reason="no_tokens")
            return 0

        headers = {"Authorization": f"key={self.server_key}"} if self.server_key else {}
        payload_data = {k: str(v) for k, v in (data or {}).items()}
        delivered = 0

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                for token in tokens:
                    try:
                        response = await client.post(
                            self.gateway_url,
                            json={
                                "to": token,
                                "notification": {"title": title, "body": body},
                                "data": payload_data,
                            },
                            headers=headers,
                        )
                        response.raise_for_status()
                        delivered += 1
                    except httpx.HTTPError as exc:
                        log.warning("push_delivery_failed", error=str(exc))
        except Exception as exc:
            log.error("push_client_failed", error=str(exc))

        log.info("push_sent", devices=len(tokens), delivered=delivered)
        return delivered

    async def send_new_match_notification(
        self,
        user_id: uuid.UUID,
        matched_user_name: str | None,
        match_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        return await self.send_to_user(
            user_id,
            "New match!",
            f"You matched with {matched_user_name or 'someone'}!",
            db_session,
            data={"type": "new_match", "match_id": str(match_id)},
        )
