"""Tests for NotificationService token registry and push delivery."""
import json

import httpx
import pytest
from sqlalchemy import func, select

from app.models.push_token import PushToken
from app.services.notification_service import NotificationService

GATEWAY = "https://push.example.test/send"


def _service(handler) -> NotificationService:
    service = NotificationService(transport=httpx.MockTransport(handler))
    service.gateway_url = GATEWAY
    service.server_key = "server-key"
    return service


class TestRegisterToken:

    @pytest.mark.asyncio
    async def test_register_new_token(self, user_factory, db_session):
        user = await user_factory()
        service = NotificationService()

        token = await service.register_token(user.id, "device-abc", db_session, platform="ios")

        assert token.user_id == user.id
        assert token.platform == "ios"

    @pytest.mark.asyncio
    async def test_known_token_is_reassigned(self, user_factory, db_session):
        first = await user_factory()
        second = await user_factory()
        service = NotificationService()
        await service.register_token(first.id, "device-abc", db_session, platform="android")

        token = await service.register_token(second.id, "device-abc", db_session)

        assert token.user_id == second.id
        assert token.platform == "android"
        total = await db_session.execute(select(func.count(PushToken.id)))
        assert total.scalar_one() == 1


class TestDelivery:

    @pytest.mark.asyncio
    async def test_no_gateway_sends_nothing(self, user_factory, db_session):
        user = await user_factory()
        service = NotificationService()
        service.gateway_url = ""
        await service.register_token(user.id, "device-abc", db_session)

        assert await service.send_to_user(user.id, "t", "b", db_session) == 0

    @pytest.mark.asyncio
    async def test_no_tokens(self, user_factory, db_session):
        user = await user_factory()
        service = _service(lambda request: httpx.Response(200))

        assert await service.send_to_user(user.id, "t", "b", db_session) == 0

    @pytest.mark.asyncio
    async def test_match_notification_reaches_every_device(self, user_factory, db_session):
        user = await user_factory()
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content))
            assert request.headers["Authorization"] == "key=server-key"
            return httpx.Response(200, json={"success": 1})

        service = _service(handler)
        await service.register_token(user.id, "device-1", db_session)
        await service.register_token(user.id, "device-2", db_session)

        delivered = await service.send_new_match_notification(
            user.id, "Ben", user.id, db_session
        )

        assert delivered == 2
        assert {body["to"] for body in sent} == {"device-1", "device-2"}
        assert sent[0]["notification"]["body"] == "You matched with Ben!"
        assert sent[0]["data"]["type"] == "new_match"

    @pytest.mark.asyncio
    async def test_gateway_errors_are_counted_not_raised(self, user_factory, db_session):
        user = await user_factory()

        def handler(request: httpx.Request) -> httpx.Response:
            token = json.loads(request.content)["to"]
            return httpx.Response(200 if token == "device-ok" else 503)

        service = _service(handler)
        await service.register_token(user.id, "device-ok", db_session)
        await service.register_token(user.id, "device-broken", db_session)

        assert await service.send_to_user(user.id, "t", "b", db_session) == 1
