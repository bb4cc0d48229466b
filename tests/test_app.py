"""Composition root tests — session signals drive the realtime channel."""

import httpx
import pytest

from shopdeck.app import build_services
from shopdeck.auth.storage import MemoryStorage
from shopdeck.auth.tokens import TokenRepository
from shopdeck.client.errors import RefreshFailure
from shopdeck.events.types import SESSION_ENDED, SESSION_STARTED
from shopdeck.realtime.channel import ChannelState

from fake_realtime import FakeConnector, FakeSocket, eventually

BASE_URL = "http://shop.test"


def backend(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/auth/login":
        return httpx.Response(
            200,
            json={
                "success": True,
                "tokens": {"accessToken": "live", "refreshToken": "live-ref"},
                "user": {"id": "u1", "email": "admin@shop.test"},
            },
        )
    if path == "/auth/logout":
        return httpx.Response(200, json={"success": True})
    if path == "/auth/refresh-token":
        return httpx.Response(401, json={"success": False, "error": "Refresh token revoked"})
    return httpx.Response(401, json={"error": "Token expired", "code": "TOKEN_EXPIRED"})


@pytest.fixture()
def wired(settings):
    socket = FakeSocket()
    connector = FakeConnector(socket)
    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(backend))
    services = build_services(
        settings,
        tokens=TokenRepository(MemoryStorage()),
        http=http,
        connector=connector,
    )
    return services, socket, connector


@pytest.mark.asyncio
async def test_login_connects_channel_with_new_token(wired):
    services, socket, connector = wired

    await services.client.login("admin@shop.test", "secret")
    await eventually(lambda: services.channel.is_connected)

    assert connector.urls == ["ws://shop.test/ws?token=live"]
    assert socket.sent_types() == ["user_online"]
    await services.aclose()


@pytest.mark.asyncio
async def test_logout_disconnects_channel(wired):
    services, socket, _ = wired
    await services.client.login("admin@shop.test", "secret")
    await eventually(lambda: services.channel.is_connected)

    await services.client.logout()
    await eventually(lambda: services.channel.state is ChannelState.DISCONNECTED)

    assert socket.closed
    await services.aclose()


@pytest.mark.asyncio
async def test_failed_refresh_disconnects_channel(wired):
    services, socket, _ = wired
    await services.client.login("admin@shop.test", "secret")
    await eventually(lambda: services.channel.is_connected)

    with pytest.raises(RefreshFailure):
        await services.client.get_orders()
    await eventually(lambda: socket.closed)

    assert not services.client.is_authenticated()
    assert services.channel.state is ChannelState.DISCONNECTED
    await services.aclose()


@pytest.mark.asyncio
async def test_aclose_drops_session_wiring(wired):
    services, _, _ = wired

    await services.aclose()

    assert services.events.listener_count(SESSION_STARTED) == 0
    assert services.events.listener_count(SESSION_ENDED) == 0
