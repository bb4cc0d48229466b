"""Test fixtures — in-memory tokens, a fresh dispatcher, fake HTTP.

Learn: Two ways of faking the backend:

1. httpx.MockTransport with a handler function: full control over each
   response, used for the protocol-level tests (refresh, classification)
2. A small FastAPI app behind httpx.ASGITransport: a "real" server with
   rotating refresh tokens, used for end-to-end flows

Neither opens a socket.
"""

import httpx
import pytest
import pytest_asyncio

from shopdeck.auth.storage import MemoryStorage
from shopdeck.auth.tokens import TokenPair, TokenRepository
from shopdeck.client.api import AuthenticatedClient
from shopdeck.config import Settings
from shopdeck.events.dispatcher import EventDispatcher

from fake_backend import BackendState, create_backend

BASE_URL = "http://shop.test"


@pytest.fixture()
def settings():
    return Settings(
        api_url=BASE_URL,
        realtime_url="ws://shop.test/ws",
        realtime_max_reconnect_attempts=3,
        realtime_reconnect_delay=0.0,
        realtime_max_reconnect_delay=0.0,
    )


@pytest.fixture()
def events():
    return EventDispatcher()


@pytest.fixture()
def tokens():
    """Repository holding an expired-looking session: tok1 / ref1."""
    repo = TokenRepository(MemoryStorage())
    repo.set(TokenPair("tok1", "ref1"))
    return repo


@pytest.fixture()
def make_client(settings, tokens, events):
    """Factory: AuthenticatedClient over an httpx.MockTransport handler."""
    def _make(handler) -> AuthenticatedClient:
        http = httpx.AsyncClient(
            base_url=BASE_URL, transport=httpx.MockTransport(handler)
        )
        return AuthenticatedClient(tokens, events, settings=settings, http=http)

    return _make


@pytest.fixture()
def backend_state():
    return BackendState()


@pytest_asyncio.fixture()
async def backend_client(settings, events, backend_state):
    """AuthenticatedClient talking to the FastAPI fake through ASGITransport."""
    transport = httpx.ASGITransport(app=create_backend(backend_state))
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as http:
        repo = TokenRepository(MemoryStorage())
        yield AuthenticatedClient(repo, events, settings=settings, http=http)
