"""Composition root — build the client core once, at application start.

Learn: Everything is constructed here and passed by reference to whoever
needs it (dependency injection), instead of module-level singletons:

    services = build_services()
    await services.client.login(email, password)   # channel connects itself
    services.events.add_listener(STOCK_UPDATED, on_stock)
    ...
    await services.aclose()

The session signals drive the channel: SESSION_STARTED connects it with
the new access token, SESSION_ENDED disconnects it.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx
import structlog

from shopdeck.auth.storage import storage_from_path
from shopdeck.auth.tokens import TokenPair, TokenRepository
from shopdeck.client.api import AuthenticatedClient
from shopdeck.config import Settings
from shopdeck.config import settings as default_settings
from shopdeck.events.dispatcher import EventDispatcher
from shopdeck.events.types import SESSION_ENDED, SESSION_STARTED, SessionEnded
from shopdeck.realtime.channel import Connector, RealtimeChannel

logger = structlog.get_logger()


@dataclass
class Services:
    """The wired client core."""

    settings: Settings
    events: EventDispatcher
    tokens: TokenRepository
    client: AuthenticatedClient
    channel: RealtimeChannel
    _unsubscribe: list[Callable[[], None]] = field(default_factory=list, repr=False)

    async def aclose(self) -> None:
        """Disconnect the channel, close HTTP, drop the session wiring."""
        for off in self._unsubscribe:
            off()
        self._unsubscribe.clear()
        await self.channel.disconnect()
        await self.client.aclose()
        logger.info("shopdeck.shutdown")


def build_services(
    settings: Optional[Settings] = None,
    *,
    tokens: Optional[TokenRepository] = None,
    http: Optional[httpx.AsyncClient] = None,
    connector: Optional[Connector] = None,
) -> Services:
    """Construct and wire one instance of each component."""
    settings = settings or default_settings
    events = EventDispatcher()
    tokens = tokens or TokenRepository(storage_from_path(settings.token_store_path))
    client = AuthenticatedClient(tokens, events, settings=settings, http=http)
    channel = RealtimeChannel(events, tokens, settings=settings, connector=connector)

    async def on_session_started(pair: TokenPair) -> None:
        await channel.connect(pair.access_token)

    async def on_session_ended(ended: SessionEnded) -> None:
        logger.info("shopdeck.session_ended", reason=ended.reason)
        await channel.disconnect()

    services = Services(
        settings=settings,
        events=events,
        tokens=tokens,
        client=client,
        channel=channel,
    )
    services._unsubscribe += [
        events.add_listener(SESSION_STARTED, on_session_started),
        events.add_listener(SESSION_ENDED, on_session_ended),
    ]
    logger.debug("shopdeck.services_built", api_url=settings.api_url)
    return services
