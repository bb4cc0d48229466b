"""Realtime channel — one authenticated WebSocket with reconnection.

Learn: The channel is a small state machine run by a supervisor task:

    DISCONNECTED ──connect(token)──▶ CONNECTING ──ok──▶ CONNECTED
         ▲                              │                  │
         └──────── failure / drop ◀─────┴──────────────────┘

1. The handshake carries the access token as ?token=; no token, no connect
2. On CONNECTED: announce presence (user_online) and replay subscriptions,
   including the ones requested while we were offline
3. On failure or drop: back off (delay * 2^n, capped) and retry with the
   repository's *current* token; after max attempts in a row, give up,
   stay DISCONNECTED and signal CONNECTION_DEGRADED. Callers never see
   an exception for connectivity trouble

Inbound frames are translated 1:1 onto canonical event names and handed
to the EventDispatcher. Outbound emissions are fire-and-forget: when not
CONNECTED they are dropped and return False.
"""

import asyncio
import enum
import functools
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog
import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from shopdeck.auth.tokens import TokenRepository
from shopdeck.config import Settings
from shopdeck.config import settings as default_settings
from shopdeck.events import types as ev
from shopdeck.events.dispatcher import EventDispatcher
from shopdeck.realtime.protocol import Notification, ProtocolError, decode, encode

logger = structlog.get_logger()

Connector = Callable[[str], Awaitable[Any]]

# Failures that mean "try again later", not "bug"
CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)

# Wire name → canonical event
WIRE_EVENTS: dict[str, ev.Topic[Any]] = {
    "notification": ev.NOTIFICATION,
    "unread_count_updated": ev.UNREAD_COUNT_UPDATED,
    "order_updated": ev.ORDER_UPDATED,
    "user_status": ev.USER_STATUS,
    "dashboard_update": ev.DASHBOARD_UPDATE,
    "admin_announcement": ev.ADMIN_ANNOUNCEMENT,
    "inventory_updated": ev.INVENTORY_UPDATED,
    "stock_updated": ev.STOCK_UPDATED,
    "inventory_stock_updated": ev.STOCK_UPDATED,
    "low_stock_alert": ev.LOW_STOCK_ALERT,
}


class ChannelState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class RealtimeChannel:
    """Persistent event channel to the backend."""

    def __init__(
        self,
        events: EventDispatcher,
        tokens: Optional[TokenRepository] = None,
        settings: Optional[Settings] = None,
        connector: Optional[Connector] = None,
    ):
        self.settings = settings or default_settings
        self.events = events
        self.tokens = tokens
        self._connector = connector or functools.partial(
            websockets.connect, open_timeout=self.settings.request_timeout
        )
        self._state = ChannelState.DISCONNECTED
        self._socket: Any = None
        self._supervisor: Optional[asyncio.Task] = None
        self._token: Optional[str] = None
        self._closing = False
        # Replayed on every (re)connect: key → (wire event, data)
        self._subscriptions: dict[tuple, tuple[str, Any]] = {}
        self.failed_attempts = 0

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ChannelState.CONNECTED

    # ─── Lifecycle ──────────────────────────────────────────

    async def connect(self, token: Optional[str] = None) -> bool:
        """Start the connection. Returns False (and stays offline) without a token."""
        if self._supervisor is not None and not self._supervisor.done():
            return True

        token = token or self._current_token()
        if not token:
            logger.warning("shopdeck.realtime.no_token")
            return False

        self._token = token
        self._closing = False
        self.failed_attempts = 0
        self._supervisor = asyncio.create_task(self._supervise())
        return True

    async def disconnect(self) -> None:
        """Tear down from any state. Idempotent."""
        self._closing = True
        socket, self._socket = self._socket, None
        if socket is not None:
            try:
                await socket.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug("shopdeck.realtime.close_error", error=repr(e))

        task, self._supervisor = self._supervisor, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._set_state(ChannelState.DISCONNECTED)

    async def wait_closed(self) -> None:
        """Wait until the supervisor stops (gave up, or disconnect())."""
        task = self._supervisor
        if task is not None:
            await asyncio.wait({task})

    async def _supervise(self) -> None:
        """Connect, pump, and reconnect until told to stop or out of attempts."""
        try:
            while not self._closing:
                self._set_state(ChannelState.CONNECTING)
                try:
                    socket = await self._connector(self._url(self._token))
                except CONNECT_ERRORS as e:
                    logger.warning(
                        "shopdeck.realtime.connect_failed",
                        attempt=self.failed_attempts + 1,
                        error=repr(e),
                    )
                else:
                    await self._on_connected(socket)
                    await self._pump(socket)
                    self._socket = None
                    if self._closing:
                        break
                    logger.warning("shopdeck.realtime.connection_lost")

                self._set_state(ChannelState.DISCONNECTED)
                self.failed_attempts += 1
                if self.failed_attempts >= self.settings.realtime_max_reconnect_attempts:
                    logger.error(
                        "shopdeck.realtime.gave_up", attempts=self.failed_attempts
                    )
                    self.events.dispatch(
                        ev.CONNECTION_DEGRADED, {"attempts": self.failed_attempts}
                    )
                    break

                token = self._current_token()
                if not token:
                    logger.info("shopdeck.realtime.session_gone")
                    break
                self._token = token

                delay = self._backoff(self.failed_attempts)
                logger.info(
                    "shopdeck.realtime.reconnecting",
                    attempt=self.failed_attempts + 1,
                    delay=delay,
                )
                await asyncio.sleep(delay)
        finally:
            self._socket = None
            self._set_state(ChannelState.DISCONNECTED)

    async def _on_connected(self, socket: Any) -> None:
        self._socket = socket
        self.failed_attempts = 0
        self._set_state(ChannelState.CONNECTED)
        logger.info("shopdeck.realtime.connected")

        await self.emit("user_online")
        for event, data in list(self._subscriptions.values()):
            await self.emit(event, data)

    async def _pump(self, socket: Any) -> None:
        """Read frames until the connection ends."""
        try:
            async for raw in socket:
                await self._handle(raw)
        except ConnectionClosed as e:
            logger.debug("shopdeck.realtime.closed", error=repr(e))
        except CONNECT_ERRORS as e:
            logger.warning("shopdeck.realtime.read_failed", error=repr(e))

    async def _handle(self, raw: Any) -> None:
        try:
            event, payload = decode(raw)
        except ProtocolError as e:
            logger.warning("shopdeck.realtime.bad_frame", error=str(e))
            return

        if event == "ping":
            await self.emit("pong")
            return

        topic = WIRE_EVENTS.get(event)
        if topic is None:
            logger.debug("shopdeck.realtime.unknown_event", event_name=event)
            return

        if topic is ev.NOTIFICATION:
            try:
                payload = Notification.model_validate(payload)
            except ValidationError as e:
                logger.warning("shopdeck.realtime.bad_notification", error=str(e))
                return

        self.events.dispatch(topic, payload)

    # ─── Helpers ────────────────────────────────────────────

    def _set_state(self, state: ChannelState) -> None:
        if state is self._state:
            return
        self._state = state
        self.events.dispatch(ev.CONNECTION_STATE_CHANGED, state)

    def _current_token(self) -> Optional[str]:
        """Latest access token. The repository wins over the one we started with."""
        if self.tokens is None:
            return self._token
        pair = self.tokens.get()
        return pair.access_token if pair else None

    def _url(self, token: Optional[str]) -> str:
        parts = urlsplit(self.settings.realtime_url)
        query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
        query.append(("token", token or ""))
        return urlunsplit(parts._replace(query=urlencode(query)))

    def _backoff(self, attempt: int) -> float:
        delay = self.settings.realtime_reconnect_delay * (2 ** (attempt - 1))
        return min(delay, self.settings.realtime_max_reconnect_delay)

    # ─── Listeners ──────────────────────────────────────────

    def add_listener(self, event: Any, callback: Callable[[Any], Any]) -> Callable[[], None]:
        return self.events.add_listener(event, callback)

    def remove_listener(self, event: Any, callback: Callable[[Any], Any]) -> None:
        self.events.remove_listener(event, callback)

    # ─── Outbound (fire-and-forget) ─────────────────────────

    async def emit(self, event: str, data: Any = None) -> bool:
        """Send one frame. False when not connected or the send failed."""
        socket = self._socket
        if self._state is not ChannelState.CONNECTED or socket is None:
            logger.debug("shopdeck.realtime.emit_dropped", event_name=event)
            return False
        try:
            await socket.send(encode(event, data))
        except (ConnectionClosed, OSError) as e:
            logger.warning("shopdeck.realtime.emit_failed", event_name=event, error=repr(e))
            return False
        return True

    async def subscribe_to_inventory_updates(
        self, product_ids: Optional[list[str]] = None
    ) -> bool:
        """Remembered and replayed on every connect; sent now if connected."""
        data = {"productIds": product_ids} if product_ids else {}
        self._subscriptions[("inventory",)] = ("subscribe_inventory_updates", data)
        return await self.emit("subscribe_inventory_updates", data)

    async def unsubscribe_from_inventory_updates(self) -> bool:
        self._subscriptions.pop(("inventory",), None)
        return await self.emit("unsubscribe_inventory_updates")

    async def subscribe_to_order_updates(self, order_id: str) -> bool:
        self._subscriptions[("order", order_id)] = ("subscribe_order_updates", order_id)
        return await self.emit("subscribe_order_updates", order_id)

    async def unsubscribe_from_order_updates(self, order_id: str) -> bool:
        self._subscriptions.pop(("order", order_id), None)
        return await self.emit("unsubscribe_order_updates", order_id)

    async def subscribe_to_admin_updates(self) -> bool:
        self._subscriptions[("admin",)] = ("subscribe_admin_updates", {})
        return await self.emit("subscribe_admin_updates")

    async def update_product_stock(self, product_id: str, stock: int) -> bool:
        return await self.emit(
            "update_product_stock", {"productId": product_id, "stock": stock}
        )

    async def send_low_stock_alert(
        self,
        product_id: str,
        current_stock: int,
        threshold: Optional[int] = None,
        product_name: Optional[str] = None,
    ) -> bool:
        data: dict[str, Any] = {"productId": product_id, "currentStock": current_stock}
        if threshold is not None:
            data["threshold"] = threshold
        if product_name:
            data["productName"] = product_name
        return await self.emit("inventory_low_stock_alert", data)

    async def mark_notification_as_read(self, notification_id: str) -> bool:
        return await self.emit("notification_read", notification_id)

    async def start_typing(self, recipient_id: str) -> bool:
        return await self.emit("typing_start", {"recipientId": recipient_id})

    async def stop_typing(self, recipient_id: str) -> bool:
        return await self.emit("typing_stop", {"recipientId": recipient_id})

    async def admin_broadcast(self, message: str, level: str = "info") -> bool:
        """Announcement to every connected admin. level: info | warning | error"""
        return await self.emit("admin_broadcast", {"message": message, "type": level})
