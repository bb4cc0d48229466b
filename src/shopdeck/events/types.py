"""Event names and payload types.

Learn: Centralizing event names as typed constants prevents typos and
makes it easy to discover every event the UI can listen to. A Topic
carries its payload type, so `dispatcher.add_listener(STOCK_UPDATED, fn)`
is checkable: fn must accept a dict.

Canonical names are what listeners subscribe to. Wire names (what the
server sends) are mapped onto them in realtime/channel.py.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from shopdeck.auth.tokens import TokenPair
from shopdeck.realtime.protocol import Notification

P = TypeVar("P")


@dataclass(frozen=True)
class Topic(Generic[P]):
    """A tagged event name. `P` is the payload type listeners receive."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class SessionEnded:
    """Payload of SESSION_ENDED."""

    reason: str  # refresh_failed | no_refresh_token | user_logout
    error: str | None = None


# Reasons carried by SESSION_ENDED
REASON_REFRESH_FAILED = "refresh_failed"
REASON_NO_REFRESH_TOKEN = "no_refresh_token"
REASON_USER_LOGOUT = "user_logout"

# ─── Session signals (process-wide, never on the wire) ────

SESSION_STARTED: Topic[TokenPair] = Topic("sessionStarted")
SESSION_ENDED: Topic[SessionEnded] = Topic("sessionEnded")
TOKEN_REFRESHED: Topic[TokenPair] = Topic("tokenRefreshed")

# ─── Channel lifecycle ───────────────────────────────────

CONNECTION_STATE_CHANGED: Topic[Any] = Topic("connectionStateChanged")
CONNECTION_DEGRADED: Topic[dict] = Topic("connectionDegraded")

# ─── Server-pushed events ────────────────────────────────

NOTIFICATION: Topic[Notification] = Topic("notification")
UNREAD_COUNT_UPDATED: Topic[dict] = Topic("unreadCountUpdated")
ORDER_UPDATED: Topic[dict] = Topic("orderUpdated")
USER_STATUS: Topic[dict] = Topic("userStatus")
DASHBOARD_UPDATE: Topic[dict] = Topic("dashboardUpdate")
ADMIN_ANNOUNCEMENT: Topic[dict] = Topic("adminAnnouncement")
INVENTORY_UPDATED: Topic[dict] = Topic("inventoryUpdated")
STOCK_UPDATED: Topic[dict] = Topic("stockUpdated")
LOW_STOCK_ALERT: Topic[dict] = Topic("lowStockAlert")
