"""Refresh coordinator — single-flight token refresh.

Learn: When several requests expire at once, only ONE refresh call may
hit the server. Backends that rotate refresh tokens invalidate the old
one on use, so N parallel refreshes would leave N-1 callers holding a
dead token.

State machine:

    IDLE ──(expired, refresh token held)──▶ REFRESHING
      ▲                                          │
      └────────(refresh settles: ok | failed)────┘

While REFRESHING, every caller that observes an expiry joins a FIFO queue
of futures instead of refreshing. When the refresh settles, the queue is
drained in order: on success each waiter gets the new access token and
replays its own request; on failure each waiter gets the same
RefreshFailure, tokens are cleared once, and SESSION_ENDED fires once.

The refresh runs in its own task, so a caller being cancelled never
aborts a refresh that others are waiting on.
"""

import asyncio
import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import structlog

from shopdeck.auth.tokens import TokenPair, TokenRepository
from shopdeck.client.errors import AuthRejected, RefreshFailure
from shopdeck.events.dispatcher import EventDispatcher
from shopdeck.events.types import (
    REASON_NO_REFRESH_TOKEN,
    REASON_REFRESH_FAILED,
    SESSION_ENDED,
    TOKEN_REFRESHED,
    SessionEnded,
)

logger = structlog.get_logger()

Refresher = Callable[[str], Awaitable[TokenPair]]


class RefreshState(str, enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass
class PendingRequest:
    """One caller waiting for the in-flight refresh to settle."""

    label: str
    future: asyncio.Future = field(repr=False)


class RefreshCoordinator:
    """Owns the refresh state machine and its waiter queue."""

    def __init__(
        self,
        tokens: TokenRepository,
        refresher: Refresher,
        events: EventDispatcher,
    ):
        self.tokens = tokens
        self.events = events
        self._refresher = refresher
        self._state = RefreshState.IDLE
        self._queue: deque[PendingRequest] = deque()
        self._inflight: Optional[asyncio.Task] = None
        self.refresh_count = 0

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def queued(self) -> int:
        return len(self._queue)

    async def recover(self, stale_token: Optional[str], label: str = "") -> str:
        """Called after a request carrying `stale_token` got AuthExpired.

        Returns the access token to replay with. Raises AuthRejected when
        there is nothing to refresh with, RefreshFailure when the refresh
        fails.
        """
        if self._state is RefreshState.IDLE:
            current = self.tokens.get()

            # Someone already refreshed after our request left; just replay
            if current and stale_token and current.access_token != stale_token:
                logger.debug("shopdeck.refresh.already_refreshed", request=label)
                return current.access_token

            if not current or not current.refresh_token:
                self.end_session_without_refresh_token(label)
                raise AuthRejected("Access token expired and no refresh token is available")

            self._start(current.refresh_token)

        return await self._enqueue(label)

    # ─── Transitions ────────────────────────────────────────

    def _start(self, refresh_token: str) -> None:
        """IDLE → REFRESHING: launch the one refresh call."""
        self._state = RefreshState.REFRESHING
        self.refresh_count += 1
        logger.info("shopdeck.refresh.started")
        self._inflight = asyncio.ensure_future(self._run(refresh_token))

    async def _run(self, refresh_token: str) -> None:
        try:
            pair = await self._refresher(refresh_token)
        except asyncio.CancelledError:
            # Loop shutdown, not a verdict on the session: keep the tokens
            self._state = RefreshState.IDLE
            for pending in self._drain():
                if not pending.future.done():
                    pending.future.set_exception(RefreshFailure("Token refresh was cancelled"))
            raise
        except Exception as e:
            failure = e if isinstance(e, RefreshFailure) else RefreshFailure(str(e), e)
            self._fail(failure)
        else:
            self._succeed(pair)
        finally:
            self._inflight = None

    def _succeed(self, pair: TokenPair) -> None:
        """REFRESHING → IDLE: install tokens, wake waiters in FIFO order."""
        self.tokens.set(pair)
        self._state = RefreshState.IDLE
        waiters = self._drain()
        logger.info("shopdeck.refresh.succeeded", waiters=len(waiters))
        self.events.dispatch(TOKEN_REFRESHED, pair)
        for pending in waiters:
            if not pending.future.done():
                pending.future.set_result(pair.access_token)

    def _fail(self, failure: RefreshFailure) -> None:
        """REFRESHING → IDLE: clear session, reject waiters with the same error."""
        self._state = RefreshState.IDLE
        waiters = self._drain()
        logger.warning(
            "shopdeck.refresh.failed", error=str(failure), waiters=len(waiters)
        )
        if self.tokens.clear():
            self.events.dispatch(
                SESSION_ENDED, SessionEnded(REASON_REFRESH_FAILED, str(failure))
            )
        for pending in waiters:
            if not pending.future.done():
                pending.future.set_exception(failure)

    def end_session_without_refresh_token(self, label: str = "") -> None:
        """Nothing to refresh with: clear the session, signalling only if one existed."""
        logger.warning("shopdeck.refresh.no_refresh_token", request=label)
        if self.tokens.clear():
            self.events.dispatch(SESSION_ENDED, SessionEnded(REASON_NO_REFRESH_TOKEN))

    # ─── Waiter queue ───────────────────────────────────────

    async def _enqueue(self, label: str) -> str:
        future = asyncio.get_running_loop().create_future()
        self._queue.append(PendingRequest(label=label, future=future))
        if len(self._queue) > 1:
            logger.debug(
                "shopdeck.refresh.queued", request=label, position=len(self._queue)
            )
        return await future

    def _drain(self) -> list[PendingRequest]:
        waiters = list(self._queue)
        self._queue.clear()
        return waiters
