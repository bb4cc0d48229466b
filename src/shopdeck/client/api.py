"""Authenticated client — the facade every admin surface calls.

Learn: request() is the composed entry point:
1. Attach the current access token (Authorization: Bearer ...)
2. Execute through the RequestExecutor
3. On AuthExpired, hand over to the RefreshCoordinator, then replay ONCE
   with the token it returns

A caller sees the original payload, the replayed payload after a
transparent refresh, or a terminal error. A replay never triggers a
second refresh.

Build one instance at startup (see app.py) and pass it around; there
is no module-level client.
"""

from typing import Any, Optional

import httpx
import structlog

from shopdeck.auth.tokens import TokenPair, TokenRepository
from shopdeck.client.errors import ApiError, AuthExpired, AuthRejected, RefreshFailure
from shopdeck.client.executor import Form, RequestExecutor, is_json_body
from shopdeck.client.refresh import RefreshCoordinator
from shopdeck.config import Settings
from shopdeck.config import settings as default_settings
from shopdeck.events.dispatcher import EventDispatcher
from shopdeck.events.types import (
    REASON_USER_LOGOUT,
    SESSION_ENDED,
    SESSION_STARTED,
    SessionEnded,
)

logger = structlog.get_logger()


class AuthenticatedClient:
    """HTTP client with token attachment and coordinated refresh."""

    def __init__(
        self,
        tokens: TokenRepository,
        events: EventDispatcher,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or default_settings
        self.tokens = tokens
        self.events = events
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=self.settings.api_url,
            timeout=self.settings.request_timeout,
        )
        self.executor = RequestExecutor(self.http)
        self.refresh = RefreshCoordinator(tokens, self._exchange_refresh_token, events)

    async def __aenter__(self) -> "AuthenticatedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_http:
            await self.http.aclose()

    # ─── Core pipeline ──────────────────────────────────────

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Send an authenticated request, refreshing the session if it expired."""
        label = f"{method.upper()} {endpoint}"
        pair = self.tokens.get()
        token = pair.access_token if pair else None

        try:
            return await self._send(endpoint, method, body, params, headers, token)
        except AuthExpired:
            logger.info("shopdeck.http.token_expired", request=label)
        except AuthRejected as e:
            logger.warning("shopdeck.http.request_rejected", request=label, error=str(e))
            current = self.tokens.get()
            # Without a refresh token there is no way back into this session
            if current is None or not current.refresh_token:
                self.refresh.end_session_without_refresh_token(label)
            raise
        except ApiError as e:
            logger.warning("shopdeck.http.request_failed", request=label, error=str(e))
            raise

        fresh_token = await self.refresh.recover(token, label)
        logger.debug("shopdeck.http.replaying", request=label)
        return await self._send(endpoint, method, body, params, headers, fresh_token)

    async def _send(
        self,
        endpoint: str,
        method: str,
        body: Any,
        params: Optional[dict[str, Any]],
        headers: Optional[dict[str, str]],
        token: Optional[str],
    ) -> Any:
        return await self.executor.execute(
            endpoint,
            method,
            self._headers(token, body, headers),
            body,
            params,
        )

    @staticmethod
    def _headers(
        token: Optional[str],
        body: Any = None,
        extra: Optional[dict[str, str]] = None,
    ) -> dict[str, str]:
        headers: dict[str, str] = {}
        if is_json_body(body):
            headers["Content-Type"] = "application/json"
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if extra:
            headers.update(extra)
        return headers

    async def _exchange_refresh_token(self, refresh_token: str) -> TokenPair:
        """POST /auth/refresh-token. Any failure becomes RefreshFailure."""
        body = {"refreshToken": refresh_token}
        try:
            data = await self.executor.execute(
                "/auth/refresh-token", "POST", self._headers(None, body), body
            )
        except ApiError as e:
            raise RefreshFailure(f"Token refresh failed: {e}", e) from e

        if not isinstance(data, dict) or not data.get("success") or not data.get("tokens"):
            raise RefreshFailure("Invalid refresh token response")
        try:
            return TokenPair.from_payload(data["tokens"])
        except ValueError as e:
            raise RefreshFailure(f"Invalid refresh token response: {e}", e) from e

    # ─── Session ────────────────────────────────────────────

    async def login(self, email: str, password: str, remember_me: bool = False) -> Any:
        """POST /auth/login. Stores the session and signals SESSION_STARTED on success.

        Bypasses the refresh path: a 401 here means bad credentials, and is
        raised to the caller as-is.
        """
        body = {"email": email, "password": password, "rememberMe": remember_me}
        data = await self.executor.execute(
            "/auth/login", "POST", self._headers(None, body), body
        )

        if isinstance(data, dict) and data.get("success") and data.get("tokens"):
            pair = TokenPair.from_payload(data["tokens"])
            self.tokens.set(pair, replace=True)
            if data.get("user"):
                self.tokens.save_user(data["user"])
            logger.info("shopdeck.auth.logged_in", user_id=(data.get("user") or {}).get("id"))
            self.events.dispatch(SESSION_STARTED, pair)

        return data

    async def logout(self) -> None:
        """Best-effort server invalidation, then always end the local session."""
        pair = self.tokens.get()
        try:
            if pair and pair.refresh_token:
                body = {"refreshToken": pair.refresh_token}
                await self.executor.execute(
                    "/auth/logout", "POST", self._headers(pair.access_token, body), body
                )
        except ApiError as e:
            # Not retried: the local session ends regardless
            logger.warning("shopdeck.auth.logout_request_failed", error=str(e))
        finally:
            self.tokens.clear()
            logger.info("shopdeck.auth.logged_out")
            self.events.dispatch(SESSION_ENDED, SessionEnded(REASON_USER_LOGOUT))

    def is_authenticated(self) -> bool:
        return self.tokens.is_authenticated()

    def current_user(self) -> Optional[dict]:
        return self.tokens.current_user()

    # ─── Products ───────────────────────────────────────────

    async def get_products(self, **params: Any) -> Any:
        return await self.request("/products", params=params or None)

    async def get_product(self, product_id: str) -> Any:
        return await self.request(f"/products/{product_id}")

    async def create_product(self, product: dict) -> Any:
        return await self.request("/products", method="POST", body=product)

    async def update_product(self, product_id: str, product: dict) -> Any:
        return await self.request(f"/products/{product_id}", method="PUT", body=product)

    async def delete_product(self, product_id: str) -> Any:
        return await self.request(f"/products/{product_id}", method="DELETE")

    async def upload_image(
        self,
        filename: str,
        content: bytes,
        folder: str = "general",
        content_type: str = "application/octet-stream",
    ) -> Any:
        """Multipart upload. No JSON Content-Type; httpx sets the boundary."""
        form = Form(
            fields={"folder": folder},
            files={"image": (filename, content, content_type)},
        )
        return await self.request("/upload/image", method="POST", body=form)

    # ─── Orders ─────────────────────────────────────────────

    async def get_orders(self, **params: Any) -> Any:
        return await self.request("/orders", params=params or None)

    async def get_order(self, order_id: str) -> Any:
        return await self.request(f"/orders/{order_id}")

    async def update_order(self, order_id: str, order: dict) -> Any:
        return await self.request(f"/orders/{order_id}", method="PUT", body=order)

    async def cancel_order(self, order_id: str, reason: str = "") -> Any:
        return await self.request(
            f"/orders/{order_id}/cancel", method="POST", body={"reason": reason}
        )

    # ─── Notifications ──────────────────────────────────────

    async def get_notifications(self, page: int = 1, limit: int = 20) -> Any:
        return await self.request(
            "/api/notifications", params={"page": page, "limit": limit}
        )

    async def get_unread_notification_count(self) -> Any:
        return await self.request("/api/notifications/unread-count")

    async def mark_notification_as_read(self, notification_id: str) -> Any:
        return await self.request(
            f"/api/notifications/{notification_id}/read", method="PATCH"
        )

    async def mark_all_notifications_as_read(self) -> Any:
        return await self.request("/api/notifications/mark-all-read", method="PATCH")

    async def get_notification_preferences(self) -> Any:
        return await self.request("/api/notifications/preferences")

    async def update_notification_preferences(self, preferences: dict) -> Any:
        return await self.request(
            "/api/notifications/preferences", method="PUT", body=preferences
        )

    # ─── Profile + analytics ────────────────────────────────

    async def get_profile(self) -> Any:
        return await self.request("/users/profile")

    async def update_profile(self, profile: dict) -> Any:
        return await self.request("/users/profile", method="PUT", body=profile)

    async def get_analytics(self, report: str = "overview") -> Any:
        """report: overview | products | sales | users"""
        return await self.request(f"/analytics/{report}")
