"""Request executor — one HTTP exchange, classified.

Learn: The executor is deliberately dumb about sessions. It builds the
request, sends it through httpx, and turns the result into either a
payload or exactly one typed error (see errors.py). The refresh protocol
depends on this classification: only AuthExpired triggers a refresh.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from shopdeck.client.errors import (
    TOKEN_EXPIRED_CODE,
    AuthExpired,
    AuthRejected,
    HttpError,
    TransportError,
)

logger = structlog.get_logger()


@dataclass
class Form:
    """Multipart form body. Sent as-is, never JSON-encoded.

    files follows httpx: {"image": ("photo.jpg", fileobj, "image/jpeg")}.
    """

    fields: dict[str, Any] = field(default_factory=dict)
    files: dict[str, Any] = field(default_factory=dict)


def is_json_body(body: Any) -> bool:
    """True for bodies the executor serializes to JSON."""
    return body is not None and not isinstance(body, (Form, str, bytes))


class RequestExecutor:
    """Performs single exchanges against one backend."""

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def execute(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Send one request. Returns the decoded payload or raises an ApiError."""
        kwargs: dict[str, Any] = {"headers": dict(headers or {}), "params": params}
        if isinstance(body, Form):
            kwargs["data"] = body.fields
            kwargs["files"] = body.files or None
        elif isinstance(body, (str, bytes)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body

        try:
            response = await self.http.request(method.upper(), url, **kwargs)
        except httpx.TransportError as e:
            logger.warning(
                "shopdeck.http.transport_error", method=method, url=url, error=repr(e)
            )
            raise TransportError(e) from e

        return self.classify(response)

    @staticmethod
    def classify(response: httpx.Response) -> Any:
        """Map a response onto payload | AuthExpired | AuthRejected | HttpError."""
        if response.is_success:
            return _decode(response)

        body = _error_body(response)
        message = (
            body.get("message")
            or body.get("error")
            or f"HTTP {response.status_code}: {response.reason_phrase}"
        )

        if response.status_code == 401:
            if body.get("code") == TOKEN_EXPIRED_CODE:
                raise AuthExpired(message, body)
            raise AuthRejected(message, body)

        raise HttpError(response.status_code, message, body)


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if "application/json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError as e:
            logger.warning(
                "shopdeck.http.invalid_json",
                url=str(response.request.url),
                status=response.status_code,
                error=str(e),
            )
            raise HttpError(response.status_code, "Invalid JSON response") from e
    return response.text


def _error_body(response: httpx.Response) -> dict:
    """Best-effort JSON error body; {} when absent or not an object."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
