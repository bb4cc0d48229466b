"""Error taxonomy for the request pipeline.

Learn: Every failed exchange is exactly one of these:

    ApiError
    ├── TransportError      no response reached us (connect error, timeout)
    ├── HttpError           non-2xx response
    │   └── AuthError       401
    │       ├── AuthExpired     code TOKEN_EXPIRED → refresh may recover it
    │       └── AuthRejected    anything else → terminal for that call
    └── RefreshFailure      the refresh call itself failed

Only AuthExpired is recovered inside the pipeline; everything else
reaches the caller unchanged.
"""

from typing import Any, Optional

TOKEN_EXPIRED_CODE = "TOKEN_EXPIRED"


class ApiError(Exception):
    """Base class for every pipeline failure."""


class TransportError(ApiError):
    """The request never got a response."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Transport error: {cause!r}")
        self.cause = cause


class HttpError(ApiError):
    """The server answered with a non-2xx status."""

    def __init__(self, status: int, message: str, body: Optional[Any] = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.body = body if body is not None else {}


class AuthError(HttpError):
    """401 Unauthorized."""

    def __init__(self, message: str, body: Optional[Any] = None):
        super().__init__(401, message, body)


class AuthExpired(AuthError):
    """401 with code TOKEN_EXPIRED, recoverable via refresh."""


class AuthRejected(AuthError):
    """401 for any other reason, or expiry with no refresh token to use."""


class RefreshFailure(ApiError):
    """Exchanging the refresh token failed; the session is over."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
