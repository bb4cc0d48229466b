"""Token repository — the single source of truth for "is this caller logged in".

Learn: Older builds of the admin stored the access token under different
names (token, adminToken). Every alias is still written on set() and
removed on clear(), so older readers keep working. Reads take the first
non-empty alias in priority order.

The repository never raises on storage trouble: losing persisted tokens
degrades to "log in again", which beats crashing the app.
"""

import json
import threading
from dataclasses import dataclass
from typing import Any, Optional

import jwt
import structlog

from shopdeck.auth.storage import MemoryStorage, TokenStorage

logger = structlog.get_logger()

# Priority order matters: the first non-empty alias wins on read
ACCESS_TOKEN_KEYS = ("accessToken", "token", "adminToken")
REFRESH_TOKEN_KEYS = ("refreshToken",)
USER_KEY = "user"


@dataclass(frozen=True)
class TokenPair:
    """Access token plus (optionally) the refresh token issued with it."""

    access_token: str
    refresh_token: Optional[str] = None

    @classmethod
    def from_payload(cls, tokens: dict) -> "TokenPair":
        """Parse the backend's {"accessToken", "refreshToken"} shape."""
        access = tokens.get("accessToken")
        if not access:
            raise ValueError("token payload has no accessToken")
        return cls(access_token=access, refresh_token=tokens.get("refreshToken") or None)

    def claims(self) -> dict[str, Any]:
        """Decode the access token's claims WITHOUT verifying the signature.

        Display only (expiry in `shopdeck status`). The server stays the
        judge of validity: an expired token is detected by its 401.
        """
        try:
            return jwt.decode(self.access_token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return {}


class TokenRepository:
    """Reads and writes the TokenPair across every legacy key alias."""

    def __init__(self, storage: Optional[TokenStorage] = None):
        self._storage = storage or MemoryStorage()
        # Reads and writes are whole-document; the lock keeps them from interleaving
        self._lock = threading.Lock()

    def get(self) -> Optional[TokenPair]:
        """Current pair, or None when no access token is stored."""
        with self._lock:
            data = self._load()
        access = _first(data, ACCESS_TOKEN_KEYS)
        if not access:
            return None
        return TokenPair(access_token=access, refresh_token=_first(data, REFRESH_TOKEN_KEYS))

    def set(self, pair: TokenPair, *, replace: bool = False) -> None:
        """Write the pair to every alias.

        Without a refresh token only the access keys change, unless
        replace=True (a new login), which also drops the old refresh token.
        """
        with self._lock:
            data = self._load()
            if replace:
                for key in (*REFRESH_TOKEN_KEYS, USER_KEY):
                    data.pop(key, None)
            for key in ACCESS_TOKEN_KEYS:
                data[key] = pair.access_token
            if pair.refresh_token:
                for key in REFRESH_TOKEN_KEYS:
                    data[key] = pair.refresh_token
            self._save(data)

    def clear(self) -> bool:
        """Remove every alias and the cached user.

        Returns True if an access token was present, so callers can tell
        the first clear of a session from a repeated one.
        """
        with self._lock:
            data = self._load()
            had_session = bool(_first(data, ACCESS_TOKEN_KEYS))
            for key in (*ACCESS_TOKEN_KEYS, *REFRESH_TOKEN_KEYS, USER_KEY):
                data.pop(key, None)
            self._save(data)
        return had_session

    def is_authenticated(self) -> bool:
        return self.get() is not None

    # ─── User profile ───────────────────────────────────────

    def save_user(self, user: dict) -> None:
        """Cache the profile returned by login (cleared with the tokens)."""
        with self._lock:
            data = self._load()
            data[USER_KEY] = json.dumps(user)
            self._save(data)

    def current_user(self) -> Optional[dict]:
        with self._lock:
            raw = self._load().get(USER_KEY)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("shopdeck.tokens.corrupt_user_profile")
            return None

    # ─── Storage access (failures logged, never raised) ─────

    def _load(self) -> dict[str, str]:
        try:
            return self._storage.load()
        except (OSError, ValueError) as e:
            logger.warning("shopdeck.tokens.load_failed", error=str(e))
            return {}

    def _save(self, data: dict[str, str]) -> None:
        try:
            self._storage.save(data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning("shopdeck.tokens.save_failed", error=str(e))


def _first(data: dict[str, str], keys: tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None
