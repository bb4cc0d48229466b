"""Client configuration via environment variables.

Uses pydantic-settings to load config from env vars with SHOPDECK_ prefix.
Env vars only, no YAML or other config files (12-factor app style).

Learn: Components take a Settings instance in their constructor and fall
back to the module-level `settings` below, so tests can build their own
without touching the environment.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All client configuration. Set via SHOPDECK_* env vars."""

    # Backend
    api_url: str = "http://localhost:5000"
    realtime_url: str = "ws://localhost:5000/ws"
    request_timeout: float = 30.0  # seconds, per HTTP exchange

    # Token persistence (empty = keep tokens in memory only)
    token_store_path: str = ""

    # Realtime reconnection
    realtime_max_reconnect_attempts: int = 5
    realtime_reconnect_delay: float = 1.0  # first backoff step, doubles each attempt
    realtime_max_reconnect_delay: float = 30.0

    # Runtime
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_prefix": "SHOPDECK_"}

    @model_validator(mode="after")
    def validate_settings(self):
        """Reject settings that would make the client misbehave silently."""
        if self.realtime_max_reconnect_attempts < 1:
            raise ValueError(
                "SHOPDECK_REALTIME_MAX_RECONNECT_ATTEMPTS must be at least 1"
            )
        if self.environment != "development" and self.api_url.startswith("http://"):
            raise ValueError(
                "SHOPDECK_API_URL must use https:// outside development; "
                "bearer tokens would otherwise travel in clear text"
            )
        return self


# Default instance; components accept an explicit Settings to override it
settings = Settings()
