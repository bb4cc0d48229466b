"""Realtime wire format.

Learn: Every frame is a JSON text message tagged with its event name:

    {"type": "stock_updated", "data": {"productId": "p1", "stock": 4}}

Inbound frames without "data" carry their payload inline: the rest of
the object is the payload ({"type": "ping"} → {}).
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Notification(BaseModel):
    """A push notification as listeners receive it."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str = ""
    message: str = ""
    type: str = "info"
    priority: str = "normal"  # low | normal | high
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    action_url: Optional[str] = Field(None, alias="actionUrl")

    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)


class ProtocolError(ValueError):
    """Raised for frames that are not a tagged JSON object."""


def encode(event: str, data: Any = None) -> str:
    return json.dumps({"type": event, "data": data if data is not None else {}}, default=str)


def decode(raw: str | bytes) -> tuple[str, Any]:
    """Split a frame into (event name, payload)."""
    try:
        message = json.loads(raw)
    except ValueError as e:
        raise ProtocolError(f"not JSON: {e}") from e

    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise ProtocolError("frame is not a tagged object")

    event = message.pop("type")
    if "data" in message:
        return event, message["data"]
    return event, message
