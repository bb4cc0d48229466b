"""structlog setup for the client and the CLI.

Learn: Library modules only ever call structlog.get_logger() and log
event names with keyword context. Rendering is decided once, here, by
whoever owns the process (the CLI, or the embedding application).
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_CREDENTIAL_KEYS = ("token", "password", "authorization", "secret")


def _redact_credentials(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask values whose key looks like a credential (keeps 2 chars each side)."""
    for key, value in event_dict.items():
        if not isinstance(value, str):
            continue
        if any(marker in key.lower() for marker in _CREDENTIAL_KEYS):
            event_dict[key] = value[:2] + "***" + value[-2:] if len(value) > 4 else "***"
    return event_dict


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Install the processor chain.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines when True, colored console output otherwise
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=False,
    )
