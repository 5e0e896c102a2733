"""Structured logging configuration with structlog."""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from bountyboard.config import Settings

# Event fields that must never reach a log sink in clear text
_SECRET_FIELDS = frozenset({"password", "current_password", "new_password", "token", "authorization"})
# License keys are shown with only their last four characters
_KEY_FIELDS = frozenset({"license_key"})

# Chatty third-party loggers kept at WARNING unless debugging
_QUIET_LOGGERS = ("sqlalchemy.engine", "arq.worker", "httpx")


def mask_license_key(key: str) -> str:
    """``TEAM-ALPHA-2099`` -> ``***2099``."""
    return f"***{key[-4:]}" if len(key) > 4 else "***"


def redact_secrets(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """structlog processor: scrub credentials and license keys from an event."""
    for field in _SECRET_FIELDS.intersection(event_dict):
        event_dict[field] = "***"
    for field in _KEY_FIELDS.intersection(event_dict):
        value = event_dict[field]
        if isinstance(value, str):
            event_dict[field] = mask_license_key(value)
    return event_dict


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Root level also governs the stdlib loggers used by notifications and workers
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    if not settings.debug:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
