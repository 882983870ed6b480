"""
Structured Logging with Structlog.

Every ledger event carries the service name and version, plus whatever
request context is bound with `log_context` (the HTTP request id, or the
billed operation's request_id / user_id / transaction_id).
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any
from uuid import UUID

import structlog
from structlog.types import EventDict, Processor

from app.config import settings

LEDGER_ID_KEYS = ("transaction_id", "request_id", "http_request_id", "user_id", "admin_id")


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def normalize_ledger_ids(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Render ledger ids as plain strings so UUIDs and str ids index the same way."""
    for key in LEDGER_ID_KEYS:
        value = event_dict.get(key)
        if isinstance(value, UUID):
            event_dict[key] = str(value)
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog over stdlib logging.

    JSON output looks like:
    {"event": "settlement_applied", "level": "info", "logger": "app.services.ledger",
     "service": "credit-ledger-api", "request_id": "req_ab12", "transaction_id": "...", ...}
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        normalize_ledger_ids,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def log_context(**context: Any) -> AbstractContextManager[None]:
    """
    Bind context to every log line inside the block.

    Usage:
        with log_context(request_id=request_id, user_id=user_id):
            logger.info("provider_call_started")
    """
    return structlog.contextvars.bound_contextvars(**context)
