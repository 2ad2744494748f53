"""
Structured logging for the economy service.

Every event carries the service name and version; request-scoped values
bound with `log_context` (the middleware binds request_id) ride along on
every line logged while the request is handled.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from economy.config import settings


def add_service_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def _renderer() -> Processor:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def setup_logging() -> None:
    """
    Route structlog through stdlib logging on stdout.

    LOG_FORMAT=json emits one JSON object per event, e.g.
    {"event": "coins_converted", "account_id": "123456789", "coins_spent": 100,
     "level": "info", "logger": "economy.services.wallet", ...}.
    Anything else renders for a terminal.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    exception_processor: Processor = (
        structlog.processors.ExceptionRenderer()
        if settings.log_level.upper() == "DEBUG"
        else structlog.processors.format_exc_info
    )
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_fields,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        exception_processor,
        _renderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """Bind key/value pairs to every event logged inside the block."""

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
