"""Logging for the custody engine.

Every ledger operation emits one dotted event (``crystal.transmitted``,
``transfer.settled``, ``overlay.timelock_applied``) carrying the crystal id,
the amounts moved and the acting principal. The API binds ``request_id``,
``caller`` and ``block_height`` into structlog contextvars, so those fields
appear on each line logged while serving a request.

Development renders colored console lines; other environments emit JSON with a
``service`` field for aggregation.

Usage:
    from crystal_custody.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=True)
    get_logger(__name__).info("crystal.spawned", crystal_id=1, amount=1000)
"""

from __future__ import annotations

import logging
import sys

import structlog

SERVICE_NAME = "crystal-custody"


def _add_service(
    _logger: logging.Logger, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Route structlog and stdlib records through one root handler.

    Args:
        log_level: Standard Python log level string (DEBUG, INFO, WARNING, etc.)
        json_logs: If True, output JSON with a ``service`` field on every line.
            If False, colored console.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(_add_service)
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Driver and access logs stay at WARNING.
    for noisy_logger in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "httpx", "httpcore"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def bind_caller(caller: str, block_height: int) -> None:
    """Attach the acting principal and block height to every later log line.

    Called by the API layer once per request, after the call context has been
    resolved from headers and the block-height clock.
    """
    structlog.contextvars.bind_contextvars(caller=caller, block_height=block_height)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger; ``name`` is usually the module's ``__name__``."""
    return structlog.get_logger(name)
