"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys

import structlog

from pulsewatch.core.config import LoggingConfig, get_settings

# Libraries that log every request at INFO; probes and deliveries log their own outcome.
_CHATTY_LOGGERS = ("httpx", "httpcore", "aiohttp.access", "aiohttp.client")


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "auto":
        fmt = "console" if sys.stderr.isatty() else "json"
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    config: LoggingConfig | None = None,
) -> None:
    """Route structlog and stdlib logging through one stderr handler.

    Args:
        level: Log level override (e.g. "DEBUG").
        fmt: Renderer override: "json", "console" or "auto" (console on a TTY).
        config: Logging section to use; defaults to the cached settings.
    """
    config = config or get_settings().logging
    log_level = getattr(logging, (level or config.level).upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(fmt or config.format),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
