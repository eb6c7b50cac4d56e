"""Shared structlog/stdlib logging bootstrap for the API process."""

import logging
import logging.config
import os

import structlog
from structlog.dev import ConsoleRenderer

_CONFIGURED = False

# Shared processors used by both structlog and the stdlib logging bridge.
_SHARED_PROCESSORS: list = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _is_local_environment() -> bool:
    env = os.environ.get("ENVIRONMENT", "").lower()
    return env in ("", "local", "development", "dev", "test")


def configure_logging(log_level: str) -> None:
    """Configure structured logging with environment-appropriate format.

    - Local/development: human-readable console output with colors
    - Everywhere else: JSON lines for log aggregation
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        ConsoleRenderer(colors=True, pad_event=40)
        if _is_local_environment()
        else structlog.processors.JSONRenderer()
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                    "foreign_pre_chain": _SHARED_PROCESSORS,
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "structured",
                    "stream": "ext://sys.stdout",
                }
            },
            "root": {
                "handlers": ["default"],
                "level": log_level,
            },
            "loggers": {
                "uvicorn.access": {"level": "INFO"},
                "uvicorn.error": {"level": "INFO"},
                "asyncpg": {"level": "WARNING"},
            },
        }
    )

    _CONFIGURED = True
