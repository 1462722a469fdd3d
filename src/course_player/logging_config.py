"""Structured logging for the player.

JSON lines in production, a console renderer elsewhere (uncolored under
``testing``). Token values are masked wherever they appear: top-level
keys, nested header mappings, and ``Bearer`` strings.

Startup hook: call :func:`setup_logging` once with the loaded settings
before the first session is created::

    settings = get_settings()
    setup_logging(settings)
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping
from typing import IO, Any

import structlog

from course_player.config import Environment, Settings

REDACTED = "***REDACTED***"

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "access_token",
        "accesstoken",
        "api_key",
        "authorization",
        "password",
        "refresh_token",
        "refreshtoken",
        "secret",
        "token",
    }
)

_BEARER_RE = re.compile(r"(?i)\bbearer\s+\S+")

# Loggers that log every request line at INFO.
QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_KEYS else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str):
        # (name, value) header pairs as stored on VideoSource
        if value[0].lower() in SENSITIVE_KEYS:
            return (value[0], REDACTED)
        return (value[0], _redact(value[1]))
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v) for v in value)
    if isinstance(value, str):
        return _BEARER_RE.sub(f"Bearer {REDACTED}", value)
    return value


def _redact_sensitive_keys(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Mask sensitive keys and bearer tokens, including nested headers."""
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif key != "event":
            event_dict[key] = _redact(value)
    return event_dict


def _renderer(environment: str) -> structlog.types.Processor:
    if environment == Environment.PRODUCTION:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=environment != Environment.TESTING)


def configure_logging(
    environment: str = Environment.DEVELOPMENT,
    log_level: str = "INFO",
    *,
    stream: IO[str] | None = None,
) -> None:
    """Configure the structlog processor chain and the stdlib root logger.

    Args:
        environment: an :class:`Environment` value; ``production`` renders
            JSON, ``testing`` an uncolored console, anything else colors.
        log_level: Python log level name (DEBUG, INFO, WARNING, etc.).
        stream: destination for log lines, stdout by default.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_sensitive_keys,
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

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(environment),
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    quiet_level = max(logging.WARNING, root_logger.level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def setup_logging(
    settings: Settings,
    *,
    log_level: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure logging from ``settings``; ``log_level`` overrides it."""
    configure_logging(
        settings.environment, log_level or settings.log_level, stream=stream
    )
    structlog.get_logger().debug(
        "logging_configured",
        environment=settings.environment.value,
        log_level=(log_level or settings.log_level).upper(),
    )
