# logging.py

import logging
from collections.abc import Callable
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog
from structlog.contextvars import merge_contextvars

from Lanforge.config import Settings

_REDACTED = "[REDACTED]"
_SENSITIVE_SUFFIXES = ("_token", "_secret", "_key", "_password")
# Third-party loggers that should flow into the root JSON handlers
_PROPAGATED = ("sqlalchemy", "alembic", "aiosqlite", "asyncio")


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    # Renders both structlog events and plain stdlib records as one JSON line
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=[
            structlog.processors.add_log_level,
            merge_contextvars,
        ],
    )


def _attach(
    handlers: list[logging.Handler],
    level_name: str,
    make: Callable[[], logging.Handler],
    formatter: logging.Formatter,
) -> None:
    if level_name.upper() == "NONE":
        return
    handler = make()
    handler.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    handler.setFormatter(formatter)
    handlers.append(handler)


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog on top of stdlib logging.

    Console and rotating-file handlers each get their own level from
    ``settings`` (``NONE`` leaves the handler out). With logging disabled
    the root logger only gets a ``NullHandler``.
    """
    settings = settings or Settings()
    if not settings.logging_enabled:
        logging.basicConfig(level=logging.CRITICAL + 1, handlers=[logging.NullHandler()], force=True)
        return

    logging.captureWarnings(True)
    formatter = _json_formatter()
    handlers: list[logging.Handler] = []

    _attach(handlers, settings.logging_console, logging.StreamHandler, formatter)

    def _file_handler() -> logging.Handler:
        path = Path(settings.logging_file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            path,
            maxBytes=settings.logging_max_bytes,
            backupCount=settings.logging_backup_count,
            encoding="utf-8",
        )

    _attach(handlers, settings.logging_file, _file_handler, formatter)

    level = getattr(logging, settings.logging_level.upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name in _PROPAGATED:
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def redact_settings(settings: Settings) -> dict:
    """Return settings as a JSON-safe dict with credentials masked.

    Fields named like ``*_token``/``*_secret``/``*_key``/``*_password`` and
    the user-info part of ``database_url`` are replaced.
    """
    data = settings.model_dump(mode="json")
    for k in data:
        if k.endswith(_SENSITIVE_SUFFIXES):
            data[k] = _REDACTED
    scheme, sep, rest = str(data.get("database_url") or "").partition("://")
    if sep and "@" in rest:
        data["database_url"] = f"{scheme}://{_REDACTED}@{rest.rsplit('@', 1)[1]}"
    return data
