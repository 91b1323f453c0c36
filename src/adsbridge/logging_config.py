from __future__ import annotations

import logging
import os
from logging.config import dictConfig
from typing import Iterable, Sequence

LOG_LEVEL_ENV = "ADSBRIDGE_LOG_LEVEL"

_DEFAULT_EXTRA_KEYS = (
    "sink",
    "channel",
    "interval_ms",
    "count",
)

_configured = False


class ContextualFormatter(logging.Formatter):
    """Appends selected `extra=` fields to the message as key=value pairs."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _DEFAULT_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = [
            f"{key}={getattr(record, key)}"
            for key in self._extra_keys
            if getattr(record, key, None) is not None
        ]
        if context:
            return f"{message} | {' '.join(context)}"
        return message


def resolve_log_level(level: str | int | None = None) -> str | int:
    if level is not None and level != "":
        return level.upper() if isinstance(level, str) else level
    value = os.getenv(LOG_LEVEL_ENV, "").strip()
    return value.upper() or "INFO"


def configure_logging(level: str | int | None = None, force: bool = False) -> None:
    global _configured
    if _configured and not force:
        return

    log_level = resolve_log_level(level)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": ContextualFormatter,
                    "fmt": "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "extra_keys": list(_DEFAULT_EXTRA_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "level": log_level,
                    "formatter": "contextual",
                }
            },
            "root": {"handlers": ["default"], "level": log_level},
        }
    )
    _configured = True
