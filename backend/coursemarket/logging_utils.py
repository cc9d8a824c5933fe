from __future__ import annotations

import json
import logging
import os
from logging.config import dictConfig
from typing import Any, Dict

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


_REQUEST_FIELDS = ("request_id", "user_id", "path")


class JSONFormatter(logging.Formatter):
    """
    Render log records as JSON lines. Request fields sit at the top level so
    log queries can filter on them; any other extras go under ``context``.
    """

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting only
        data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _REQUEST_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                data[field] = value
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
            and key not in _REQUEST_FIELDS
            and value is not None
        }
        if extras:
            data["context"] = extras
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None) -> None:
    """
    Configure global logging to emit JSON lines with request context attached.
    The level defaults to ``LOG_LEVEL`` from the environment. Safe to call
    multiple times.
    """

    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_context": {
                "()": "coursemarket.logging_context.RequestContextFilter",
            }
        },
        "formatters": {
            "json": {
                "()": "coursemarket.logging_utils.JSONFormatter",
                "datefmt": "%Y-%m-%dT%H:%M:%S%z",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "filters": ["request_context"],
                "level": level,
            }
        },
        "root": {
            "handlers": ["default"],
            "level": level,
        },
    }
    dictConfig(config)
