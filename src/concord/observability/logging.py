"""Structured logging for concord.

Log records carry the current user, request key and topic when they are
set through LogContext. Production output is one JSON object per line;
development output is a coloured single line.

Usage:
    configure_logging(json_format=False, level="DEBUG")

    with LogContext(user_id="u-1"):
        logger.info("Evaluating submission")  # Includes user_id
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

user_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("user_id", default="")
request_key_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_key", default="")
topic_var: contextvars.ContextVar[str] = contextvars.ContextVar("topic", default="")

_CONTEXT_VARS: dict[str, contextvars.ContextVar[str]] = {
    "user_id": user_id_var,
    "request_key": request_key_var,
    "topic": topic_var,
}

# Console labels; request keys embed serialized params and are cut short
_CONSOLE_LABELS = (("user_id", "user", None), ("request_key", "key", 40), ("topic", "topic", None))


def current_context() -> dict[str, str]:
    """Return the log context variables that are set."""
    return {name: value for name, var in _CONTEXT_VARS.items() if (value := var.get())}


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    {"timestamp": "...", "level": "WARNING", "logger": "concord.events.bus",
     "message": "Circular emission detected for 'topic:liked'", "topic": "topic:liked"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(current_context())

        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc) if exc else None,
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for development.

    2026-01-10 12:34:56 | INFO     | concord.dedup | Request settled | user=u-1
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname
        if self.use_colors:
            level = f"{self.COLORS.get(level, '')}{level}{self.RESET}"

        context = current_context()
        parts = [
            f"{label}={context[name][:limit]}"
            for name, label, limit in _CONSOLE_LABELS
            if name in context
        ]
        suffix = f" | {' '.join(parts)}" if parts else ""

        result = f"{timestamp} | {level:8} | {record.name} | {record.getMessage()}{suffix}"
        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)
        return result


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Replace the root handlers with one stderr handler in the chosen format."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else ConsoleFormatter())
    root_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class LogContext:
    """Temporarily set log context variables; unknown keys are ignored.

    with LogContext(user_id="u-1", topic="topic:liked"):
        logger.info("Handling like")
    """

    def __init__(self, **kwargs: str) -> None:
        self.extra = kwargs
        self._tokens: dict[str, contextvars.Token[str]] = {}

    def __enter__(self) -> LogContext:
        for key, value in self.extra.items():
            var = _CONTEXT_VARS.get(key)
            if var is not None:
                self._tokens[key] = var.set(value)
        return self

    def __exit__(self, *args: Any) -> None:
        for key, token in self._tokens.items():
            _CONTEXT_VARS[key].reset(token)
        self._tokens.clear()
