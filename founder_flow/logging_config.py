"""Logging setup for the founder-flow backend.

- readable: colored single-line output for local development
- json: one JSON object per line for log aggregation
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from .config import Settings

PACKAGE_LOGGER = "founder_flow"

# Extra attributes copied into JSON records when a call site passes them.
_EXTRA_FIELDS = (
    "session_id",
    "customer_id",
    "roadmap_id",
    "milestone_id",
    "stage",
    "error_code",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        base = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(settings: Settings) -> logging.Logger:
    """Attach a single stderr handler to the package logger.

    Safe to call repeatedly (each ``create_app`` call does); existing handlers
    installed by a previous call are replaced rather than duplicated.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    level = logging.getLevelName(settings.log_level)
    logger.setLevel(level if isinstance(level, int) else logging.INFO)

    for handler in list(logger.handlers):
        if getattr(handler, "_founder_flow", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if settings.log_format == "json" else ReadableFormatter())
    handler._founder_flow = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = True
    return logger
