from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

EXTRA_FIELDS = (
    "task",
    "actor",
    "target",
    "online",
    "opened",
    "closed",
    "updated",
    "failed",
    "duration_ms",
    "error",
    "state",
    "path",
    "strategy",
    "matches",
    "tasks",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        # attach extra fields if present
        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger  # avoid double handlers in tests

    logger.setLevel(level.upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def set_level(level: str, *names: str) -> None:
    """
    Re-level already created loggers (config is loaded after module import).
    """
    for name in names:
        get_logger(name).setLevel(level.upper())
