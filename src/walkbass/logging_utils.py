from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any

_RESERVED = {
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
    "event",
    "message",
}


class EventFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "event"):
            record.event = record.msg if isinstance(record.msg, str) and not record.args else "log"
        return True


class StructuredFormatter(logging.Formatter):
    def __init__(self, json_output: bool) -> None:
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", "log"),
        }
        message = record.getMessage()
        if message and message != payload["event"]:
            payload["message"] = message

        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED:
                continue
            payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        if self.json_output:
            return json.dumps(payload, default=str)

        ordered = [
            f"timestamp={payload.pop('timestamp')}",
            f"level={payload.pop('level')}",
            f"logger={payload.pop('logger')}",
            f"event={payload.pop('event')}",
        ]
        ordered.extend(f"{k}={v}" for k, v in payload.items())
        return " ".join(ordered)


def configure_logging(level: str | None = None) -> None:
    """Install the structured handler on the root logger, once.

    Level and format come from WALKBASS_LOG_LEVEL (default WARNING) and
    WALKBASS_LOG_FORMAT ("text" or "json").
    """
    root = logging.getLogger()
    if getattr(root, "_walkbass_logging_configured", False):
        if level:
            root.setLevel(level.upper())
        return

    level = (level or os.getenv("WALKBASS_LOG_LEVEL", "WARNING")).upper()
    json_output = os.getenv("WALKBASS_LOG_FORMAT", "text").lower() == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(json_output=json_output))
    handler.addFilter(EventFilter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root._walkbass_logging_configured = True  # type: ignore[attr-defined]


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    logger.log(level, event, extra={"event": event, **fields})


def elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)
