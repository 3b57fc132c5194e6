"""Logging setup for scripts that drive the risk engine.

Library modules only create loggers with ``logging.getLogger(__name__)``;
``configure_logging`` is for applications and is never called on import.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional, Union

TEXT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key in ("scenario_id", "num_trials"):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        return json.dumps(payload, separators=(",", ":"))


def configure_logging(level: Union[int, str, None] = None,
                      fmt: Optional[str] = None) -> logging.Handler:
    """Configure the root logger with plain text or JSON output on stdout.

    Args:
        level: Log level; defaults to the LOG_LEVEL env var, then INFO
        fmt: 'json' or 'text'; defaults to the LOG_FORMAT env var, then 'text'

    Returns:
        The installed handler
    """
    fmt = (fmt or os.getenv("LOG_FORMAT", "text")).lower()
    if fmt not in ("text", "json"):
        raise ValueError(f"Unknown log format: {fmt}")
    level = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = level.upper()

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    return handler
