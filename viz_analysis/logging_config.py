"""
Logging setup for the analysis tools.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed once by the entry point through configure_logging():

    AUDIOVIZ_ENV=production   -> one JSON object per line
    anything else             -> "time [LEVEL] logger: message"
    AUDIOVIZ_LOG_LEVEL        -> level when none is passed (default INFO)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Any, Optional, Sequence

# Per-frame context attached with ``extra=`` by the pipeline and CLI
FRAME_FIELDS = ("frame_index", "bpm", "fps", "complexity", "volume", "path")

_JSON_ENVIRONMENTS = ("production", "prod", "staging")
_PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_PLAIN_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's creation time."""

    def __init__(self, extra_fields: Sequence[str] = FRAME_FIELDS):
        super().__init__()
        self.extra_fields = tuple(extra_fields)

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (name, getattr(record, name)) for name in self.extra_fields if hasattr(record, name)
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # numpy scalars and other odd extras fall back to str()
        return json.dumps(payload, default=str)


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("AUDIOVIZ_LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _json_requested() -> bool:
    return os.environ.get("AUDIOVIZ_ENV", "development").lower() in _JSON_ENVIRONMENTS


def configure_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    stream: Optional[IO[str]] = None,
) -> logging.Handler:
    """
    Replace the root handlers with a single stream handler.

    Args:
        level: Level name; unknown names fall back to INFO
        json_format: Force JSON (True) or plain text (False); by default
            JSON is used when $AUDIOVIZ_ENV names a deployed environment
        stream: Output stream (default stdout)

    Returns:
        The installed handler
    """
    log_level = _resolve_level(level)
    use_json = _json_requested() if json_format is None else json_format

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setLevel(log_level)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_PLAIN_FORMAT, datefmt=_PLAIN_DATEFMT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)
    return handler
