"""Logging setup: human-readable text or JSON lines.

When PIILENS_LOG_FORMAT=json, all log output is JSON-lines (one object per
line) so it can be shipped to a log aggregator as-is.  The default ``text``
format matches the classic ``asctime [LEVEL] name: message`` layout.

Every handler carries a :class:`PIISafeFilter`; the pipeline logs layer
outcomes and provider failures, and those messages must never leak the
values being detected.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

_SCRUB_PATTERNS = (
    re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
    re.compile(r"\b(?:\d[ -]?){12,18}\d\b"),
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
)


class PIISafeFilter(logging.Filter):
    """Replace e-mail addresses, card-like digit runs and SSNs with [REDACTED]."""

    def _sanitize(self, value: object) -> object:
        if not isinstance(value, str):
            return value
        for pattern in _SCRUB_PATTERNS:
            value = pattern.sub("[REDACTED]", value)
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._sanitize(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._sanitize(item) for item in record.args)
        elif isinstance(record.args, dict):
            record.args = {key: self._sanitize(value) for key, value in record.args.items()}
        return True


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line.

    - `severity` carries the level name
    - `timestamp` is RFC-3339 in UTC
    - selected ``extra={...}`` fields are merged at top level
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in ("layer", "provider", "duration_ms", "error_type", "detections"):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info and record.exc_info[2]:
            payload["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Exception",
                "message": str(record.exc_info[1]) if record.exc_info[1] else "",
                "stacktrace": "".join(traceback.format_exception(*record.exc_info)),
            }

        return json.dumps(payload, default=str, ensure_ascii=False)


def setup_logging(log_format: str = "text", level: str = "INFO") -> None:
    """Configure root logging.

    Args:
        log_format: "json" for structured JSON lines, "text" for human-readable.
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers (avoid duplicates on reload)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(PIISafeFilter())

    if log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        ))

    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
