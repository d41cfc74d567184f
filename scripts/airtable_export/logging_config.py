"""JSON-lines logging for the ``export`` logger tree."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

# Context attached through ``extra=`` by the scan engine.
EXTRA_FIELDS = (
    "scan_id",
    "base_id",
    "table_id",
    "records",
    "attachments",
    "attempt",
    "outcome",
    "duration_s",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name))
            for name in EXTRA_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Send ``export.*`` records to stderr as JSON, one object per line."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    logger = logging.getLogger("export")
    logger.handlers[:] = [handler]
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
