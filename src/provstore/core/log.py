"""Logging setup for provstore entry points.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once, by the CLI or by an embedding service.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

_HANDLER_NAME = "provstore-stream"
_CONTEXT_FIELDS = ("deal_id", "state", "provider", "piece_cid")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with deal context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str | int = "INFO", json_format: bool = False) -> logging.Logger:
    """Attach a single stream handler to the ``provstore`` logger.

    Calling this again replaces the handler instead of stacking a second one.
    """
    root = logging.getLogger("provstore")
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return root


def short_cid(cid: object, width: int = 16) -> str:
    """Truncate a CID for log lines."""
    text = str(cid)
    return text if len(text) <= width else f"{text[:width]}..."
