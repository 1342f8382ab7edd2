"""Logging setup driven by ``LoggingSettings``.

JSON lines by default so run summaries and per-record failures can be
shipped to a log collector as-is; ``LOG_FORMAT=text`` for local runs.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from .config import settings

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

TEXT_FORMAT = "[%(levelname)s] %(asctime)s %(name)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as structured JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Fields passed via extra=
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["error_type"] = exc_type.__name__ if exc_type else "Exception"
            payload["error_msg"] = str(exc_value)

        return json.dumps(payload, default=str, ensure_ascii=False)


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure the root logger once; later calls only adjust level and format."""
    level_name = (level or settings.logging.level).upper()
    resolved = getattr(logging, level_name, logging.INFO)
    use_json = (fmt or settings.logging.format).lower() == "json"
    formatter: logging.Formatter = JSONFormatter() if use_json else logging.Formatter(TEXT_FORMAT)

    root = logging.getLogger()
    root.setLevel(resolved)

    if not root.handlers:
        root.addHandler(logging.StreamHandler())
        if settings.logging.file:
            root.addHandler(logging.FileHandler(settings.logging.file, encoding="utf-8"))

    for handler in root.handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(resolved, logging.WARNING))
