from __future__ import annotations

import json
import logging
import os
import sys
from typing import Optional


# HTTP client chatter (one line per tile / route request) stays at WARNING
_NOISY_LOGGERS = ("urllib3", "requests")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 1700000000123, "lvl": "INFO", "name": "elevation.refresh",
        "thread": "elev-refresh-worker", "msg": "text", "extra": {...} }

    Tile fetches, refreshes and batch lookups run on named pool threads, so the
    thread name is part of every record.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(record.created * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        ctx = getattr(record, "extra", None)
        if isinstance(ctx, dict):
            payload["extra"] = ctx
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = logging.getLevelName(name)
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None) -> None:
    """
    Install the JSON stdout handler on the root logger.

    Level: explicit `level`, else env LOG_LEVEL, else INFO. Calling again only
    adjusts the level when one is given explicitly.
    """
    root = logging.getLogger()
    lvl = _resolve_level(level)

    if getattr(root, "_cycling_configured", False):
        if level:
            root.setLevel(lvl)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(lvl, logging.WARNING))
    root._cycling_configured = True  # type: ignore[attr-defined]
