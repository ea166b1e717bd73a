"""Logging setup for processes embedding the permission engine.

Modules log through ``logging.getLogger(__name__)``; structured context goes in
``extra`` (``project_id``, ``team_id``, ``permission_id`` ...) and is rendered as
top-level JSON keys by ``JsonFormatter``.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("LOG_JSON", "1").lower() in {"1", "true", "yes"}

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys() | {"message", "asctime"}
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def setup_logging(level: str | None = None, json_format: bool | None = None) -> None:
    resolved_level = logging.getLevelName((level or LOG_LEVEL).upper())
    if not isinstance(resolved_level, int):
        resolved_level = logging.INFO
    use_json = LOG_JSON if json_format is None else json_format

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(resolved_level)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root_logger.addHandler(handler)
