"""Structured logging helpers.

Operational events are single-line JSON objects so they can be grepped and
shipped without a parsing layer. Never pass raw message payloads here.
"""

from __future__ import annotations

import json
import logging
from typing import Any


ROOT_LOGGER_NAME = "notices"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(message)s")
    root.setLevel(level)
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.INFO,
    exc_info: Any = None,
    **fields: Any,
) -> None:
    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str), exc_info=exc_info)


def preview(text: str, limit: int = 300) -> str:
    return text if len(text) <= limit else text[:limit] + "..."
