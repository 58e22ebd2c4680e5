"""Structured logging helpers for the segment query pipeline."""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4

from segment_sql.core.config import get_settings


_LOGGER_NAME = "segment_sql"
_EVENT_LOGGER_NAME = "segment_sql.events"


def configure_logging() -> logging.Logger:
    """Attach one stream handler to the package logger (idempotent)."""
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logger.setLevel(level)
    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


def new_request_id() -> str:
    """Generate a request id to trace a single pipeline execution."""
    return f"sq-{uuid4().hex[:12]}"


def sql_fingerprint(sql: str) -> Dict[str, Any]:
    text = str(sql or "")
    data: Dict[str, Any] = {
        "sql_hash": hashlib.sha256(text.encode("utf-8")).hexdigest()[:12],
        "sql_len": len(text),
    }
    if get_settings().debug_sql_logging:
        data["sql"] = text
    return data


def log_event(
    event: str,
    payload: Dict[str, Any] | None = None,
    *,
    level: str = "info",
) -> None:
    """Write one structured log event in JSON format."""
    logger = logging.getLogger(_EVENT_LOGGER_NAME)
    data: Dict[str, Any] = {
        "event": event,
        "ts": datetime.now(timezone.utc).isoformat(),
        "service": "segment-sql",
        "level": level.lower(),
    }
    if payload:
        data.update(payload)

    message = json.dumps(data, ensure_ascii=False, default=str)
    writer = getattr(logger, level.lower(), logger.info)
    writer("%s", message)
