from __future__ import annotations

import logging
from typing import Any

import psycopg2

from segment_sql.core.config import get_settings
from segment_sql.core.errors import ExecutionError, SetupRequiredError


logger = logging.getLogger(__name__)


def _connect_error(exc: Exception) -> ExecutionError:
    detail = str(exc).strip()
    lowered = detail.lower()
    if "password authentication failed" in lowered:
        return ExecutionError(
            f"PostgreSQL authentication failed: {detail}",
            public_message="Database authentication failed. Check DATABASE_URL credentials.",
        )
    return ExecutionError(
        f"PostgreSQL connection failed: {detail or exc}",
        public_message="Database is unavailable",
    )


def acquire_connection() -> Any:
    """Open a read-only session for the segment execution channel.

    The session is read-only at the transaction level and carries a
    statement timeout, independently of what the channel function does.
    """
    settings = get_settings()
    dsn = str(settings.database_url or "").strip()
    if not dsn:
        raise SetupRequiredError("DATABASE_URL is not configured")

    try:
        conn = psycopg2.connect(
            dsn,
            connect_timeout=max(1, int(settings.db_connect_timeout_sec)),
            options=f"-c statement_timeout={max(1_000, int(settings.db_statement_timeout_ms))}",
            application_name="segment-sql",
        )
    except psycopg2.OperationalError as exc:
        logger.error("PostgreSQL connect failed: %s", exc)
        raise _connect_error(exc) from exc

    try:
        conn.set_session(readonly=True)
    except psycopg2.Error as exc:
        conn.close()
        raise ExecutionError(f"Could not open read-only session: {exc}") from exc
    return conn
