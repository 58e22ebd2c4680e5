from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any

import psycopg2

from segment_sql.core.config import get_settings
from segment_sql.core.errors import ExecutionError, SetupRequiredError
from segment_sql.services.policy.sql_tokens import SQLTokenizeError, tokenize
from segment_sql.services.postgres.connection import acquire_connection


logger = logging.getLogger(__name__)

READONLY_FUNCTION_NAME = "exec_readonly_query"
_UNDEFINED_FUNCTION_PGCODE = "42883"
_SELECT_ONLY_RE = re.compile(r"^\s*select\b", re.IGNORECASE)

READONLY_FUNCTION_DDL = """
CREATE OR REPLACE FUNCTION exec_readonly_query(query_text TEXT)
RETURNS JSONB
LANGUAGE plpgsql
SECURITY DEFINER
AS $$
DECLARE
  result JSONB;
BEGIN
  IF NOT (UPPER(TRIM(query_text)) LIKE 'SELECT%') THEN
    RAISE EXCEPTION 'Only SELECT statements are allowed';
  END IF;

  EXECUTE 'SELECT jsonb_agg(row_to_json(t)) FROM (' || query_text || ') t'
    INTO result;

  RETURN COALESCE(result, '[]'::jsonb);
END;
$$;
""".strip()


@dataclass
class ExecutionResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    count: int = 0


def _sanitize_sql(sql: str) -> str:
    text = str(sql or "").strip()
    while text.endswith(";"):
        text = text[:-1].rstrip()
    return text


def _safe_close(resource: Any) -> None:
    if resource is None:
        return
    try:
        resource.close()
    except Exception:
        # A broken handle can raise during close(); keep the original error.
        pass


def _has_top_level_row_limit(sql: str) -> bool:
    try:
        tokens = tokenize(sql)
    except SQLTokenizeError as exc:
        raise ExecutionError(f"Row cap could not be applied: {exc}") from exc
    return any(tok.depth == 0 and tok.is_word("limit", "fetch") for tok in tokens)


def apply_row_cap(sql: str, row_cap: int) -> str:
    """Bound ``sql`` to ``row_cap`` rows as the outermost limit.

    PostgreSQL rejects a second LIMIT clause, and LIMIT after FETCH FIRST,
    so a query that already bounds its rows is wrapped instead; the tighter
    of the two bounds wins.
    """
    text = _sanitize_sql(sql)
    cap = max(1, int(row_cap))
    if _has_top_level_row_limit(text):
        return f"SELECT * FROM ({text}) AS capped LIMIT {cap}"
    return f"{text} LIMIT {cap}"


def _is_missing_channel(exc: Exception) -> bool:
    pgcode = getattr(exc, "pgcode", None)
    mentions_channel = READONLY_FUNCTION_NAME in str(exc)
    if pgcode == _UNDEFINED_FUNCTION_PGCODE and mentions_channel:
        return True
    return mentions_channel and "does not exist" in str(exc).lower()


def _coerce_rows(raw: Any) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    if not isinstance(raw, list):
        raise ExecutionError(f"Unexpected result shape from {READONLY_FUNCTION_NAME}: {type(raw).__name__}")
    rows: list[dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ExecutionError(f"Unexpected row shape from {READONLY_FUNCTION_NAME}: {type(item).__name__}")
        rows.append(item)
    return rows


def execute_segment_sql(sql: str, *, request_id: str | None = None) -> ExecutionResult:
    """Run tenant-scoped segment SQL through the read-only channel.

    Fails closed: a missing DATABASE_URL or channel function raises
    ``SetupRequiredError``; no other execution path is attempted.
    """
    settings = get_settings()
    text = _sanitize_sql(sql)
    # Second, independent SELECT-only check; the channel function has a third.
    if not _SELECT_ONLY_RE.match(text):
        raise ExecutionError("Only SELECT queries are allowed", public_message="Only SELECT queries are allowed")
    limited = apply_row_cap(text, settings.row_cap)
    query_hash = hashlib.sha256(limited.encode("utf-8")).hexdigest()[:12]
    started = time.perf_counter()
    tag = str(request_id or "default")

    logger.info("Segment SQL start tag=%s qh=%s row_cap=%s", tag, query_hash, settings.row_cap)
    conn = acquire_connection()
    cur = None
    try:
        cur = conn.cursor()
        cur.execute(f"SELECT {READONLY_FUNCTION_NAME}(%s)", (limited,))
        row = cur.fetchone()
        rows = _coerce_rows(row[0] if row else None)
    except psycopg2.Error as exc:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if _is_missing_channel(exc):
            logger.warning(
                "%s is missing. Create it in the database with:\n%s",
                READONLY_FUNCTION_NAME,
                READONLY_FUNCTION_DDL,
            )
            raise SetupRequiredError(f"{READONLY_FUNCTION_NAME} is not installed: {exc}") from exc
        logger.error(
            "Segment SQL failed tag=%s qh=%s pgcode=%s elapsed_ms=%s error=%s",
            tag,
            query_hash,
            getattr(exc, "pgcode", None),
            elapsed_ms,
            exc,
        )
        raise ExecutionError(f"Segment SQL failed (query_hash={query_hash}): {exc}") from exc
    finally:
        _safe_close(cur)
        _safe_close(conn)

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info(
        "Segment SQL ok tag=%s qh=%s elapsed_ms=%s rows=%s",
        tag,
        query_hash,
        elapsed_ms,
        len(rows),
    )
    return ExecutionResult(rows=rows, count=len(rows))
