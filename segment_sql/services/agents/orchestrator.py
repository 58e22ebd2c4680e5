"""Segment query pipeline: preview, generate-and-run, run-supplied.

Every path that executes SQL passes through the validator first, including
SQL the caller got from an earlier preview: that text crossed the client
boundary and is re-checked from scratch. Nothing is cached between calls.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from segment_sql.core.errors import InputError, SQLValidationError
from segment_sql.core.logging import log_event, new_request_id, sql_fingerprint
from segment_sql.services.agents.sql_generator import generate_segment_sql
from segment_sql.services.policy.gate import ensure_valid_sql
from segment_sql.services.policy.sql_tokens import SQLTokenizeError
from segment_sql.services.policy.tenant_filter import inject_tenant_filter
from segment_sql.services.postgres.executor import execute_segment_sql


logger = logging.getLogger(__name__)

MIN_QUERY_CHARS = 1
MAX_QUERY_CHARS = 500
UNREGISTERED_NAME = "未登録"


@dataclass(frozen=True)
class SegmentQuery:
    query: str
    execute: bool = False
    sql: str | None = None


def check_query_text(query: str) -> str:
    text = str(query or "")
    if len(text) < MIN_QUERY_CHARS or not text.strip():
        raise InputError("query is required")
    if len(text) > MAX_QUERY_CHARS:
        raise InputError(f"query must be at most {MAX_QUERY_CHARS} characters")
    return text


def _shape_patients(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    patients: list[dict[str, Any]] = []
    for row in rows:
        name = row.get("name")
        patients.append(
            {
                "patient_id": row.get("patient_id"),
                "name": name if isinstance(name, str) and name.strip() else UNREGISTERED_NAME,
            }
        )
    return patients


def _run_validated(sql: str, tenant_id: str | None, request_id: str) -> dict[str, Any]:
    try:
        scoped_sql = inject_tenant_filter(sql, tenant_id)
    except SQLTokenizeError as exc:
        raise SQLValidationError(f"unparseable SQL: {exc}", sql) from exc

    result = execute_segment_sql(scoped_sql, request_id=request_id)
    patients = _shape_patients(result.rows)
    log_event(
        "segment_sql_executed",
        {
            "request_id": request_id,
            "tenant_scoped": bool(tenant_id),
            "count": result.count,
            **sql_fingerprint(sql),
        },
    )
    return {"ok": True, "patients": patients, "count": len(patients), "sql": sql}


def _generate_validated(query: str, request_id: str) -> str:
    generated = generate_segment_sql(query)
    log_event("segment_sql_generated", {"request_id": request_id, **sql_fingerprint(generated)})
    return ensure_valid_sql(generated, generated=True, request_id=request_id)


def preview_segment(
    query: str,
    tenant_id: str | None = None,
    *,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Generate and validate only. The rewriter never runs, so ``tenant_id``
    does not reach the returned SQL."""
    rid = request_id or new_request_id()
    text = check_query_text(query)
    sql = _generate_validated(text, rid)
    return {"ok": True, "sql": sql, "preview": True}


def generate_and_run_segment(
    query: str,
    tenant_id: str | None,
    *,
    request_id: str | None = None,
) -> dict[str, Any]:
    rid = request_id or new_request_id()
    text = check_query_text(query)
    sql = _generate_validated(text, rid)
    return _run_validated(sql, tenant_id, rid)


def run_supplied_segment(
    sql: str,
    tenant_id: str | None,
    *,
    request_id: str | None = None,
) -> dict[str, Any]:
    rid = request_id or new_request_id()
    validated = ensure_valid_sql(sql, request_id=rid)
    return _run_validated(validated, tenant_id, rid)


def handle_segment_query(
    request: SegmentQuery,
    tenant_id: str | None,
    *,
    request_id: str | None = None,
) -> dict[str, Any]:
    rid = request_id or new_request_id()
    check_query_text(request.query)
    if not request.execute:
        mode = "preview"
    elif request.sql:
        mode = "run_supplied"
    else:
        mode = "generate_and_run"
    logger.info("Segment query request_id=%s mode=%s tenant_scoped=%s", rid, mode, bool(tenant_id))

    if mode == "preview":
        return preview_segment(request.query, tenant_id, request_id=rid)
    if mode == "run_supplied":
        return run_supplied_segment(request.sql or "", tenant_id, request_id=rid)
    return generate_and_run_segment(request.query, tenant_id, request_id=rid)
