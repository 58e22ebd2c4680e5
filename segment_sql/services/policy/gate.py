from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from segment_sql.core.errors import SQLValidationError
from segment_sql.core.logging import log_event, sql_fingerprint
from segment_sql.services.policy.sql_tokens import (
    WORD,
    SQLTokenizeError,
    extract_table_references,
    tokenize,
)
from segment_sql.services.policy.table_scope import allowed_tables_label, is_allowed_table


logger = logging.getLogger(__name__)

SELECT_ONLY_REASON = "SELECT-only: only SELECT statements are allowed"
MULTIPLE_STATEMENTS_REASON = "multiple statements not allowed"

FORBIDDEN_KEYWORDS: tuple[str, ...] = (
    "DELETE",
    "UPDATE",
    "INSERT",
    "DROP",
    "ALTER",
    "TRUNCATE",
    "CREATE",
    "GRANT",
    "REVOKE",
    "EXECUTE",
    "EXEC",
    "INTO",
    "SET",
    "MERGE",
    "COPY",
    "CALL",
    "DO",
)
FORBIDDEN_MARKERS: tuple[str, ...] = ("--", "/*", "*/")
FORBIDDEN_FUNCTIONS: tuple[str, ...] = (
    "pg_sleep",
    "pg_sleep_for",
    "pg_sleep_until",
    "pg_terminate",
    "pg_terminate_backend",
    "pg_cancel_backend",
    "pg_read_file",
    "pg_read_binary_file",
    "pg_ls_dir",
    "lo_import",
    "lo_export",
    "dblink",
    "set_config",
)
# Prefixes of function families that run SQL or touch files and connections
# outside the read-only session; every sibling name is matched.
FORBIDDEN_FUNCTION_PREFIXES: tuple[str, ...] = (
    "dblink",
    "pg_ls_",
    "pg_read_",
    "query_to_xml",
    "table_to_xml",
    "cursor_to_xml",
    "schema_to_xml",
    "database_to_xml",
)
_SET_OPERATIONS = ("union", "intersect", "except")

_SELECT_PREFIX_RE = re.compile(r"^SELECT\b", re.IGNORECASE)
_LEADING_WORD_RE = re.compile(r"^([A-Za-z_]+)")
_TRAILING_SEMICOLON_RE = re.compile(r";\s*$")


def _word_pattern(word: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE)


# Alphabetic entries use word boundaries so columns such as updated_at or
# settings_count are not flagged; markers have no boundaries to anchor on.
_DENY_PATTERNS: tuple[tuple[str, str | None, re.Pattern[str]], ...] = (
    tuple(("keyword", kw, _word_pattern(kw)) for kw in FORBIDDEN_KEYWORDS)
    + tuple(("token", marker, re.compile(re.escape(marker))) for marker in FORBIDDEN_MARKERS)
    + tuple(("function", fn, _word_pattern(fn)) for fn in FORBIDDEN_FUNCTIONS)
    + tuple(
        ("function", None, re.compile(rf"\b{re.escape(prefix)}\w*\b", re.IGNORECASE))
        for prefix in FORBIDDEN_FUNCTION_PREFIXES
    )
)


@dataclass(frozen=True)
class ValidationVerdict:
    valid: bool
    reason: str | None = None


def _reject(reason: str) -> ValidationVerdict:
    return ValidationVerdict(valid=False, reason=reason)


def _check_select_only(text: str) -> ValidationVerdict | None:
    if _SELECT_PREFIX_RE.match(text):
        return None
    leading = _LEADING_WORD_RE.match(text)
    if leading and leading.group(1).upper() in FORBIDDEN_KEYWORDS:
        return _reject(f'SELECT-only: statement begins with forbidden keyword "{leading.group(1).upper()}"')
    return _reject(SELECT_ONLY_REASON)


def _check_deny_list(text: str) -> ValidationVerdict | None:
    for kind, token, pattern in _DENY_PATTERNS:
        match = pattern.search(text)
        if match:
            return _reject(f'forbidden {kind} "{token or match.group(0).lower()}"')
    return None


def _check_single_statement(text: str) -> ValidationVerdict | None:
    body = _TRAILING_SEMICOLON_RE.sub("", text, count=1)
    if ";" in body:
        return _reject(MULTIPLE_STATEMENTS_REASON)
    return None


def _check_structure(text: str) -> ValidationVerdict | None:
    try:
        tokens = tokenize(text)
        refs = extract_table_references(text, tokens)
    except SQLTokenizeError as exc:
        return _reject(f"unparseable SQL: {exc}")

    for ref in refs:
        if not ref.is_identifier:
            return _reject(f"subquery or table function after {ref.keyword} not allowed")
        if not is_allowed_table(ref.table_name):
            return _reject(
                f'table "{ref.table_name}" is not allowed (allowed: {allowed_tables_label()})'
            )

    select_count = 0
    for tok in tokens:
        if tok.kind != WORD:
            continue
        if tok.lower == "select":
            select_count += 1
            if tok.depth > 0 or select_count > 1:
                return _reject("nested SELECT (subquery) not allowed")
        elif tok.lower in _SET_OPERATIONS:
            return _reject(f'set operation "{tok.text.upper()}" not allowed')
    return None


def validate_generated_sql(sql: str) -> ValidationVerdict:
    """Decide whether ``sql`` may be rewritten and executed.

    Checks run in a fixed order and stop at the first failure:
    SELECT-only, deny-list, single statement, table allow-list, then the
    structural constructs the tenant rewriter cannot scope (subqueries,
    table functions, set operations). Pure and deterministic.
    """
    text = str(sql or "").strip()
    for check in (_check_select_only, _check_deny_list, _check_single_statement, _check_structure):
        verdict = check(text)
        if verdict is not None:
            return verdict
    return ValidationVerdict(valid=True)


def ensure_valid_sql(sql: str, *, generated: bool = False, request_id: str | None = None) -> str:
    """Validate ``sql`` and return it trimmed, or raise ``SQLValidationError``."""
    text = str(sql or "").strip()
    verdict = validate_generated_sql(text)
    if verdict.valid:
        return text
    reason = verdict.reason or SELECT_ONLY_REASON
    logger.warning("Segment SQL rejected generated=%s reason=%s", generated, reason)
    log_event(
        "segment_sql_rejected",
        {"request_id": request_id, "generated": generated, "reason": reason, **sql_fingerprint(text)},
        level="warning",
    )
    raise SQLValidationError(reason, text, generated=generated)
