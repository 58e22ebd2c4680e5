"""Tenant isolation rewrite for validated segment SQL.

The generator is told never to filter by tenant, so this module is the
only place isolation is enforced. Table references are re-derived from
the SQL text here rather than taken from the validator's scan.
"""
from __future__ import annotations

import logging

from segment_sql.services.policy.sql_tokens import (
    SEMICOLON,
    Token,
    TableReference,
    WORD,
    extract_table_references,
    tokenize,
)
from segment_sql.services.policy.table_scope import TENANT_COLUMN, is_allowed_table


logger = logging.getLogger(__name__)

# Clauses that must follow WHERE; a missing WHERE is inserted before the first.
_AFTER_WHERE_KEYWORDS = {"group", "order", "having", "limit", "offset", "fetch", "window"}
_NEEDS_BY = {"group", "order"}


def _sql_literal(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def build_tenant_conjunction(refs: list[TableReference], tenant_id: str) -> str:
    literal = _sql_literal(tenant_id)
    conditions: list[str] = []
    for ref in refs:
        if not ref.is_identifier or not is_allowed_table(ref.table_name):
            continue
        conditions.append(f"{ref.alias}.{TENANT_COLUMN} = {literal}")
    return " AND ".join(conditions)


def _is_clause_boundary(tokens: list[Token], index: int) -> bool:
    tok = tokens[index]
    if tok.depth != 0 or tok.kind != WORD or tok.lower not in _AFTER_WHERE_KEYWORDS:
        return False
    if tok.lower in _NEEDS_BY:
        return index + 1 < len(tokens) and tokens[index + 1].is_word("by")
    return True


def _first_boundary(tokens: list[Token], start: int) -> int | None:
    for index in range(start, len(tokens)):
        if _is_clause_boundary(tokens, index):
            return index
    return None


def _body_end(sql: str, tokens: list[Token]) -> int:
    if tokens and tokens[-1].kind == SEMICOLON:
        return tokens[-1].start
    return len(sql.rstrip())


def inject_tenant_filter(sql: str, tenant_id: str | None) -> str:
    """Return ``sql`` with ``alias.tenant_id = '<tenant>'`` ANDed for every
    allow-listed table reference.

    ``tenant_id`` of None/empty is the single-tenant deployment mode and
    returns the SQL unchanged. A query without table references (for
    example a constant SELECT) is also returned unchanged.
    """
    if not tenant_id:
        logger.debug("Tenant filter skipped: no tenant id (single-tenant mode)")
        return sql

    tokens = tokenize(sql)
    refs = extract_table_references(sql, tokens)
    conjunction = build_tenant_conjunction(refs, tenant_id)
    if not conjunction:
        return sql

    where_index = next(
        (i for i, tok in enumerate(tokens) if tok.depth == 0 and tok.is_word("where")),
        None,
    )

    if where_index is None:
        boundary = _first_boundary(tokens, 0)
        if boundary is not None:
            insert_at = tokens[boundary].start
            lead = "" if insert_at > 0 and sql[insert_at - 1].isspace() else " "
            return f"{sql[:insert_at]}{lead}WHERE {conjunction} {sql[insert_at:]}"
        body = sql[: _body_end(sql, tokens)].rstrip()
        tail = ";" if tokens and tokens[-1].kind == SEMICOLON else ""
        return f"{body} WHERE {conjunction}{tail}"

    where_tok = tokens[where_index]
    boundary = _first_boundary(tokens, where_index + 1)
    clause_end = tokens[boundary].start if boundary is not None else _body_end(sql, tokens)
    predicate = sql[where_tok.end : clause_end]
    has_top_level_or = any(
        tok.depth == 0 and tok.is_word("or")
        for tok in tokens[where_index + 1 : boundary if boundary is not None else len(tokens)]
    )
    if not has_top_level_or:
        return f"{sql[: where_tok.end]} {conjunction} AND{predicate}{sql[clause_end:]}"

    # a OR b must not escape the tenant predicate: t AND (a OR b)
    core = predicate.strip()
    trailing = predicate[len(predicate.rstrip()) :]
    return f"{sql[: where_tok.end]} {conjunction} AND ({core}){trailing}{sql[clause_end:]}"
