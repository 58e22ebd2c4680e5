from __future__ import annotations

from segment_sql.services.policy.sql_tokens import unquote_identifier


ALLOWED_TABLES: tuple[str, ...] = ("patients", "orders", "intake", "reservations", "reorders")
TENANT_COLUMN = "tenant_id"


def normalize_table_name(name: str | None) -> str:
    parts = [unquote_identifier(part.strip()) for part in str(name or "").split(".")]
    return ".".join(part for part in parts if part).lower()


def is_allowed_table(name: str | None) -> bool:
    return normalize_table_name(name) in ALLOWED_TABLES


def allowed_tables_label() -> str:
    return ", ".join(ALLOWED_TABLES)
