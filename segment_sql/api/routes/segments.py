from __future__ import annotations

import hmac

from fastapi import APIRouter, Header
from pydantic import BaseModel, Field

from segment_sql.core.config import get_settings
from segment_sql.core.errors import UnauthorizedError
from segment_sql.core.logging import new_request_id
from segment_sql.services.agents.orchestrator import (
    MAX_QUERY_CHARS,
    MIN_QUERY_CHARS,
    SegmentQuery,
    handle_segment_query,
)

router = APIRouter()


class SegmentQueryRequest(BaseModel):
    query: str = Field(min_length=MIN_QUERY_CHARS, max_length=MAX_QUERY_CHARS)
    execute: bool = False
    sql: str | None = None


def _check_admin_token(supplied: str | None) -> None:
    expected = get_settings().admin_api_token
    if not expected:
        return
    if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise UnauthorizedError("Admin token missing or mismatched")


def _normalize_tenant(value: str | None) -> str | None:
    tenant = str(value or "").strip()
    return tenant or None


@router.post("/ai-query")
def segment_ai_query(
    req: SegmentQueryRequest,
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-Id"),
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
):
    _check_admin_token(x_admin_token)
    request = SegmentQuery(query=req.query, execute=req.execute, sql=req.sql)
    return handle_segment_query(
        request,
        _normalize_tenant(x_tenant_id),
        request_id=new_request_id(),
    )
