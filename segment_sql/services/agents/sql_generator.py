from __future__ import annotations

import logging
import re

from segment_sql.core.config import get_settings
from segment_sql.core.errors import GenerationError, SegmentQueryError
from segment_sql.services.agents.llm_client import LLMClient
from segment_sql.services.agents.prompts import SEGMENT_SYSTEM_PROMPT


logger = logging.getLogger(__name__)

_SQL_FENCE_RE = re.compile(r"```(?:sql)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def extract_sql(text: str) -> str:
    """Return the first fenced code block's body, else the whole text."""
    raw = str(text or "")
    fence_match = _SQL_FENCE_RE.search(raw)
    candidate = fence_match.group(1) if fence_match else raw
    return candidate.strip()


def generate_segment_sql(question: str, *, client: LLMClient | None = None) -> str:
    """Ask the generator for segment SQL. The result is untrusted text."""
    settings = get_settings()
    llm = client or LLMClient()
    messages = [
        {"role": "system", "content": SEGMENT_SYSTEM_PROMPT},
        {"role": "user", "content": question},
    ]
    try:
        response = llm.chat(
            messages=messages,
            model=settings.segment_model,
            max_tokens=max(200, int(settings.llm_max_output_tokens)),
        )
    except SegmentQueryError:
        raise
    except Exception as exc:
        logger.exception("Segment SQL generation call failed")
        raise GenerationError(f"LLM call failed: {exc}") from exc

    sql = extract_sql(response.get("content", ""))
    if not sql:
        raise GenerationError("LLM returned no SQL")
    logger.info(
        "Segment SQL generated model=%s chars=%s total_tokens=%s",
        settings.segment_model,
        len(sql),
        (response.get("usage") or {}).get("total_tokens", 0),
    )
    return sql
