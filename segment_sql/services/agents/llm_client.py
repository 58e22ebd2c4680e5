from __future__ import annotations

from typing import Any

from openai import OpenAI

from segment_sql.core.config import get_settings
from segment_sql.core.errors import GenerationError, GeneratorNotConfiguredError


class LLMClient:
    def __init__(self) -> None:
        settings = get_settings()
        self._settings = settings
        if not settings.openai_api_key:
            raise GeneratorNotConfiguredError("OPENAI_API_KEY is not configured")
        self.client = OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url or None,
            organization=settings.openai_org or None,
            timeout=settings.llm_timeout_sec,
            max_retries=0,
        )

    def chat(
        self,
        messages: list[dict[str, str]],
        model: str,
        max_tokens: int,
    ) -> dict[str, Any]:
        response = self.client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=self._settings.llm_temperature,
        )
        if not response.choices:
            raise GenerationError("LLM response has no choices")
        content = response.choices[0].message.content or ""
        total_tokens = response.usage.total_tokens if response.usage is not None else 0
        return {"content": content, "usage": {"total_tokens": total_tokens}}
