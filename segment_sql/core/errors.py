"""Typed failures of the segment query pipeline.

Every error carries the HTTP status it maps to and a ``public_message``
that is safe to show to the caller. Internal detail stays in ``str(exc)``
and only reaches the server log.
"""
from __future__ import annotations


class SegmentQueryError(Exception):
    status_code = 500
    default_public_message = "Segment query failed"

    def __init__(self, message: str = "", *, public_message: str | None = None) -> None:
        super().__init__(message or self.default_public_message)
        self.public_message = public_message or self.default_public_message

    def to_payload(self) -> dict[str, object]:
        return {"ok": False, "error": self.public_message}


class InputError(SegmentQueryError):
    status_code = 422
    default_public_message = "Invalid request"

    def __init__(self, message: str) -> None:
        super().__init__(message, public_message=message)


class UnauthorizedError(SegmentQueryError):
    status_code = 401
    default_public_message = "Unauthorized"


class SQLValidationError(SegmentQueryError):
    """The SQL violated the read-only/tenant policy. Terminal."""

    status_code = 400

    def __init__(self, reason: str, sql: str, *, generated: bool = False) -> None:
        prefix = "Generated SQL failed the safety check" if generated else "SQL failed the safety check"
        message = f"{prefix}: {reason}"
        super().__init__(message, public_message=message)
        self.reason = reason
        self.sql = sql

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["sql"] = self.sql
        return payload


class GenerationError(SegmentQueryError):
    status_code = 502
    default_public_message = "AI SQL generation failed"


class GeneratorNotConfiguredError(GenerationError):
    status_code = 500
    default_public_message = "OPENAI_API_KEY is not configured"


class ExecutionError(SegmentQueryError):
    status_code = 500
    default_public_message = "Query execution failed"


class SetupRequiredError(ExecutionError):
    """The read-only execution channel is absent or not configured."""

    status_code = 501
    default_public_message = (
        "Running segment SQL requires the exec_readonly_query database function "
        "and DATABASE_URL. Contact an administrator."
    )

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["setup_required"] = True
        return payload
