from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os

from dotenv import load_dotenv


def _bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _int(value: str | None, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float(value: str | None, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _str(value: str | None, default: str = "") -> str:
    if value is None:
        return default
    return value


BASE_DIR = Path(__file__).resolve().parents[2]
_DOTENV_PATH = BASE_DIR / ".env"
# Real environment variables win over .env entries.
load_dotenv(_DOTENV_PATH, override=False)


@dataclass(frozen=True)
class Settings:
    segment_model: str
    llm_max_output_tokens: int
    llm_timeout_sec: int
    llm_temperature: float

    database_url: str
    db_statement_timeout_ms: int
    db_connect_timeout_sec: int
    row_cap: int

    api_request_timeout_sec: int
    admin_api_token: str
    cors_allow_origins: str
    log_level: str
    debug_sql_logging: bool

    openai_api_key: str
    openai_base_url: str
    openai_org: str


def load_settings() -> Settings:
    return Settings(
        segment_model=_str(os.getenv("SEGMENT_MODEL"), "gpt-4o-mini"),
        llm_max_output_tokens=_int(os.getenv("LLM_MAX_OUTPUT_TOKENS"), 1024),
        llm_timeout_sec=_int(os.getenv("LLM_TIMEOUT_SEC"), 30),
        llm_temperature=_float(os.getenv("LLM_TEMPERATURE"), 0.0),
        database_url=_str(os.getenv("DATABASE_URL"), ""),
        db_statement_timeout_ms=_int(os.getenv("DB_STATEMENT_TIMEOUT_MS"), 15000),
        db_connect_timeout_sec=_int(os.getenv("DB_CONNECT_TIMEOUT_SEC"), 5),
        row_cap=_int(os.getenv("ROW_CAP"), 1000),
        api_request_timeout_sec=_int(os.getenv("API_REQUEST_TIMEOUT_SEC"), 60),
        admin_api_token=_str(os.getenv("ADMIN_API_TOKEN"), ""),
        cors_allow_origins=_str(
            os.getenv("CORS_ALLOW_ORIGINS"),
            "http://localhost:3000,http://127.0.0.1:3000",
        ),
        log_level=_str(os.getenv("LOG_LEVEL"), "INFO"),
        debug_sql_logging=_bool(os.getenv("DEBUG_SQL_LOGGING"), False),
        openai_api_key=_str(os.getenv("OPENAI_API_KEY"), ""),
        openai_base_url=_str(os.getenv("OPENAI_BASE_URL"), ""),
        openai_org=_str(os.getenv("OPENAI_ORG"), ""),
    )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS


def reset_settings_cache() -> None:
    global _SETTINGS
    _SETTINGS = None
