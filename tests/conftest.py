from __future__ import annotations

import pytest

from segment_sql.core.config import reset_settings_cache


_BASE_ENV = {
    "OPENAI_API_KEY": "sk-test",
    "OPENAI_BASE_URL": "",
    "OPENAI_ORG": "",
    "SEGMENT_MODEL": "gpt-4o-mini",
    "DATABASE_URL": "",
    "ROW_CAP": "1000",
    "API_REQUEST_TIMEOUT_SEC": "60",
    "ADMIN_API_TOKEN": "",
    "DEBUG_SQL_LOGGING": "0",
}


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    for key, value in _BASE_ENV.items():
        monkeypatch.setenv(key, value)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def set_env(monkeypatch):
    def _apply(**values: str) -> None:
        for key, value in values.items():
            monkeypatch.setenv(key, value)
        reset_settings_cache()

    return _apply
