from __future__ import annotations

import json
import logging

from segment_sql.core.config import get_settings
from segment_sql.core.logging import log_event, new_request_id, sql_fingerprint


def test_settings_read_environment(set_env) -> None:
    set_env(ROW_CAP="250", LLM_TEMPERATURE="0.3", DEBUG_SQL_LOGGING="yes")
    settings = get_settings()
    assert settings.row_cap == 250
    assert settings.llm_temperature == 0.3
    assert settings.debug_sql_logging is True


def test_invalid_numbers_fall_back_to_defaults(set_env) -> None:
    set_env(ROW_CAP="lots", API_REQUEST_TIMEOUT_SEC="")
    settings = get_settings()
    assert settings.row_cap == 1000
    assert settings.api_request_timeout_sec == 60


def test_settings_are_cached() -> None:
    assert get_settings() is get_settings()


def test_request_ids_are_prefixed_and_unique() -> None:
    first, second = new_request_id(), new_request_id()
    assert first.startswith("sq-")
    assert first != second


def test_fingerprint_hides_sql_unless_debugging(set_env) -> None:
    data = sql_fingerprint("SELECT 1")
    assert data["sql_len"] == 8
    assert "sql" not in data

    set_env(DEBUG_SQL_LOGGING="1")
    assert sql_fingerprint("SELECT 1")["sql"] == "SELECT 1"


def test_log_event_writes_json(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="segment_sql.events"):
        log_event("segment_sql_executed", {"request_id": "sq-1", "count": 3})
    record = json.loads(caplog.records[-1].getMessage())
    assert record["event"] == "segment_sql_executed"
    assert record["service"] == "segment-sql"
    assert record["count"] == 3
