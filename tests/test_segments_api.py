from __future__ import annotations

from fastapi.testclient import TestClient

from segment_sql.core.errors import GenerationError
from segment_sql.main import app
from segment_sql.services.agents import orchestrator
from segment_sql.services.postgres.executor import ExecutionResult


client = TestClient(app)

SAFE_SQL = "SELECT p.patient_id, p.name FROM patients p WHERE p.birth_date < '2000-01-01'"


def _fake_generation(monkeypatch, sql: str = SAFE_SQL) -> None:
    monkeypatch.setattr(orchestrator, "generate_segment_sql", lambda question: sql)


def test_health() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_preview_returns_sql(monkeypatch) -> None:
    _fake_generation(monkeypatch)
    response = client.post("/segments/ai-query", json={"query": "born before 2000"})
    assert response.status_code == 200
    assert response.json() == {"ok": True, "sql": SAFE_SQL, "preview": True}


def test_execute_scopes_to_header_tenant(monkeypatch) -> None:
    executed: list[str] = []

    def _execute(sql: str, *, request_id=None) -> ExecutionResult:
        executed.append(sql)
        return ExecutionResult(rows=[{"patient_id": "P1", "name": ""}], count=1)

    monkeypatch.setattr(orchestrator, "execute_segment_sql", _execute)
    response = client.post(
        "/segments/ai-query",
        json={"query": "born before 2000", "execute": True, "sql": SAFE_SQL},
        headers={"X-Tenant-Id": "t1"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "patients": [{"patient_id": "P1", "name": "未登録"}],
        "count": 1,
        "sql": SAFE_SQL,
    }
    assert executed == [
        "SELECT p.patient_id, p.name FROM patients p WHERE p.tenant_id = 't1' AND p.birth_date < '2000-01-01'"
    ]


def test_query_length_boundary(monkeypatch) -> None:
    _fake_generation(monkeypatch)
    ok = client.post("/segments/ai-query", json={"query": "a" * 500})
    assert ok.status_code == 200

    too_long = client.post("/segments/ai-query", json={"query": "a" * 501})
    assert too_long.status_code == 422
    assert too_long.json()["ok"] is False


def test_blank_query_is_rejected() -> None:
    response = client.post("/segments/ai-query", json={"query": "   "})
    assert response.status_code == 422
    assert response.json() == {"ok": False, "error": "query is required"}


def test_rejected_generation_returns_sql(monkeypatch) -> None:
    _fake_generation(monkeypatch, "DELETE FROM patients")
    response = client.post("/segments/ai-query", json={"query": "remove everyone"})
    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["sql"] == "DELETE FROM patients"
    assert "SELECT-only" in body["error"]


def test_generation_failure_is_generic(monkeypatch) -> None:
    def _boom(question: str) -> str:
        raise GenerationError("provider said: secret detail")

    monkeypatch.setattr(orchestrator, "generate_segment_sql", _boom)
    response = client.post("/segments/ai-query", json={"query": "q"})
    assert response.status_code == 502
    assert response.json() == {"ok": False, "error": "AI SQL generation failed"}


def test_missing_api_key_is_reported(set_env) -> None:
    set_env(OPENAI_API_KEY="")
    response = client.post("/segments/ai-query", json={"query": "q"})
    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "OPENAI_API_KEY is not configured"}


def test_missing_database_requires_setup() -> None:
    response = client.post(
        "/segments/ai-query",
        json={"query": "q", "execute": True, "sql": SAFE_SQL},
        headers={"X-Tenant-Id": "t1"},
    )
    assert response.status_code == 501
    body = response.json()
    assert body["ok"] is False
    assert body["setup_required"] is True


def test_admin_token_is_enforced_when_configured(monkeypatch, set_env) -> None:
    set_env(ADMIN_API_TOKEN="s3cret")
    _fake_generation(monkeypatch)

    missing = client.post("/segments/ai-query", json={"query": "q"})
    assert missing.status_code == 401
    assert missing.json() == {"ok": False, "error": "Unauthorized"}

    wrong = client.post("/segments/ai-query", json={"query": "q"}, headers={"X-Admin-Token": "nope"})
    assert wrong.status_code == 401

    ok = client.post("/segments/ai-query", json={"query": "q"}, headers={"X-Admin-Token": "s3cret"})
    assert ok.status_code == 200
