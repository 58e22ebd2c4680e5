from __future__ import annotations

import pytest

from segment_sql.core.errors import InputError, SQLValidationError
from segment_sql.services.agents import orchestrator
from segment_sql.services.agents.orchestrator import (
    SegmentQuery,
    check_query_text,
    handle_segment_query,
    preview_segment,
    run_supplied_segment,
)
from segment_sql.services.postgres.executor import ExecutionResult


SAFE_SQL = "SELECT p.patient_id, p.name FROM patients p WHERE p.birth_date < '2000-01-01'"


@pytest.fixture
def pipeline(monkeypatch):
    state = {"generated": SAFE_SQL, "rows": [], "questions": [], "executed": []}

    def _generate(question: str) -> str:
        state["questions"].append(question)
        return state["generated"]

    def _execute(sql: str, *, request_id=None) -> ExecutionResult:
        state["executed"].append(sql)
        return ExecutionResult(rows=state["rows"], count=len(state["rows"]))

    monkeypatch.setattr(orchestrator, "generate_segment_sql", _generate)
    monkeypatch.setattr(orchestrator, "execute_segment_sql", _execute)
    return state


def test_preview_returns_validated_sql_without_executing(pipeline) -> None:
    result = preview_segment("patients born before 2000", "t1")
    assert result == {"ok": True, "sql": SAFE_SQL, "preview": True}
    assert pipeline["executed"] == []


def test_preview_rejects_unsafe_generation(pipeline) -> None:
    pipeline["generated"] = "DELETE FROM patients"
    with pytest.raises(SQLValidationError) as excinfo:
        preview_segment("remove everyone")
    assert excinfo.value.sql == "DELETE FROM patients"
    assert str(excinfo.value).startswith("Generated SQL failed the safety check")


def test_generate_and_run_scopes_and_shapes_rows(pipeline) -> None:
    pipeline["rows"] = [{"patient_id": "P1", "name": "Sato"}, {"patient_id": "P2", "name": None}]
    result = handle_segment_query(SegmentQuery(query="born before 2000", execute=True), "t1")

    assert pipeline["executed"] == [
        "SELECT p.patient_id, p.name FROM patients p WHERE p.tenant_id = 't1' AND p.birth_date < '2000-01-01'"
    ]
    assert result == {
        "ok": True,
        "patients": [{"patient_id": "P1", "name": "Sato"}, {"patient_id": "P2", "name": "未登録"}],
        "count": 2,
        "sql": SAFE_SQL,
    }


def test_supplied_sql_is_revalidated_and_never_regenerated(pipeline) -> None:
    supplied = "SELECT p.patient_id, p.name FROM patients p; DROP TABLE patients"
    with pytest.raises(SQLValidationError):
        handle_segment_query(SegmentQuery(query="x", execute=True, sql=supplied), "t1")
    assert pipeline["questions"] == []
    assert pipeline["executed"] == []


def test_preview_output_round_trips_through_run_supplied(pipeline) -> None:
    preview = preview_segment("born before 2000")
    result = run_supplied_segment(preview["sql"], "t1")
    assert result["ok"] is True
    assert result["sql"] == SAFE_SQL
    assert len(pipeline["questions"]) == 1


def test_without_tenant_sql_runs_unscoped(pipeline) -> None:
    run_supplied_segment(SAFE_SQL, None)
    assert pipeline["executed"] == [SAFE_SQL]


def test_execute_false_ignores_supplied_sql(pipeline) -> None:
    result = handle_segment_query(SegmentQuery(query="q", execute=False, sql="SELECT 1"), "t1")
    assert result["preview"] is True
    assert result["sql"] == SAFE_SQL
    assert pipeline["questions"] == ["q"]


def test_query_length_bounds() -> None:
    assert check_query_text("a" * 500) == "a" * 500
    with pytest.raises(InputError):
        check_query_text("a" * 501)
    with pytest.raises(InputError):
        check_query_text("   ")
    with pytest.raises(InputError):
        check_query_text("")
