"""Unit tests for the risk domain Alembic migration orchestration."""

from __future__ import annotations

from typing import Any

import pytest

from tests.utils.migration_loader import load_migration_module


class _OpStub:
    def __init__(self, *, fail_on: str | None = None) -> None:
        self.calls: list[str] = []
        self.fail_on = fail_on

    def execute(self, statement: str) -> None:
        self.calls.append(statement)
        if self.fail_on and self.fail_on in statement:
            raise RuntimeError("forced migration failure")


def _load(module_name: str, op_stub: _OpStub, monkeypatch: pytest.MonkeyPatch) -> Any:
    module = load_migration_module(module_name)
    monkeypatch.setattr(module, "op", op_stub)
    return module


def test_revision_metadata_constants(monkeypatch: pytest.MonkeyPatch) -> None:
    module = _load("migration_0001_risk_meta", _OpStub(), monkeypatch)
    assert module.revision == "0001_risk_domain"
    assert module.down_revision is None
    assert module.branch_labels is None
    assert module.depends_on is None


def test_execute_all_runs_all_statements_and_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    op_stub = _OpStub()
    module = _load("migration_0001_risk_execute", op_stub, monkeypatch)

    module._execute_all(("SELECT 1;", "SELECT 2;"))
    assert op_stub.calls == ["SELECT 1;", "SELECT 2;"]

    op_stub.calls.clear()
    module._execute_all(())
    assert op_stub.calls == []


def test_execute_all_logs_and_reraises(monkeypatch: pytest.MonkeyPatch) -> None:
    op_stub = _OpStub(fail_on="SELECT 2")
    module = _load("migration_0001_risk_execute_error", op_stub, monkeypatch)

    seen: list[str] = []
    monkeypatch.setattr(module.logger, "exception", lambda message: seen.append(message))
    with pytest.raises(RuntimeError, match="forced migration failure"):
        module._execute_all(("SELECT 1;", "SELECT 2;", "SELECT 3;"))

    assert seen == ["Migration statement failed."]
    assert op_stub.calls == ["SELECT 1;", "SELECT 2;"]


def test_upgrade_orchestration_order(monkeypatch: pytest.MonkeyPatch) -> None:
    module = _load("migration_0001_risk_upgrade", _OpStub(), monkeypatch)

    groups: list[tuple[str, ...]] = []
    monkeypatch.setattr(module, "_execute_all", lambda statements: groups.append(tuple(statements)))
    module.upgrade()

    assert groups == [
        module.AUTH_REFERENCE_DDL,
        module.TABLE_DDL,
        module.INDEX_DDL,
        module.IMMUTABILITY_DDL,
    ]


def test_upgrade_runs_every_statement_through_op(monkeypatch: pytest.MonkeyPatch) -> None:
    op_stub = _OpStub()
    module = _load("migration_0001_risk_upgrade_full", op_stub, monkeypatch)
    module.upgrade()

    expected = (
        len(module.AUTH_REFERENCE_DDL)
        + len(module.TABLE_DDL)
        + len(module.INDEX_DDL)
        + len(module.IMMUTABILITY_DDL)
    )
    assert len(op_stub.calls) == expected
    assert op_stub.calls[0] == "CREATE SCHEMA IF NOT EXISTS auth;"


def test_downgrade_orchestration_drop_bundle(monkeypatch: pytest.MonkeyPatch) -> None:
    module = _load("migration_0001_risk_downgrade", _OpStub(), monkeypatch)

    statements_seen: list[tuple[str, ...]] = []
    monkeypatch.setattr(module, "_execute_all", lambda statements: statements_seen.append(tuple(statements)))
    module.downgrade()

    assert len(statements_seen) == 1
    drops = statements_seen[0]
    assert drops[0].startswith("DROP TRIGGER IF EXISTS trg_circuit_breaker_events_resolve_once")
    assert drops[-1] == "DROP TABLE IF EXISTS risk_checks;"
    assert not any("auth" in statement for statement in drops)


def test_table_ddl_references_identity_users(monkeypatch: pytest.MonkeyPatch) -> None:
    module = _load("migration_0001_risk_fk", _OpStub(), monkeypatch)
    for statement in module.TABLE_DDL:
        assert "REFERENCES auth.users (id)" in statement


def test_immutability_triggers_cover_every_table(monkeypatch: pytest.MonkeyPatch) -> None:
    module = _load("migration_0001_risk_triggers", _OpStub(), monkeypatch)
    joined = "\n".join(module.IMMUTABILITY_DDL)

    assert "BEFORE UPDATE OR DELETE ON risk_checks" in joined
    assert "BEFORE UPDATE OR DELETE ON margin_calculations" in joined
    assert "BEFORE UPDATE OR DELETE ON circuit_breaker_events" in joined
    assert "OLD.resolved_at IS NOT NULL" in joined
