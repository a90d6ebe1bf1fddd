"""Helpers for executing SQL validation artifacts in integration tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from psycopg.rows import dict_row
import sqlparse


def split_sql_statements(text: str) -> list[str]:
    """Split a SQL file into executable statements, dropping comments and psql meta-commands."""
    lines = [line for line in text.splitlines() if not line.lstrip().startswith("\\")]
    stripped = sqlparse.format("\n".join(lines), strip_comments=True)
    return [statement.strip() for statement in sqlparse.split(stripped) if statement.strip()]


def run_validation_artifact(conn: Any, sql_path: Path) -> list[dict[str, Any]]:
    """Execute every statement and collect ``check_name``/``violations`` rows."""
    statements = split_sql_statements(sql_path.read_text(encoding="utf-8"))
    results: list[dict[str, Any]] = []
    with conn.cursor(row_factory=dict_row) as cur:
        for statement in statements:
            cur.execute(statement)
            if cur.description is None:
                continue
            for row in cur.fetchall():
                if "check_name" in row and "violations" in row:
                    results.append(dict(row))
    conn.rollback()
    return results


def assert_check_rows_are_zero(rows: list[dict[str, Any]], *, source: str) -> None:
    assert rows, f"No check rows were returned for {source}."
    for row in rows:
        assert int(row["violations"]) == 0, (
            f"{source}: {row['check_name']} has violations={row['violations']}"
        )
