"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import os
from typing import Any, Callable, Iterator
from uuid import UUID, uuid4

import psycopg
import pytest

from risk_store.db import PsycopgRiskDatabase
from risk_store.store import RiskEventStore
from tests.utils.fake_risk_db import InMemoryRiskDB
from tests.utils.migration_loader import load_migration_module, schema_statements
from tests.utils.risk_fixtures import USER_A, USER_B, SteppingClock


@pytest.fixture
def fake_db() -> InMemoryRiskDB:
    return InMemoryRiskDB(known_users=(USER_A, USER_B))


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def store(fake_db: InMemoryRiskDB, clock: SteppingClock) -> RiskEventStore:
    return RiskEventStore(fake_db, clock=clock)


@pytest.fixture(scope="session")
def pg_connect() -> Callable[[], Any]:
    """Factory for psycopg connections to the integration database."""
    host = os.getenv("TEST_DB_HOST")
    port = os.getenv("TEST_DB_PORT")
    dbname = os.getenv("TEST_DB_NAME")
    user = os.getenv("TEST_DB_USER")
    password = os.getenv("TEST_DB_PASSWORD")

    if not all([host, port, dbname, user, password]):
        pytest.skip("Integration DB env vars are missing; set TEST_DB_HOST/PORT/NAME/USER/PASSWORD")

    def _connect() -> Any:
        return psycopg.connect(
            host=host,
            port=port,
            dbname=dbname,
            user=user,
            password=password,
            autocommit=False,
        )

    return _connect


@pytest.fixture
def pg_conn(pg_connect: Callable[[], Any]) -> Iterator[Any]:
    """Connection against a freshly rebuilt risk schema."""
    conn = pg_connect()
    migration = load_migration_module("risk_migration_integration")
    try:
        with conn.cursor() as cur:
            for statement in schema_statements(migration):
                cur.execute(statement)
        conn.commit()
        yield conn
    finally:
        conn.close()


@pytest.fixture
def risk_db(pg_conn: Any) -> PsycopgRiskDatabase:
    return PsycopgRiskDatabase(pg_conn)


@pytest.fixture
def pg_user(pg_conn: Any) -> UUID:
    """A user id registered in auth.users."""
    user_id = uuid4()
    with pg_conn.cursor() as cur:
        cur.execute("INSERT INTO auth.users (id) VALUES (%(id)s)", {"id": user_id})
    pg_conn.commit()
    return user_id
