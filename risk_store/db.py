"""Database protocol for the risk store and its psycopg implementation."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import re
from typing import Any, Iterator, Mapping, Optional, Protocol, Sequence

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from risk_store.config import RiskStoreConfig
from risk_store.errors import (
    ReferentialIntegrityError,
    StorageUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


class RiskStoreDatabase(Protocol):
    """Minimal transactional DB protocol used by the risk store."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """Fetch all rows (also used for UPDATE ... RETURNING)."""

    def commit(self) -> None:
        """Commit the current transaction."""

    def rollback(self) -> None:
        """Roll back the current transaction."""


def _convert_named_params(sql: str) -> str:
    """Convert :named params to psycopg %(named)s format."""
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


@contextmanager
def translate_driver_errors() -> Iterator[None]:
    """Map psycopg failures onto the risk store error taxonomy."""
    try:
        yield
    except pg_errors.ForeignKeyViolation as exc:
        raise ReferentialIntegrityError(f"Unknown referenced user id: {exc}") from exc
    except (
        pg_errors.CheckViolation,
        pg_errors.NotNullViolation,
        pg_errors.UniqueViolation,
        psycopg.DataError,
    ) as exc:
        raise ValidationError(f"Database rejected record: {exc}") from exc
    except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
        raise StorageUnavailableError(f"Risk store database unavailable: {exc}") from exc


class PsycopgRiskDatabase:
    """Adapter implementing the risk store DB protocol on a psycopg connection."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self.conn = conn

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        converted = _convert_named_params(sql)
        with translate_driver_errors():
            with self.conn.cursor(row_factory=dict_row) as cur:
                cur.execute(converted, dict(params))
                return [dict(row) for row in cur.fetchall()]

    def commit(self) -> None:
        with translate_driver_errors():
            self.conn.commit()

    def rollback(self) -> None:
        with translate_driver_errors():
            self.conn.rollback()

    def close(self) -> None:
        self.conn.close()


def connect_risk_database(config: RiskStoreConfig) -> PsycopgRiskDatabase:
    """Open a psycopg connection described by ``config``."""
    kwargs = config.connection_kwargs()
    with translate_driver_errors():
        conn = psycopg.connect(**kwargs)
    logger.debug("Opened risk store connection.")
    return PsycopgRiskDatabase(conn)
