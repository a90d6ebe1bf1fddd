"""Risk event store: validated append-mostly persistence for risk engine outputs."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar, Union
from uuid import UUID, uuid4

from risk_store.config import RiskStoreConfig
from risk_store.db import RiskStoreDatabase
from risk_store.errors import (
    AlreadyResolvedError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from risk_store.records import (
    CircuitBreakerEvent,
    CircuitBreakerEventInput,
    MarginCalculation,
    MarginCalculationInput,
    Page,
    RiskCheck,
    RiskCheckInput,
    RiskStats,
    TimeRange,
    coerce_uuid,
    normalize_utc,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

RISK_CHECK_COLUMNS = (
    "id, user_id, order_id, symbol, check_type, var_95, var_99, max_drawdown, "
    "passed, reason, latency_us, created_at"
)
MARGIN_CALCULATION_COLUMNS = (
    "id, user_id, portfolio_value, initial_margin, maintenance_margin, "
    "available_margin, margin_utilization, margin_call, created_at"
)
CIRCUIT_BREAKER_EVENT_COLUMNS = (
    "id, user_id, symbol, level, trigger_type, threshold, actual_value, "
    "action, resolved_at, created_at"
)

INSERT_RISK_CHECK_SQL = f"""
    INSERT INTO risk_checks (
        id, user_id, order_id, symbol, check_type, var_95, var_99, max_drawdown,
        passed, reason, latency_us, created_at
    ) VALUES (
        :id, :user_id, :order_id, :symbol, :check_type, :var_95, :var_99, :max_drawdown,
        :passed, :reason, :latency_us, :created_at
    )
    RETURNING {RISK_CHECK_COLUMNS}
"""

INSERT_MARGIN_CALCULATION_SQL = f"""
    INSERT INTO margin_calculations (
        id, user_id, portfolio_value, initial_margin, maintenance_margin,
        available_margin, margin_utilization, margin_call, created_at
    ) VALUES (
        :id, :user_id, :portfolio_value, :initial_margin, :maintenance_margin,
        :available_margin, :margin_utilization, :margin_call, :created_at
    )
    RETURNING {MARGIN_CALCULATION_COLUMNS}
"""

INSERT_CIRCUIT_BREAKER_EVENT_SQL = f"""
    INSERT INTO circuit_breaker_events (
        id, user_id, symbol, level, trigger_type, threshold, actual_value,
        action, resolved_at, created_at
    ) VALUES (
        :id, :user_id, :symbol, :level, :trigger_type, :threshold, :actual_value,
        :action, NULL, :created_at
    )
    RETURNING {CIRCUIT_BREAKER_EVENT_COLUMNS}
"""

RESOLVE_CIRCUIT_BREAKER_EVENT_SQL = f"""
    UPDATE circuit_breaker_events
    SET resolved_at = :resolved_at
    WHERE id = :id
      AND resolved_at IS NULL
    RETURNING {CIRCUIT_BREAKER_EVENT_COLUMNS}
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _filtered_select(
    columns: str,
    table: str,
    filters: Mapping[str, Any],
    time_range: Optional[TimeRange],
    *,
    open_only: bool = False,
) -> tuple[str, dict[str, Any]]:
    """Compose ``SELECT ... WHERE`` over equality filters and an optional time window."""
    clauses = [f"{column} = :{column}" for column in filters]
    params: dict[str, Any] = dict(filters)
    if time_range is not None and time_range.start is not None:
        clauses.append("created_at >= :start")
        params["start"] = time_range.start
    if time_range is not None and time_range.end is not None:
        clauses.append("created_at < :end")
        params["end"] = time_range.end
    if open_only:
        clauses.append("resolved_at IS NULL")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return f"SELECT {columns} FROM {table} {where}", params


class RiskEventStore:
    """Persist and query risk checks, margin snapshots and circuit breaker events."""

    def __init__(
        self,
        db: RiskStoreDatabase,
        config: Optional[RiskStoreConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._config = config or RiskStoreConfig()
        self._clock = clock

    # -- writes ---------------------------------------------------------------

    def record_risk_check(self, payload: RiskCheckInput) -> RiskCheck:
        """Validate and persist one risk check evaluation."""
        record = self._validated(
            "risk check",
            lambda: RiskCheck.validate(payload, record_id=uuid4(), created_at=self._clock()),
        )
        row = self._transaction(lambda: self._db.fetch_one(INSERT_RISK_CHECK_SQL, record.as_params()))
        stored = RiskCheck.from_row(self._require_row(row, "risk_checks", record.id))
        logger.info(
            "Recorded risk check id=%s user_id=%s order_id=%s check_type=%s passed=%s",
            stored.id,
            stored.user_id,
            stored.order_id,
            stored.check_type.value,
            stored.passed,
        )
        return stored

    def record_margin_calculation(self, payload: MarginCalculationInput) -> MarginCalculation:
        """Validate and persist one margin snapshot."""
        record = self._validated(
            "margin calculation",
            lambda: MarginCalculation.validate(payload, record_id=uuid4(), created_at=self._clock()),
        )
        row = self._transaction(
            lambda: self._db.fetch_one(INSERT_MARGIN_CALCULATION_SQL, record.as_params())
        )
        stored = MarginCalculation.from_row(self._require_row(row, "margin_calculations", record.id))
        logger.info(
            "Recorded margin calculation id=%s user_id=%s margin_call=%s",
            stored.id,
            stored.user_id,
            stored.margin_call,
        )
        return stored

    def record_circuit_breaker_event(self, payload: CircuitBreakerEventInput) -> CircuitBreakerEvent:
        """Validate and persist a tripped breaker in the OPEN state."""
        record = self._validated(
            "circuit breaker event",
            lambda: CircuitBreakerEvent.validate(payload, record_id=uuid4(), created_at=self._clock()),
        )
        row = self._transaction(
            lambda: self._db.fetch_one(INSERT_CIRCUIT_BREAKER_EVENT_SQL, record.as_params())
        )
        stored = CircuitBreakerEvent.from_row(
            self._require_row(row, "circuit_breaker_events", record.id)
        )
        logger.info(
            "Recorded circuit breaker event id=%s user_id=%s symbol=%s level=%s action=%s",
            stored.id,
            stored.user_id,
            stored.symbol,
            stored.level.value,
            stored.action.value,
        )
        return stored

    def resolve_circuit_breaker_event(
        self,
        event_id: Union[UUID, str],
        resolved_at: datetime,
    ) -> CircuitBreakerEvent:
        """
        Transition an event OPEN -> RESOLVED exactly once.

        The UPDATE only matches rows whose resolved_at is still NULL, so among
        concurrent resolvers exactly one gets a row back; the others raise
        AlreadyResolvedError and the first timestamp is kept.
        """
        event_uuid = self._validated("resolution", lambda: coerce_uuid(event_id, "id"))
        at = self._validated("resolution", lambda: normalize_utc(resolved_at, "resolved_at"))

        def _resolve() -> Mapping[str, Any]:
            current = self._db.fetch_one(
                f"SELECT {CIRCUIT_BREAKER_EVENT_COLUMNS} FROM circuit_breaker_events WHERE id = :id",
                {"id": str(event_uuid)},
            )
            if current is None:
                raise NotFoundError(f"Circuit breaker event {event_uuid} not found.")
            CircuitBreakerEvent.from_row(current).resolve(at)
            updated = self._db.fetch_one(
                RESOLVE_CIRCUIT_BREAKER_EVENT_SQL,
                {"id": str(event_uuid), "resolved_at": at},
            )
            if updated is None:
                raise AlreadyResolvedError(
                    f"Circuit breaker event {event_uuid} was resolved concurrently."
                )
            return updated

        try:
            row = self._transaction(_resolve)
        except (NotFoundError, AlreadyResolvedError, ValidationError) as exc:
            logger.warning("Rejected resolution of circuit breaker event id=%s: %s", event_uuid, exc)
            raise
        stored = CircuitBreakerEvent.from_row(row)
        logger.info(
            "Resolved circuit breaker event id=%s resolved_at=%s",
            stored.id,
            at.isoformat(),
        )
        return stored

    # -- point reads ----------------------------------------------------------

    def get_risk_check(self, record_id: Union[UUID, str]) -> RiskCheck:
        row = self._get_row(RISK_CHECK_COLUMNS, "risk_checks", record_id)
        return RiskCheck.from_row(row)

    def get_margin_calculation(self, record_id: Union[UUID, str]) -> MarginCalculation:
        row = self._get_row(MARGIN_CALCULATION_COLUMNS, "margin_calculations", record_id)
        return MarginCalculation.from_row(row)

    def get_circuit_breaker_event(self, record_id: Union[UUID, str]) -> CircuitBreakerEvent:
        row = self._get_row(CIRCUIT_BREAKER_EVENT_COLUMNS, "circuit_breaker_events", record_id)
        return CircuitBreakerEvent.from_row(row)

    # -- listings -------------------------------------------------------------

    def list_risk_checks_by_user(
        self,
        user_id: Union[UUID, str],
        time_range: Optional[TimeRange] = None,
        page: Optional[Page] = None,
    ) -> tuple[RiskCheck, ...]:
        rows = self._list(
            RISK_CHECK_COLUMNS,
            "risk_checks",
            {"user_id": self._user_param(user_id)},
            time_range,
            page,
        )
        return tuple(RiskCheck.from_row(row) for row in rows)

    def list_risk_checks_by_order(
        self,
        order_id: str,
        page: Optional[Page] = None,
    ) -> tuple[RiskCheck, ...]:
        rows = self._list(RISK_CHECK_COLUMNS, "risk_checks", {"order_id": order_id}, None, page)
        return tuple(RiskCheck.from_row(row) for row in rows)

    def list_margin_calculations_by_user(
        self,
        user_id: Union[UUID, str],
        time_range: Optional[TimeRange] = None,
        page: Optional[Page] = None,
    ) -> tuple[MarginCalculation, ...]:
        rows = self._list(
            MARGIN_CALCULATION_COLUMNS,
            "margin_calculations",
            {"user_id": self._user_param(user_id)},
            time_range,
            page,
        )
        return tuple(MarginCalculation.from_row(row) for row in rows)

    def latest_margin_calculation(self, user_id: Union[UUID, str]) -> Optional[MarginCalculation]:
        sql, params = _filtered_select(
            MARGIN_CALCULATION_COLUMNS,
            "margin_calculations",
            {"user_id": self._user_param(user_id)},
            None,
        )
        row = self._transaction(
            lambda: self._db.fetch_one(f"{sql} ORDER BY created_at DESC, id DESC LIMIT 1", params)
        )
        return MarginCalculation.from_row(row) if row is not None else None

    def list_circuit_breaker_events_by_user(
        self,
        user_id: Union[UUID, str],
        time_range: Optional[TimeRange] = None,
        page: Optional[Page] = None,
    ) -> tuple[CircuitBreakerEvent, ...]:
        rows = self._list(
            CIRCUIT_BREAKER_EVENT_COLUMNS,
            "circuit_breaker_events",
            {"user_id": self._user_param(user_id)},
            time_range,
            page,
        )
        return tuple(CircuitBreakerEvent.from_row(row) for row in rows)

    def list_circuit_breaker_events_by_symbol(
        self,
        symbol: str,
        page: Optional[Page] = None,
    ) -> tuple[CircuitBreakerEvent, ...]:
        rows = self._list(
            CIRCUIT_BREAKER_EVENT_COLUMNS,
            "circuit_breaker_events",
            {"symbol": symbol},
            None,
            page,
        )
        return tuple(CircuitBreakerEvent.from_row(row) for row in rows)

    def list_open_circuit_breaker_events(
        self,
        user_id: Optional[Union[UUID, str]] = None,
        symbol: Optional[str] = None,
        page: Optional[Page] = None,
    ) -> tuple[CircuitBreakerEvent, ...]:
        """Breakers still in force, i.e. ``resolved_at IS NULL``."""
        filters: dict[str, Any] = {}
        if user_id is not None:
            filters["user_id"] = self._user_param(user_id)
        if symbol is not None:
            filters["symbol"] = symbol
        rows = self._list(
            CIRCUIT_BREAKER_EVENT_COLUMNS,
            "circuit_breaker_events",
            filters,
            None,
            page,
            open_only=True,
        )
        return tuple(CircuitBreakerEvent.from_row(row) for row in rows)

    # -- aggregates -----------------------------------------------------------

    def risk_stats(
        self,
        user_id: Optional[Union[UUID, str]] = None,
        time_range: Optional[TimeRange] = None,
    ) -> RiskStats:
        """Count checks, blocks, margin snapshots and breaker alerts."""
        filters: dict[str, Any] = {}
        if user_id is not None:
            filters["user_id"] = self._user_param(user_id)

        def _counts() -> tuple[Mapping[str, Any], Mapping[str, Any], Mapping[str, Any]]:
            check_sql, check_params = _filtered_select(
                "COUNT(*) AS total_checks, COUNT(*) FILTER (WHERE NOT passed) AS trades_blocked",
                "risk_checks",
                filters,
                time_range,
            )
            margin_sql, margin_params = _filtered_select(
                "COUNT(*) AS total_margin_calcs",
                "margin_calculations",
                filters,
                time_range,
            )
            breaker_sql, breaker_params = _filtered_select(
                "COUNT(*) AS total_breaker_events, "
                "COUNT(*) FILTER (WHERE resolved_at IS NULL) AS open_breakers",
                "circuit_breaker_events",
                filters,
                time_range,
            )
            return (
                self._db.fetch_one(check_sql, check_params) or {},
                self._db.fetch_one(margin_sql, margin_params) or {},
                self._db.fetch_one(breaker_sql, breaker_params) or {},
            )

        checks, margins, breakers = self._transaction(_counts)
        total_checks = int(checks.get("total_checks", 0))
        trades_blocked = int(checks.get("trades_blocked", 0))
        breaker_events = int(breakers.get("total_breaker_events", 0))
        block_rate = trades_blocked / total_checks * 100.0 if total_checks > 0 else 0.0
        return RiskStats(
            total_checks=total_checks,
            total_margin_calcs=int(margins.get("total_margin_calcs", 0)),
            total_alerts=trades_blocked + breaker_events,
            trades_blocked=trades_blocked,
            open_breakers=int(breakers.get("open_breakers", 0)),
            block_rate_pct=block_rate,
        )

    # -- internals ------------------------------------------------------------

    def _validated(self, kind: str, build: Callable[[], _T]) -> _T:
        try:
            return build()
        except ValidationError as exc:
            logger.warning("Rejected %s: %s", kind, exc)
            raise

    def _user_param(self, user_id: Union[UUID, str]) -> str:
        return str(self._validated("query", lambda: coerce_uuid(user_id, "user_id")))

    def _resolve_page(self, page: Optional[Page]) -> tuple[int, int]:
        if page is None or page.limit is None:
            return self._config.default_page_size, page.offset if page is not None else 0
        if page.limit > self._config.max_page_size:
            raise ValidationError(
                f"page.limit={page.limit} exceeds maximum of {self._config.max_page_size}."
            )
        return page.limit, page.offset

    def _list(
        self,
        columns: str,
        table: str,
        filters: Mapping[str, Any],
        time_range: Optional[TimeRange],
        page: Optional[Page],
        *,
        open_only: bool = False,
    ) -> Sequence[Mapping[str, Any]]:
        limit, offset = self._resolve_page(page)
        sql, params = _filtered_select(columns, table, filters, time_range, open_only=open_only)
        params["limit"] = limit
        params["offset"] = offset
        return self._transaction(
            lambda: self._db.fetch_all(
                f"{sql} ORDER BY created_at ASC, id ASC LIMIT :limit OFFSET :offset",
                params,
            )
        )

    def _get_row(self, columns: str, table: str, record_id: Union[UUID, str]) -> Mapping[str, Any]:
        record_uuid = self._validated("lookup", lambda: coerce_uuid(record_id, "id"))
        row = self._transaction(
            lambda: self._db.fetch_one(
                f"SELECT {columns} FROM {table} WHERE id = :id",
                {"id": str(record_uuid)},
            )
        )
        if row is None:
            raise NotFoundError(f"No {table} row with id={record_uuid}.")
        return row

    def _require_row(
        self,
        row: Optional[Mapping[str, Any]],
        table: str,
        record_id: UUID,
    ) -> Mapping[str, Any]:
        if row is None:
            raise StorageUnavailableError(f"Insert into {table} returned no row for id={record_id}.")
        return row

    def _transaction(self, work: Callable[[], _T]) -> _T:
        """Run ``work`` as one transaction: commit on success, roll back and re-raise on failure."""
        try:
            result = work()
            self._db.commit()
        except StorageUnavailableError:
            logger.exception("Risk store storage failure.")
            self._rollback()
            raise
        except Exception:
            self._rollback()
            raise
        return result

    def _rollback(self) -> None:
        try:
            self._db.rollback()
        except StorageUnavailableError:
            logger.exception("Rollback failed after risk store error.")
