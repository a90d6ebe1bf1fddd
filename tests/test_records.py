"""Unit tests for validated risk store record types."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from backend.db.enums import BreakerAction, BreakerLevel, CheckType, TriggerType
from risk_store.errors import AlreadyResolvedError, ValidationError
from risk_store.records import (
    BreakerOpen,
    BreakerResolved,
    CircuitBreakerEvent,
    MarginCalculation,
    Page,
    RiskCheck,
    TimeRange,
)
from tests.utils.risk_fixtures import (
    BASE_TS,
    USER_A,
    breaker_input,
    margin_input,
    risk_check_input,
)

RECORD_ID = UUID("33333333-3333-4333-8333-333333333333")


def _check(**overrides: object) -> RiskCheck:
    return RiskCheck.validate(risk_check_input(**overrides), record_id=RECORD_ID, created_at=BASE_TS)


def _breaker(**overrides: object) -> CircuitBreakerEvent:
    return CircuitBreakerEvent.validate(breaker_input(**overrides), record_id=RECORD_ID, created_at=BASE_TS)


def test_risk_check_defaults_are_explicit() -> None:
    record = _check()
    assert record.id == RECORD_ID
    assert record.user_id == USER_A
    assert record.check_type is CheckType.PRETRADE
    assert record.var_95 == 0.0
    assert record.var_99 == 0.0
    assert record.max_drawdown == 0.0
    assert record.passed is True
    assert record.reason is None
    assert record.latency_us == 0
    assert record.created_at == BASE_TS


def test_risk_check_accepts_string_user_and_caller_supplied_identity() -> None:
    own_id = uuid4()
    stamped = datetime(2026, 1, 5, 16, 30, tzinfo=timezone(timedelta(hours=2)))
    record = _check(user_id=str(USER_A), id=own_id, created_at=stamped)
    assert record.user_id == USER_A
    assert record.id == own_id
    assert record.created_at == BASE_TS
    assert record.created_at.tzinfo == timezone.utc


@pytest.mark.parametrize("check_type", ["PRETRADE", "pre-trade", "margin", "", None])
def test_risk_check_rejects_unknown_check_type(check_type: object) -> None:
    with pytest.raises(ValidationError, match="check_type"):
        _check(check_type=check_type)


@pytest.mark.parametrize("field", ["var_95", "var_99", "max_drawdown"])
def test_risk_magnitudes_must_be_non_negative(field: str) -> None:
    with pytest.raises(ValidationError, match=f"{field} must be >= 0"):
        _check(**{field: -0.01})


@pytest.mark.parametrize("value", [float("nan"), float("inf"), 10**400, "12.0", True])
def test_risk_magnitudes_must_be_finite_numbers(value: object) -> None:
    with pytest.raises(ValidationError, match="var_95"):
        _check(var_95=value)


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"order_id": "  "}, "order_id"),
        ({"symbol": ""}, "symbol"),
        ({"latency_us": -1}, "latency_us"),
        ({"latency_us": 1.5}, "latency_us"),
        ({"latency_us": 2**63}, "latency_us must be <="),
        ({"passed": "no"}, "passed"),
        ({"reason": 42}, "reason"),
        ({"user_id": "not-a-uuid"}, "user_id"),
        ({"created_at": datetime(2026, 1, 5, 14, 30)}, "timezone-aware"),
    ],
)
def test_risk_check_field_validation(overrides: dict[str, object], message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        _check(**overrides)


def test_margin_calculation_defaults_and_opaque_figures() -> None:
    record = MarginCalculation.validate(margin_input(), record_id=RECORD_ID, created_at=BASE_TS)
    assert (
        record.portfolio_value,
        record.initial_margin,
        record.maintenance_margin,
        record.available_margin,
        record.margin_utilization,
    ) == (0.0, 0.0, 0.0, 0.0, 0.0)
    assert record.margin_call is False

    # Figures are stored as computed upstream, even when they look inconsistent.
    odd = MarginCalculation.validate(
        margin_input(portfolio_value=100.0, initial_margin=250.0, available_margin=-150.0, margin_utilization=2.5),
        record_id=RECORD_ID,
        created_at=BASE_TS,
    )
    assert odd.available_margin == -150.0
    assert odd.margin_utilization == 2.5


def test_margin_calculation_rejects_non_finite_and_non_bool() -> None:
    with pytest.raises(ValidationError, match="initial_margin"):
        MarginCalculation.validate(margin_input(initial_margin=float("nan")), record_id=RECORD_ID, created_at=BASE_TS)
    with pytest.raises(ValidationError, match="margin_call"):
        MarginCalculation.validate(margin_input(margin_call=1), record_id=RECORD_ID, created_at=BASE_TS)
    with pytest.raises(ValidationError, match="portfolio_value must be finite"):
        MarginCalculation.validate(margin_input(portfolio_value=10**400), record_id=RECORD_ID, created_at=BASE_TS)


def test_latency_accepts_bigint_upper_bound() -> None:
    assert _check(latency_us=2**63 - 1).latency_us == 2**63 - 1


def test_breaker_event_starts_open() -> None:
    event = _breaker()
    assert event.level is BreakerLevel.L2
    assert event.trigger_type is TriggerType.PRICE_MOVE
    assert event.action is BreakerAction.HALT_TRADING
    assert event.status == BreakerOpen()
    assert event.is_open is True
    assert event.resolved_at is None


def test_breaker_event_symbol_is_optional_but_not_blank() -> None:
    assert _breaker(symbol=None).symbol is None
    with pytest.raises(ValidationError, match="symbol"):
        _breaker(symbol=" ")


@pytest.mark.parametrize(
    ("field", "value"),
    [("level", "L4"), ("trigger_type", "news"), ("action", "pause-10min")],
)
def test_breaker_event_rejects_unknown_enums(field: str, value: str) -> None:
    with pytest.raises(ValidationError, match=field):
        _breaker(**{field: value})


def test_breaker_resolve_transition_is_one_way() -> None:
    event = _breaker()
    at = BASE_TS + timedelta(minutes=5)
    resolved = event.resolve(at)
    assert resolved.status == BreakerResolved(resolved_at=at)
    assert resolved.resolved_at == at
    assert resolved.is_open is False
    assert event.is_open is True

    with pytest.raises(AlreadyResolvedError):
        resolved.resolve(at + timedelta(minutes=1))


def test_breaker_resolve_rejects_time_before_creation_and_naive_time() -> None:
    event = _breaker()
    with pytest.raises(ValidationError, match="precedes created_at"):
        event.resolve(BASE_TS - timedelta(seconds=1))
    with pytest.raises(ValidationError, match="timezone-aware"):
        event.resolve(datetime(2026, 1, 5, 15, 0))


def test_row_mapping_restores_status_variants() -> None:
    event = _breaker()
    params = event.as_params()
    assert params["resolved_at"] is None
    assert params["level"] == "L2"
    assert CircuitBreakerEvent.from_row(params) == event

    at = BASE_TS + timedelta(hours=1)
    params["resolved_at"] = at
    restored = CircuitBreakerEvent.from_row(params)
    assert restored.status == BreakerResolved(resolved_at=at)


def test_time_range_normalizes_and_validates() -> None:
    window = TimeRange(
        start=datetime(2026, 1, 5, 16, 0, tzinfo=timezone(timedelta(hours=2))),
        end=BASE_TS + timedelta(hours=1),
    )
    assert window.start == datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)
    assert TimeRange().start is None

    with pytest.raises(ValidationError, match="must not be after"):
        TimeRange(start=BASE_TS, end=BASE_TS - timedelta(seconds=1))
    with pytest.raises(ValidationError, match="timezone-aware"):
        TimeRange(start=datetime(2026, 1, 1))


def test_page_validation() -> None:
    assert Page().limit is None
    assert Page(limit=10, offset=20).offset == 20
    with pytest.raises(ValidationError, match="page.limit"):
        Page(limit=0)
    with pytest.raises(ValidationError, match="page.offset"):
        Page(limit=5, offset=-1)
