"""Validated record types persisted by the risk store."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
import enum
import math
from typing import Any, Mapping, Optional, TypeVar, Union
from uuid import UUID

from backend.db.enums import BreakerAction, BreakerLevel, CheckType, TriggerType
from risk_store.errors import AlreadyResolvedError, ValidationError

_E = TypeVar("_E", bound=enum.Enum)

# Upper bound of the BIGINT latency_us column.
BIGINT_MAX = 2**63 - 1


def normalize_utc(value: Any, field: str) -> datetime:
    """Require a timezone-aware datetime and convert it to UTC."""
    if not isinstance(value, datetime):
        raise ValidationError(f"{field} must be a datetime, got {type(value).__name__}.")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{field} must be timezone-aware.")
    return value.astimezone(timezone.utc)


def coerce_enum(enum_cls: type[_E], value: Any, field: str) -> _E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(str(member.value) for member in enum_cls)
        raise ValidationError(f"Invalid {field}={value!r}; expected one of: {allowed}.") from exc


def coerce_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, str):
        try:
            return UUID(value)
        except ValueError as exc:
            raise ValidationError(f"{field} is not a valid UUID: {value!r}.") from exc
    raise ValidationError(f"{field} must be a UUID, got {type(value).__name__}.")


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or value.strip() == "":
        raise ValidationError(f"{field} must be non-blank text.")
    return value


def _optional_text(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text or None.")
    return value


def _finite_float(value: Any, field: str, *, non_negative: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number, got {type(value).__name__}.")
    try:
        number = float(value)
    except OverflowError as exc:
        raise ValidationError(f"{field} must be finite, got an integer too large for a float.") from exc
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be finite, got {value!r}.")
    if non_negative and number < 0:
        raise ValidationError(f"{field} must be >= 0, got {value!r}.")
    return number


def _non_negative_int(value: Any, field: str, *, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer, got {type(value).__name__}.")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0, got {value!r}.")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{field} must be <= {maximum}, got {value!r}.")
    return value


def _require_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean, got {type(value).__name__}.")
    return value


def _row_ts(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeRange:
    """Half-open ``[start, end)`` window over ``created_at``."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.start is not None:
            object.__setattr__(self, "start", normalize_utc(self.start, "time_range.start"))
        if self.end is not None:
            object.__setattr__(self, "end", normalize_utc(self.end, "time_range.end"))
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValidationError("time_range.start must not be after time_range.end.")


@dataclass(frozen=True)
class Page:
    """Limit/offset window applied after ordering."""

    limit: Optional[int] = None
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit is not None:
            if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit <= 0:
                raise ValidationError(f"page.limit must be a positive integer, got {self.limit!r}.")
        _non_negative_int(self.offset, "page.offset")


@dataclass(frozen=True)
class RiskCheckInput:
    user_id: Union[UUID, str]
    order_id: str
    symbol: str
    check_type: Union[CheckType, str]
    var_95: float = 0.0
    var_99: float = 0.0
    max_drawdown: float = 0.0
    passed: bool = True
    reason: Optional[str] = None
    latency_us: int = 0
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RiskCheck:
    """Stored evaluation of one order against one risk rule."""

    id: UUID
    user_id: UUID
    order_id: str
    symbol: str
    check_type: CheckType
    var_95: float
    var_99: float
    max_drawdown: float
    passed: bool
    reason: Optional[str]
    latency_us: int
    created_at: datetime

    @classmethod
    def validate(cls, payload: RiskCheckInput, *, record_id: UUID, created_at: datetime) -> "RiskCheck":
        """Build a stored record from caller input, raising ValidationError on any violation."""
        return cls(
            id=coerce_uuid(payload.id if payload.id is not None else record_id, "id"),
            user_id=coerce_uuid(payload.user_id, "user_id"),
            order_id=_require_text(payload.order_id, "order_id"),
            symbol=_require_text(payload.symbol, "symbol"),
            check_type=coerce_enum(CheckType, payload.check_type, "check_type"),
            var_95=_finite_float(payload.var_95, "var_95", non_negative=True),
            var_99=_finite_float(payload.var_99, "var_99", non_negative=True),
            max_drawdown=_finite_float(payload.max_drawdown, "max_drawdown", non_negative=True),
            passed=_require_bool(payload.passed, "passed"),
            reason=_optional_text(payload.reason, "reason"),
            latency_us=_non_negative_int(payload.latency_us, "latency_us", maximum=BIGINT_MAX),
            created_at=normalize_utc(
                payload.created_at if payload.created_at is not None else created_at,
                "created_at",
            ),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RiskCheck":
        return cls(
            id=coerce_uuid(row["id"], "id"),
            user_id=coerce_uuid(row["user_id"], "user_id"),
            order_id=row["order_id"],
            symbol=row["symbol"],
            check_type=CheckType(row["check_type"]),
            var_95=float(row["var_95"]),
            var_99=float(row["var_99"]),
            max_drawdown=float(row["max_drawdown"]),
            passed=bool(row["passed"]),
            reason=row["reason"],
            latency_us=int(row["latency_us"]),
            created_at=_row_ts(row["created_at"]),
        )

    def as_params(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "order_id": self.order_id,
            "symbol": self.symbol,
            "check_type": self.check_type.value,
            "var_95": self.var_95,
            "var_99": self.var_99,
            "max_drawdown": self.max_drawdown,
            "passed": self.passed,
            "reason": self.reason,
            "latency_us": self.latency_us,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class MarginCalculationInput:
    user_id: Union[UUID, str]
    portfolio_value: float = 0.0
    initial_margin: float = 0.0
    maintenance_margin: float = 0.0
    available_margin: float = 0.0
    margin_utilization: float = 0.0
    margin_call: bool = False
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class MarginCalculation:
    """Stored margin snapshot; figures are recorded as computed upstream."""

    id: UUID
    user_id: UUID
    portfolio_value: float
    initial_margin: float
    maintenance_margin: float
    available_margin: float
    margin_utilization: float
    margin_call: bool
    created_at: datetime

    @classmethod
    def validate(
        cls,
        payload: MarginCalculationInput,
        *,
        record_id: UUID,
        created_at: datetime,
    ) -> "MarginCalculation":
        return cls(
            id=coerce_uuid(payload.id if payload.id is not None else record_id, "id"),
            user_id=coerce_uuid(payload.user_id, "user_id"),
            portfolio_value=_finite_float(payload.portfolio_value, "portfolio_value"),
            initial_margin=_finite_float(payload.initial_margin, "initial_margin"),
            maintenance_margin=_finite_float(payload.maintenance_margin, "maintenance_margin"),
            available_margin=_finite_float(payload.available_margin, "available_margin"),
            margin_utilization=_finite_float(payload.margin_utilization, "margin_utilization"),
            margin_call=_require_bool(payload.margin_call, "margin_call"),
            created_at=normalize_utc(
                payload.created_at if payload.created_at is not None else created_at,
                "created_at",
            ),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MarginCalculation":
        return cls(
            id=coerce_uuid(row["id"], "id"),
            user_id=coerce_uuid(row["user_id"], "user_id"),
            portfolio_value=float(row["portfolio_value"]),
            initial_margin=float(row["initial_margin"]),
            maintenance_margin=float(row["maintenance_margin"]),
            available_margin=float(row["available_margin"]),
            margin_utilization=float(row["margin_utilization"]),
            margin_call=bool(row["margin_call"]),
            created_at=_row_ts(row["created_at"]),
        )

    def as_params(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "portfolio_value": self.portfolio_value,
            "initial_margin": self.initial_margin,
            "maintenance_margin": self.maintenance_margin,
            "available_margin": self.available_margin,
            "margin_utilization": self.margin_utilization,
            "margin_call": self.margin_call,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class BreakerOpen:
    """Breaker is still in force."""


@dataclass(frozen=True)
class BreakerResolved:
    """Breaker condition cleared at ``resolved_at``."""

    resolved_at: datetime


BreakerStatus = Union[BreakerOpen, BreakerResolved]


@dataclass(frozen=True)
class CircuitBreakerEventInput:
    user_id: Union[UUID, str]
    level: Union[BreakerLevel, str]
    trigger_type: Union[TriggerType, str]
    action: Union[BreakerAction, str]
    symbol: Optional[str] = None
    threshold: float = 0.0
    actual_value: float = 0.0
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CircuitBreakerEvent:
    """Stored breaker trip. ``symbol=None`` means account or market wide."""

    id: UUID
    user_id: UUID
    symbol: Optional[str]
    level: BreakerLevel
    trigger_type: TriggerType
    threshold: float
    actual_value: float
    action: BreakerAction
    status: BreakerStatus
    created_at: datetime

    @property
    def resolved_at(self) -> Optional[datetime]:
        if isinstance(self.status, BreakerResolved):
            return self.status.resolved_at
        return None

    @property
    def is_open(self) -> bool:
        return isinstance(self.status, BreakerOpen)

    def resolve(self, resolved_at: datetime) -> "CircuitBreakerEvent":
        """Return the OPEN -> RESOLVED transition of this event."""
        if not self.is_open:
            raise AlreadyResolvedError(
                f"Circuit breaker event {self.id} already resolved at {self.resolved_at.isoformat()}."
            )
        at = normalize_utc(resolved_at, "resolved_at")
        if at < self.created_at:
            raise ValidationError(
                f"resolved_at {at.isoformat()} precedes created_at {self.created_at.isoformat()}."
            )
        return replace(self, status=BreakerResolved(resolved_at=at))

    @classmethod
    def validate(
        cls,
        payload: CircuitBreakerEventInput,
        *,
        record_id: UUID,
        created_at: datetime,
    ) -> "CircuitBreakerEvent":
        symbol = payload.symbol
        if symbol is not None:
            symbol = _require_text(symbol, "symbol")
        return cls(
            id=coerce_uuid(payload.id if payload.id is not None else record_id, "id"),
            user_id=coerce_uuid(payload.user_id, "user_id"),
            symbol=symbol,
            level=coerce_enum(BreakerLevel, payload.level, "level"),
            trigger_type=coerce_enum(TriggerType, payload.trigger_type, "trigger_type"),
            threshold=_finite_float(payload.threshold, "threshold"),
            actual_value=_finite_float(payload.actual_value, "actual_value"),
            action=coerce_enum(BreakerAction, payload.action, "action"),
            status=BreakerOpen(),
            created_at=normalize_utc(
                payload.created_at if payload.created_at is not None else created_at,
                "created_at",
            ),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CircuitBreakerEvent":
        resolved_at = row["resolved_at"]
        status: BreakerStatus = (
            BreakerOpen() if resolved_at is None else BreakerResolved(resolved_at=_row_ts(resolved_at))
        )
        return cls(
            id=coerce_uuid(row["id"], "id"),
            user_id=coerce_uuid(row["user_id"], "user_id"),
            symbol=row["symbol"],
            level=BreakerLevel(row["level"]),
            trigger_type=TriggerType(row["trigger_type"]),
            threshold=float(row["threshold"]),
            actual_value=float(row["actual_value"]),
            action=BreakerAction(row["action"]),
            status=status,
            created_at=_row_ts(row["created_at"]),
        )

    def as_params(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "symbol": self.symbol,
            "level": self.level.value,
            "trigger_type": self.trigger_type.value,
            "threshold": self.threshold,
            "actual_value": self.actual_value,
            "action": self.action.value,
            "resolved_at": self.resolved_at,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class RiskStats:
    """Activity counters derived from persisted rows."""

    total_checks: int
    total_margin_calcs: int
    total_alerts: int
    trades_blocked: int
    open_breakers: int
    block_rate_pct: float
