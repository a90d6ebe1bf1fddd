"""Risk check, margin snapshot and circuit breaker event model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Double,
    ForeignKey,
    Index,
    PrimaryKeyConstraint,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import (
    BreakerAction,
    BreakerLevel,
    CheckType,
    TriggerType,
    check_in_clause,
)

logger = logging.getLogger(__name__)


def _user_fk(table_name: str) -> ForeignKey:
    return ForeignKey(
        "auth.users.id",
        name=f"fk_{table_name}_user",
        onupdate="RESTRICT",
        ondelete="RESTRICT",
    )


class RiskCheck(Base):
    """Append-only evaluation of one order against one risk rule."""

    __tablename__ = "risk_checks"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_risk_checks"),
        CheckConstraint(
            check_in_clause("check_type", CheckType),
            name="ck_risk_checks_check_type",
        ),
        CheckConstraint(
            "length(btrim(order_id)) > 0",
            name="ck_risk_checks_order_id_not_blank",
        ),
        CheckConstraint(
            "length(btrim(symbol)) > 0",
            name="ck_risk_checks_symbol_not_blank",
        ),
        CheckConstraint(
            "var_95 >= 0 AND var_99 >= 0 AND max_drawdown >= 0",
            name="ck_risk_checks_magnitudes_non_negative",
        ),
        CheckConstraint("latency_us >= 0", name="ck_risk_checks_latency_non_negative"),
        Index("idx_risk_checks_user", "user_id", "created_at"),
        Index("idx_risk_checks_order", "order_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        _user_fk("risk_checks"),
        nullable=False,
    )
    order_id: Mapped[str] = mapped_column(Text, nullable=False)
    symbol: Mapped[str] = mapped_column(Text, nullable=False)
    check_type: Mapped[str] = mapped_column(Text, nullable=False)
    var_95: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    var_99: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    max_drawdown: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("TRUE"))
    reason: Mapped[str | None] = mapped_column(Text)
    latency_us: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class MarginCalculation(Base):
    """Append-only snapshot of a user's margin state."""

    __tablename__ = "margin_calculations"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_margin_calculations"),
        Index("idx_margin_calculations_user", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        _user_fk("margin_calculations"),
        nullable=False,
    )
    portfolio_value: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    initial_margin: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    maintenance_margin: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    available_margin: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    margin_utilization: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    margin_call: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("FALSE"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class CircuitBreakerEvent(Base):
    """Trading halt trigger; resolved_at is written at most once."""

    __tablename__ = "circuit_breaker_events"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_circuit_breaker_events"),
        CheckConstraint(
            check_in_clause("level", BreakerLevel),
            name="ck_circuit_breaker_events_level",
        ),
        CheckConstraint(
            check_in_clause("trigger_type", TriggerType),
            name="ck_circuit_breaker_events_trigger_type",
        ),
        CheckConstraint(
            check_in_clause("action", BreakerAction),
            name="ck_circuit_breaker_events_action",
        ),
        CheckConstraint(
            "symbol IS NULL OR length(btrim(symbol)) > 0",
            name="ck_circuit_breaker_events_symbol_not_blank",
        ),
        CheckConstraint(
            "resolved_at IS NULL OR resolved_at >= created_at",
            name="ck_circuit_breaker_events_resolved_after_created",
        ),
        Index("idx_circuit_breaker_events_user", "user_id", "created_at"),
        Index("idx_circuit_breaker_events_symbol", "symbol"),
        Index(
            "idx_circuit_breaker_events_open",
            "user_id",
            "created_at",
            postgresql_where=text("resolved_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        _user_fk("circuit_breaker_events"),
        nullable=False,
    )
    symbol: Mapped[str | None] = mapped_column(Text)
    level: Mapped[str] = mapped_column(Text, nullable=False)
    trigger_type: Mapped[str] = mapped_column(Text, nullable=False)
    threshold: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    actual_value: Mapped[float] = mapped_column(Double, nullable=False, server_default=text("0.0"))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
