"""Risk domain schema: risk checks, margin calculations, circuit breaker events."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_risk_domain"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


# auth.users belongs to the identity provider; created only when the host lacks it.
AUTH_REFERENCE_DDL: tuple[str, ...] = (
    "CREATE SCHEMA IF NOT EXISTS auth;",
    "CREATE TABLE IF NOT EXISTS auth.users (id UUID PRIMARY KEY);",
)

TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE risk_checks (
        id UUID NOT NULL DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL,
        order_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        check_type TEXT NOT NULL,
        var_95 DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        var_99 DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        max_drawdown DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        passed BOOLEAN NOT NULL DEFAULT TRUE,
        reason TEXT,
        latency_us BIGINT NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_risk_checks PRIMARY KEY (id),
        CONSTRAINT fk_risk_checks_user FOREIGN KEY (user_id) REFERENCES auth.users (id) ON UPDATE RESTRICT ON DELETE RESTRICT,
        CONSTRAINT ck_risk_checks_check_type CHECK (check_type IN ('pretrade', 'position-limit', 'notional-limit', 'concentration')),
        CONSTRAINT ck_risk_checks_order_id_not_blank CHECK (length(btrim(order_id)) > 0),
        CONSTRAINT ck_risk_checks_symbol_not_blank CHECK (length(btrim(symbol)) > 0),
        CONSTRAINT ck_risk_checks_magnitudes_non_negative CHECK (var_95 >= 0 AND var_99 >= 0 AND max_drawdown >= 0),
        CONSTRAINT ck_risk_checks_latency_non_negative CHECK (latency_us >= 0)
    );
    """,
    """
    CREATE TABLE margin_calculations (
        id UUID NOT NULL DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL,
        portfolio_value DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        initial_margin DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        maintenance_margin DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        available_margin DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        margin_utilization DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        margin_call BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_margin_calculations PRIMARY KEY (id),
        CONSTRAINT fk_margin_calculations_user FOREIGN KEY (user_id) REFERENCES auth.users (id) ON UPDATE RESTRICT ON DELETE RESTRICT
    );
    """,
    """
    CREATE TABLE circuit_breaker_events (
        id UUID NOT NULL DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL,
        symbol TEXT,
        level TEXT NOT NULL,
        trigger_type TEXT NOT NULL,
        threshold DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        actual_value DOUBLE PRECISION NOT NULL DEFAULT 0.0,
        action TEXT NOT NULL,
        resolved_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_circuit_breaker_events PRIMARY KEY (id),
        CONSTRAINT fk_circuit_breaker_events_user FOREIGN KEY (user_id) REFERENCES auth.users (id) ON UPDATE RESTRICT ON DELETE RESTRICT,
        CONSTRAINT ck_circuit_breaker_events_level CHECK (level IN ('L1', 'L2', 'L3')),
        CONSTRAINT ck_circuit_breaker_events_trigger_type CHECK (trigger_type IN ('price-move', 'volume-spike', 'loss-limit', 'manual')),
        CONSTRAINT ck_circuit_breaker_events_action CHECK (action IN ('pause-5min', 'halt-trading', 'liquidate-all')),
        CONSTRAINT ck_circuit_breaker_events_symbol_not_blank CHECK (symbol IS NULL OR length(btrim(symbol)) > 0),
        CONSTRAINT ck_circuit_breaker_events_resolved_after_created CHECK (resolved_at IS NULL OR resolved_at >= created_at)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX idx_risk_checks_user ON risk_checks USING btree (user_id, created_at);",
    "CREATE INDEX idx_risk_checks_order ON risk_checks USING btree (order_id);",
    "CREATE INDEX idx_margin_calculations_user ON margin_calculations USING btree (user_id, created_at);",
    "CREATE INDEX idx_circuit_breaker_events_user ON circuit_breaker_events USING btree (user_id, created_at);",
    "CREATE INDEX idx_circuit_breaker_events_symbol ON circuit_breaker_events USING btree (symbol);",
    "CREATE INDEX idx_circuit_breaker_events_open ON circuit_breaker_events USING btree (user_id, created_at) WHERE resolved_at IS NULL;",
)

IMMUTABILITY_DDL: tuple[str, ...] = (
    """
    CREATE OR REPLACE FUNCTION fn_enforce_append_only()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        RAISE EXCEPTION 'append-only violation on table %, operation % is not allowed', TG_TABLE_NAME, TG_OP;
    END;
    $$;
    """,
    """
    CREATE OR REPLACE FUNCTION fn_enforce_breaker_resolve_once()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        IF TG_OP = 'DELETE' THEN
            RAISE EXCEPTION 'append-only violation on table %, operation % is not allowed', TG_TABLE_NAME, TG_OP;
        END IF;
        IF OLD.resolved_at IS NOT NULL
           OR NEW.resolved_at IS NULL
           OR (NEW.id, NEW.user_id, NEW.symbol, NEW.level, NEW.trigger_type,
               NEW.threshold, NEW.actual_value, NEW.action, NEW.created_at)
              IS DISTINCT FROM
              (OLD.id, OLD.user_id, OLD.symbol, OLD.level, OLD.trigger_type,
               OLD.threshold, OLD.actual_value, OLD.action, OLD.created_at) THEN
            RAISE EXCEPTION 'circuit breaker event % only allows resolved_at to be set once', OLD.id;
        END IF;
        RETURN NEW;
    END;
    $$;
    """,
    """
    CREATE TRIGGER trg_risk_checks_append_only
    BEFORE UPDATE OR DELETE ON risk_checks
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
    """
    CREATE TRIGGER trg_margin_calculations_append_only
    BEFORE UPDATE OR DELETE ON margin_calculations
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
    """
    CREATE TRIGGER trg_circuit_breaker_events_resolve_once
    BEFORE UPDATE OR DELETE ON circuit_breaker_events
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_breaker_resolve_once();
    """,
)

DROP_DDL: tuple[str, ...] = (
    "DROP TRIGGER IF EXISTS trg_circuit_breaker_events_resolve_once ON circuit_breaker_events;",
    "DROP TRIGGER IF EXISTS trg_margin_calculations_append_only ON margin_calculations;",
    "DROP TRIGGER IF EXISTS trg_risk_checks_append_only ON risk_checks;",
    "DROP FUNCTION IF EXISTS fn_enforce_breaker_resolve_once();",
    "DROP FUNCTION IF EXISTS fn_enforce_append_only();",
    "DROP TABLE IF EXISTS circuit_breaker_events;",
    "DROP TABLE IF EXISTS margin_calculations;",
    "DROP TABLE IF EXISTS risk_checks;",
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the risk domain schema migration."""

    logger.info("Starting risk domain schema migration upgrade.")
    _execute_all(AUTH_REFERENCE_DDL)
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    _execute_all(IMMUTABILITY_DDL)
    logger.info("Completed risk domain schema migration upgrade.")


def downgrade() -> None:
    """Revert the risk domain schema migration; auth.users is left in place."""

    logger.info("Starting risk domain schema migration downgrade.")
    _execute_all(DROP_DDL)
    logger.info("Completed risk domain schema migration downgrade.")
