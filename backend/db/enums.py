"""Closed text enumerations enforced by check constraints in the risk schema."""

from __future__ import annotations

import enum
import logging

logger = logging.getLogger(__name__)


class CheckType(str, enum.Enum):
    """Risk rule an order was evaluated against."""

    PRETRADE = "pretrade"
    POSITION_LIMIT = "position-limit"
    NOTIONAL_LIMIT = "notional-limit"
    CONCENTRATION = "concentration"


class BreakerLevel(str, enum.Enum):
    """Circuit breaker severity level."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"


class TriggerType(str, enum.Enum):
    """Condition that tripped a circuit breaker."""

    PRICE_MOVE = "price-move"
    VOLUME_SPIKE = "volume-spike"
    LOSS_LIMIT = "loss-limit"
    MANUAL = "manual"


class BreakerAction(str, enum.Enum):
    """Action taken when a circuit breaker trips."""

    PAUSE_5MIN = "pause-5min"
    HALT_TRADING = "halt-trading"
    LIQUIDATE_ALL = "liquidate-all"


def check_in_clause(column: str, enum_cls: type[enum.Enum]) -> str:
    """Render the ``column IN (...)`` predicate for a check constraint."""
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"
