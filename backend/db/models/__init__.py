"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.auth_user import AuthUser
from backend.db.models.risk import CircuitBreakerEvent, MarginCalculation, RiskCheck

logger = logging.getLogger(__name__)

__all__ = [
    "AuthUser",
    "CircuitBreakerEvent",
    "MarginCalculation",
    "RiskCheck",
]
