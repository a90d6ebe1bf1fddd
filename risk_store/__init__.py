"""Validated persistence for risk checks, margin snapshots and circuit breaker events."""

from risk_store.config import RiskStoreConfig, load_risk_store_config
from risk_store.db import PsycopgRiskDatabase, RiskStoreDatabase, connect_risk_database
from risk_store.errors import (
    AlreadyResolvedError,
    NotFoundError,
    ReferentialIntegrityError,
    RiskStoreError,
    StorageUnavailableError,
    ValidationError,
)
from risk_store.records import (
    BreakerOpen,
    BreakerResolved,
    CircuitBreakerEvent,
    CircuitBreakerEventInput,
    MarginCalculation,
    MarginCalculationInput,
    Page,
    RiskCheck,
    RiskCheckInput,
    RiskStats,
    TimeRange,
)
from risk_store.store import RiskEventStore

__all__ = [
    "AlreadyResolvedError",
    "BreakerOpen",
    "BreakerResolved",
    "CircuitBreakerEvent",
    "CircuitBreakerEventInput",
    "MarginCalculation",
    "MarginCalculationInput",
    "NotFoundError",
    "Page",
    "PsycopgRiskDatabase",
    "ReferentialIntegrityError",
    "RiskCheck",
    "RiskCheckInput",
    "RiskEventStore",
    "RiskStats",
    "RiskStoreConfig",
    "RiskStoreDatabase",
    "RiskStoreError",
    "StorageUnavailableError",
    "TimeRange",
    "ValidationError",
    "connect_risk_database",
    "load_risk_store_config",
]
