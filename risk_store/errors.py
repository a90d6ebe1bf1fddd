"""Error taxonomy for risk store operations."""

from __future__ import annotations


class RiskStoreError(RuntimeError):
    """Base class for every failure reported by the risk store."""


class ValidationError(RiskStoreError):
    """Input violates an enumeration, range or shape constraint."""


class ReferentialIntegrityError(RiskStoreError):
    """Record references a user id the identity provider does not know."""


class NotFoundError(RiskStoreError):
    """No record exists for the requested id."""


class AlreadyResolvedError(RiskStoreError):
    """Circuit breaker event was resolved before this attempt."""


class StorageUnavailableError(RiskStoreError):
    """Transport or durability failure talking to the backing database."""
