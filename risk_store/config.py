"""Environment-backed configuration for the risk store."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Any, Optional

_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class RiskStoreConfig:
    """Connection, paging and logging settings for the risk store."""

    db_dsn: Optional[str] = None
    db_host: Optional[str] = None
    db_port: Optional[str] = None
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    connect_timeout_seconds: int = 10
    default_page_size: int = 100
    max_page_size: int = 1000
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.connect_timeout_seconds <= 0:
            raise RuntimeError("RISK_DB_CONNECT_TIMEOUT_SECONDS must be positive.")
        if self.default_page_size <= 0 or self.max_page_size <= 0:
            raise RuntimeError("Page sizes must be positive.")
        if self.default_page_size > self.max_page_size:
            raise RuntimeError(
                "RISK_STORE_DEFAULT_PAGE_SIZE must not exceed RISK_STORE_MAX_PAGE_SIZE."
            )
        if self.log_level not in _LOG_LEVELS:
            raise RuntimeError(f"Invalid RISK_STORE_LOG_LEVEL: {self.log_level}")

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    def connection_kwargs(self) -> dict[str, Any]:
        """Return psycopg.connect keyword arguments."""
        if self.db_dsn:
            return {
                "conninfo": self.db_dsn,
                "connect_timeout": self.connect_timeout_seconds,
                "autocommit": False,
            }
        missing = [
            key
            for key, value in (
                ("host", self.db_host),
                ("port", self.db_port),
                ("dbname", self.db_name),
                ("user", self.db_user),
                ("password", self.db_password),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(
                "Missing DB connection settings. Set RISK_DB_DSN or RISK_DB_HOST/PORT/NAME/USER/PASSWORD "
                f"(missing: {', '.join(missing)})."
            )
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
            "connect_timeout": self.connect_timeout_seconds,
            "autocommit": False,
        }


def _read_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    return value


def load_risk_store_config() -> RiskStoreConfig:
    """Load and validate risk store configuration from environment."""
    return RiskStoreConfig(
        db_dsn=_read_optional("RISK_DB_DSN"),
        db_host=_read_optional("RISK_DB_HOST"),
        db_port=_read_optional("RISK_DB_PORT"),
        db_name=_read_optional("RISK_DB_NAME"),
        db_user=_read_optional("RISK_DB_USER"),
        db_password=_read_optional("RISK_DB_PASSWORD"),
        connect_timeout_seconds=_read_int("RISK_DB_CONNECT_TIMEOUT_SECONDS", 10),
        default_page_size=_read_int("RISK_STORE_DEFAULT_PAGE_SIZE", 100),
        max_page_size=_read_int("RISK_STORE_MAX_PAGE_SIZE", 1000),
        log_level=(_read_optional("RISK_STORE_LOG_LEVEL") or "INFO").upper(),
    )
