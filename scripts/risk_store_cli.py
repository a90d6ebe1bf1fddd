#!/usr/bin/env python3
"""Risk store CLI for recording and querying risk engine outputs."""

from __future__ import annotations

import argparse
from dataclasses import asdict, replace
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sys
from typing import Any, Callable, Optional, Sequence
from uuid import UUID

# Ensure repository root is importable when script is executed by path.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from backend.db.enums import BreakerAction, BreakerLevel, CheckType, TriggerType
from risk_store.config import RiskStoreConfig, load_risk_store_config
from risk_store.db import PsycopgRiskDatabase, connect_risk_database
from risk_store.errors import RiskStoreError
from risk_store.records import (
    CircuitBreakerEventInput,
    MarginCalculationInput,
    Page,
    RiskCheckInput,
    TimeRange,
)
from risk_store.store import RiskEventStore

logger = logging.getLogger("risk_store.cli")


def _parse_ts(value: str) -> datetime:
    normalized = value.strip().replace("Z", "+00:00")
    try:
        ts = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid timestamp: {value}") from exc
    if ts.tzinfo is None:
        raise argparse.ArgumentTypeError("Timestamp must include timezone offset.")
    return ts.astimezone(timezone.utc)


def _format_ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return _format_ts(value)
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Unserializable value: {value!r}")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, sort_keys=True, default=_json_default))


def _add_window_args(cmd: argparse.ArgumentParser, *, paged: bool = True) -> None:
    cmd.add_argument("--start", type=_parse_ts, default=None, help="Inclusive created_at lower bound")
    cmd.add_argument("--end", type=_parse_ts, default=None, help="Exclusive created_at upper bound")
    if paged:
        cmd.add_argument("--limit", type=int, default=None)
        cmd.add_argument("--offset", type=int, default=0)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Risk event store CLI")
    parser.add_argument("--dsn", help="PostgreSQL DSN (optional)")
    parser.add_argument("--host", help="DB host")
    parser.add_argument("--port", help="DB port")
    parser.add_argument("--dbname", help="DB name")
    parser.add_argument("--user", help="DB user")
    parser.add_argument("--password", help="DB password")

    subparsers = parser.add_subparsers(dest="command", required=True)

    check_cmd = subparsers.add_parser("record-risk-check", help="Persist one risk check evaluation")
    check_cmd.add_argument("--user-id", required=True, type=UUID)
    check_cmd.add_argument("--order-id", required=True)
    check_cmd.add_argument("--symbol", required=True)
    check_cmd.add_argument("--check-type", required=True, choices=[m.value for m in CheckType])
    check_cmd.add_argument("--var-95", type=float, default=0.0)
    check_cmd.add_argument("--var-99", type=float, default=0.0)
    check_cmd.add_argument("--max-drawdown", type=float, default=0.0)
    check_cmd.add_argument("--failed", action="store_true", help="Record the check as not passed")
    check_cmd.add_argument("--reason", default=None)
    check_cmd.add_argument("--latency-us", type=int, default=0)
    check_cmd.add_argument("--created-at", type=_parse_ts, default=None)

    margin_cmd = subparsers.add_parser("record-margin", help="Persist one margin snapshot")
    margin_cmd.add_argument("--user-id", required=True, type=UUID)
    margin_cmd.add_argument("--portfolio-value", type=float, default=0.0)
    margin_cmd.add_argument("--initial-margin", type=float, default=0.0)
    margin_cmd.add_argument("--maintenance-margin", type=float, default=0.0)
    margin_cmd.add_argument("--available-margin", type=float, default=0.0)
    margin_cmd.add_argument("--margin-utilization", type=float, default=0.0)
    margin_cmd.add_argument("--margin-call", action="store_true")
    margin_cmd.add_argument("--created-at", type=_parse_ts, default=None)

    breaker_cmd = subparsers.add_parser("record-breaker", help="Persist a tripped circuit breaker")
    breaker_cmd.add_argument("--user-id", required=True, type=UUID)
    breaker_cmd.add_argument("--symbol", default=None, help="Omit for account/market wide breakers")
    breaker_cmd.add_argument("--level", required=True, choices=[m.value for m in BreakerLevel])
    breaker_cmd.add_argument("--trigger-type", required=True, choices=[m.value for m in TriggerType])
    breaker_cmd.add_argument("--action", required=True, choices=[m.value for m in BreakerAction])
    breaker_cmd.add_argument("--threshold", type=float, default=0.0)
    breaker_cmd.add_argument("--actual-value", type=float, default=0.0)
    breaker_cmd.add_argument("--created-at", type=_parse_ts, default=None)

    resolve_cmd = subparsers.add_parser("resolve-breaker", help="Resolve an open circuit breaker event")
    resolve_cmd.add_argument("--event-id", required=True, type=UUID)
    resolve_cmd.add_argument("--resolved-at", type=_parse_ts, default=None, help="Defaults to now")

    get_cmd = subparsers.add_parser("get", help="Fetch one record by id")
    get_cmd.add_argument("--kind", required=True, choices=("risk-check", "margin", "breaker"))
    get_cmd.add_argument("--id", required=True, type=UUID)

    list_checks_cmd = subparsers.add_parser("list-risk-checks", help="List risk checks by user or order")
    check_target = list_checks_cmd.add_mutually_exclusive_group(required=True)
    check_target.add_argument("--user-id", type=UUID)
    check_target.add_argument("--order-id")
    _add_window_args(list_checks_cmd)

    list_margins_cmd = subparsers.add_parser("list-margins", help="List margin snapshots for a user")
    list_margins_cmd.add_argument("--user-id", required=True, type=UUID)
    list_margins_cmd.add_argument("--latest", action="store_true", help="Only the most recent snapshot")
    _add_window_args(list_margins_cmd)

    list_breakers_cmd = subparsers.add_parser("list-breakers", help="List breaker events by user or symbol")
    breaker_target = list_breakers_cmd.add_mutually_exclusive_group(required=True)
    breaker_target.add_argument("--user-id", type=UUID)
    breaker_target.add_argument("--symbol")
    _add_window_args(list_breakers_cmd)

    open_cmd = subparsers.add_parser("open-breakers", help="List breaker events not yet resolved")
    open_cmd.add_argument("--user-id", type=UUID, default=None)
    open_cmd.add_argument("--symbol", default=None)
    open_cmd.add_argument("--limit", type=int, default=None)
    open_cmd.add_argument("--offset", type=int, default=0)

    stats_cmd = subparsers.add_parser("stats", help="Aggregate check, block and alert counters")
    stats_cmd.add_argument("--user-id", type=UUID, default=None)
    _add_window_args(stats_cmd, paged=False)

    return parser


def _resolve_config(args: argparse.Namespace) -> RiskStoreConfig:
    """Overlay connection flags on the environment configuration."""
    config = load_risk_store_config()
    overrides = {
        field: value
        for field, value in (
            ("db_dsn", args.dsn),
            ("db_host", args.host),
            ("db_port", args.port),
            ("db_name", args.dbname),
            ("db_user", args.user),
            ("db_password", args.password),
        )
        if value
    }
    return replace(config, **overrides) if overrides else config


def _check_window_scope(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Order and symbol listings take no time window; only user listings do."""
    if args.command not in ("list-risk-checks", "list-breakers"):
        return
    if args.start is None and args.end is None:
        return
    if args.user_id is None:
        parser.error("--start/--end are only supported together with --user-id")


def _window(args: argparse.Namespace) -> Optional[TimeRange]:
    if args.start is None and args.end is None:
        return None
    return TimeRange(start=args.start, end=args.end)


def _page(args: argparse.Namespace) -> Page:
    return Page(limit=args.limit, offset=args.offset)


def _records(records: Sequence[Any]) -> dict[str, Any]:
    return {"count": len(records), "records": [record.as_params() for record in records]}


def _run_command(store: RiskEventStore, args: argparse.Namespace) -> Any:
    if args.command == "record-risk-check":
        return store.record_risk_check(
            RiskCheckInput(
                user_id=args.user_id,
                order_id=args.order_id,
                symbol=args.symbol,
                check_type=args.check_type,
                var_95=args.var_95,
                var_99=args.var_99,
                max_drawdown=args.max_drawdown,
                passed=not args.failed,
                reason=args.reason,
                latency_us=args.latency_us,
                created_at=args.created_at,
            )
        ).as_params()

    if args.command == "record-margin":
        return store.record_margin_calculation(
            MarginCalculationInput(
                user_id=args.user_id,
                portfolio_value=args.portfolio_value,
                initial_margin=args.initial_margin,
                maintenance_margin=args.maintenance_margin,
                available_margin=args.available_margin,
                margin_utilization=args.margin_utilization,
                margin_call=args.margin_call,
                created_at=args.created_at,
            )
        ).as_params()

    if args.command == "record-breaker":
        return store.record_circuit_breaker_event(
            CircuitBreakerEventInput(
                user_id=args.user_id,
                symbol=args.symbol,
                level=args.level,
                trigger_type=args.trigger_type,
                action=args.action,
                threshold=args.threshold,
                actual_value=args.actual_value,
                created_at=args.created_at,
            )
        ).as_params()

    if args.command == "resolve-breaker":
        resolved_at = args.resolved_at or datetime.now(timezone.utc)
        return store.resolve_circuit_breaker_event(args.event_id, resolved_at).as_params()

    if args.command == "get":
        getters: dict[str, Callable[[UUID], Any]] = {
            "risk-check": store.get_risk_check,
            "margin": store.get_margin_calculation,
            "breaker": store.get_circuit_breaker_event,
        }
        return getters[args.kind](args.id).as_params()

    if args.command == "list-risk-checks":
        if args.order_id is not None:
            return _records(store.list_risk_checks_by_order(args.order_id, page=_page(args)))
        return _records(store.list_risk_checks_by_user(args.user_id, _window(args), _page(args)))

    if args.command == "list-margins":
        if args.latest:
            latest = store.latest_margin_calculation(args.user_id)
            return _records([] if latest is None else [latest])
        return _records(store.list_margin_calculations_by_user(args.user_id, _window(args), _page(args)))

    if args.command == "list-breakers":
        if args.symbol is not None:
            return _records(store.list_circuit_breaker_events_by_symbol(args.symbol, page=_page(args)))
        return _records(
            store.list_circuit_breaker_events_by_user(args.user_id, _window(args), _page(args))
        )

    if args.command == "open-breakers":
        return _records(
            store.list_open_circuit_breaker_events(
                user_id=args.user_id,
                symbol=args.symbol,
                page=_page(args),
            )
        )

    return asdict(store.risk_stats(user_id=args.user_id, time_range=_window(args)))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _check_window_scope(parser, args)

    config = _resolve_config(args)
    logging.basicConfig(
        level=config.log_level_value,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        db: PsycopgRiskDatabase = connect_risk_database(config)
    except RiskStoreError as exc:
        _emit({"error": type(exc).__name__, "detail": str(exc)})
        return 2
    except RuntimeError as exc:
        raise SystemExit(str(exc)) from exc

    try:
        store = RiskEventStore(db, config=config)
        try:
            payload = _run_command(store, args)
        except RiskStoreError as exc:
            logger.warning("Command %s failed: %s", args.command, exc)
            _emit({"error": type(exc).__name__, "detail": str(exc)})
            return 2
        _emit(payload)
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
