#!/usr/bin/env python3
"""
Operational CLI for the stock ledger.

Usage:
    python3 scripts/ledger_admin.py init-db
    python3 scripts/ledger_admin.py rollover             # cron path, with retries
    python3 scripts/ledger_admin.py rollover --manual    # operator path, partial carry-forward
    python3 scripts/ledger_admin.py status
    python3 scripts/ledger_admin.py resync --from 2024-01-01 [--product P-1]
    python3 scripts/ledger_admin.py bootstrap-snapshots
    python3 scripts/ledger_admin.py low-stock [--date 2024-01-05]
    python3 scripts/ledger_admin.py dates [--limit 30]
    python3 scripts/ledger_admin.py check --product P-1 --from 2024-01-01 [--to 2024-01-31]
    python3 scripts/ledger_admin.py serve                # run the scheduler until Ctrl-C

Global options:
    --config PATH          override file merged over stock_config/defaults.yaml
    --database-url URL     overrides database.url (and STOCK_LEDGER_DATABASE_URL)
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from stock_batch.domain.retry import RetryPolicy
from stock_batch.services.backfill import LedgerResyncService
from stock_batch.services.jobs import PendingTransactionJob, StockAlertJob
from stock_batch.services.rollover import DailyRolloverService
from stock_batch.services.scheduler import LedgerScheduler, default_jobs
from stock_config import LedgerSettings, get_settings
from stock_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import StockKernelError
from stock_kernel.logging_config import configure_logging
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.services.consistency_checker import ConsistencyChecker


@dataclass
class AdminContext:
    settings: LedgerSettings
    calendar: BusinessCalendar
    session_factory: sessionmaker[Session]

    @property
    def actor_id(self) -> UUID:
        return self.settings.system_actor_id

    def rollover_service(self) -> DailyRolloverService:
        rollover = self.settings.rollover
        return DailyRolloverService(
            self.session_factory,
            self.calendar,
            self.actor_id,
            enabled=rollover.enabled,
            cron_expression=rollover.cron,
            retry_policy=RetryPolicy(rollover.max_attempts, rollover.retry_delays_seconds),
            batch_size=rollover.insert_batch_size,
            retention_days=rollover.retention_days,
        )


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stock ledger administration")
    parser.add_argument("--config", help="Settings override file (YAML)")
    parser.add_argument("--database-url", help="Database URL override")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create ledger tables")

    p = sub.add_parser("rollover", help="Run the daily rollover now")
    p.add_argument("--manual", action="store_true", help="Operator path (no retry, partial carry-forward)")

    sub.add_parser("status", help="Show rollover status")

    p = sub.add_parser("resync", help="Rebuild rows from the transaction log")
    p.add_argument("--from", dest="start_date", type=_parse_date, required=True)
    p.add_argument("--product", dest="product_id")

    sub.add_parser("bootstrap-snapshots", help="Snapshot past dates that have none")

    p = sub.add_parser("low-stock", help="List out-of-stock and low-stock products")
    p.add_argument("--date", dest="business_date", type=_parse_date)

    p = sub.add_parser("dates", help="List business dates in the ledger")
    p.add_argument("--limit", type=int, default=30)

    p = sub.add_parser("check", help="Verify formula and continuity for a product")
    p.add_argument("--product", dest="product_id", required=True)
    p.add_argument("--from", dest="date_from", type=_parse_date, required=True)
    p.add_argument("--to", dest="date_to", type=_parse_date)

    sub.add_parser("serve", help="Run the job scheduler in the foreground")
    return parser


def build_context(args: argparse.Namespace, clock: Clock | None = None) -> AdminContext:
    settings = get_settings(args.config)
    configure_logging(level=settings.log_level)
    database = settings.database
    init_engine_from_url(
        args.database_url or database.url,
        echo=database.echo,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
    )
    register_immutability_listeners()
    calendar = BusinessCalendar(
        clock or SystemClock(),
        settings.calendar.utc_offset_hours,
        settings.calendar.timezone_name,
    )
    return AdminContext(settings, calendar, get_session_factory())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init_db(ctx: AdminContext, args: argparse.Namespace) -> int:
    create_tables()
    print("Ledger tables created.")
    return 0


def cmd_rollover(ctx: AdminContext, args: argparse.Namespace) -> int:
    service = ctx.rollover_service()
    if args.manual:
        manual = service.trigger_manual()
        print(manual.message)
        return 0 if manual.success else 1
    result = service.execute_scheduled()
    if result is None:
        print("Rollover is disabled.")
        return 0
    print(
        f"{result.outcome.value}: {result.rows_carried} row(s) carried, "
        f"{result.snapshots_created} snapshot(s), {result.attempts} attempt(s)"
    )
    return 0 if result.succeeded else 1


def cmd_status(ctx: AdminContext, args: argparse.Namespace) -> int:
    status = ctx.rollover_service().get_status()
    print(f"Enabled:        {status.enabled}")
    print(f"Schedule:       {status.cron_expression} ({status.timezone_name})")
    print(f"Business date:  {status.business_date}")
    print(f"Next run:       {status.next_run_at or '-'}")
    if status.last_snapshot is not None:
        snap = status.last_snapshot
        print(f"Last snapshot:  {snap.snapshot_date} ({snap.product_count} products)")
    else:
        print("Last snapshot:  -")
    if status.pending_products:
        print(f"Pending carry-forward: {', '.join(status.pending_products)}")
    return 0


def cmd_resync(ctx: AdminContext, args: argparse.Namespace) -> int:
    result = LedgerResyncService(ctx.session_factory, ctx.calendar).resync(
        args.start_date, ctx.actor_id, args.product_id
    )
    print(
        f"Resynced {result.start_date}..{result.end_date}: "
        f"{result.updated_rows} row(s) updated, {result.created_rows} created"
    )
    return 0


def cmd_bootstrap_snapshots(ctx: AdminContext, args: argparse.Namespace) -> int:
    written = ctx.rollover_service().bootstrap_snapshots()
    for business_date, count in sorted(written.items()):
        print(f"{business_date}: {count} snapshot(s)")
    print(f"Bootstrapped {len(written)} date(s).")
    return 0


def cmd_low_stock(ctx: AdminContext, args: argparse.Namespace) -> int:
    business_date = args.business_date or ctx.calendar.today()
    with session_scope(ctx.session_factory) as session:
        alerts = LedgerSelector(session, ctx.calendar).low_stock_report(business_date)
    if not alerts:
        print(f"No low-stock products on {business_date}.")
        return 0
    for alert in alerts:
        minimum = alert.minimum_threshold if alert.minimum_threshold is not None else "-"
        print(f"{alert.label:<24} {alert.status.value:<14} {alert.closing_balance} (min {minimum})")
    return 0


def cmd_dates(ctx: AdminContext, args: argparse.Namespace) -> int:
    with session_scope(ctx.session_factory) as session:
        summaries = LedgerSelector(session, ctx.calendar).inventory_dates(args.limit)
    for summary in summaries:
        print(
            f"{summary.business_date}  rows={summary.row_count}  "
            f"opening={summary.total_opening}  closing={summary.total_closing}"
        )
    return 0


def cmd_check(ctx: AdminContext, args: argparse.Namespace) -> int:
    date_to = args.date_to or ctx.calendar.today()
    with session_scope(ctx.session_factory) as session:
        issues = ConsistencyChecker(session, ctx.calendar.clock).inspect(
            args.product_id, args.date_from, date_to
        )
    if not issues:
        print(f"{args.product_id}: consistent from {args.date_from} to {date_to}.")
        return 0
    for issue in issues:
        print(issue.describe())
    print(f"{len(issues)} issue(s); run 'resync --from {args.date_from}' to rebuild.")
    return 1


def cmd_serve(ctx: AdminContext, args: argparse.Namespace) -> int:
    jobs = ctx.settings.jobs
    scheduler = LedgerScheduler(
        ctx.calendar,
        default_jobs(
            rollover=ctx.rollover_service().execute_scheduled,
            pending=PendingTransactionJob(ctx.session_factory, ctx.calendar, ctx.actor_id).run,
            alerts=StockAlertJob(ctx.session_factory, ctx.calendar).run,
            rollover_cron=ctx.settings.rollover.cron,
            pending_cron=jobs.pending_cron,
            alert_cron=jobs.alert_cron,
        ),
        tick_interval_seconds=jobs.tick_interval_seconds,
    )
    scheduler.start()
    print("Scheduler running; Ctrl-C to stop.")
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "rollover": cmd_rollover,
    "status": cmd_status,
    "resync": cmd_resync,
    "bootstrap-snapshots": cmd_bootstrap_snapshots,
    "low-stock": cmd_low_stock,
    "dates": cmd_dates,
    "check": cmd_check,
    "serve": cmd_serve,
}


def main(argv: list[str] | None = None, clock: Clock | None = None) -> int:
    args = build_parser().parse_args(argv)
    ctx = build_context(args, clock)
    try:
        return COMMANDS[args.command](ctx, args)
    except StockKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
