from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import psycopg2
from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config, window_start
from ..db.attendance_store import PostgresAttendanceStore
from ..logging.init import log_summary, setup_logging
from ..models.classification import Block
from ..models.config_models import SyncConfig
from ..models.records import FREE_ATTENDANCE_KEY, PAID_ATTENDANCE_KEY, SOCIAL_ATTENDANCE_KEY
from ..models.reconciliation_report import ReconciliationReport
from ..services.enrollment_report import (
    BLOCK_WEEKS,
    analyze_block_enrollment,
    class_popularity,
    enrollment_timing,
    export_enrollment_csv,
    export_report_csv,
    free_class_conversion,
    revenue_by_class,
    revenue_by_term,
    revenue_dataframe,
)
from ..services.orchestrator import ReconciliationEngine
from ..services.projector import TermScope
from ..services.summary import render_summary_line, render_table_lines
from ..sources.base import SourceFetchError
from ..sources.customers import PostgresCustomerDirectory
from ..sources.shopify import ShopifyOrderSource

"""CLI entrypoint: `python -m studio_sync.cli` performs one sync.

Flow:
- Load .env (overriding the process environment) and config/sync.yml
- Resolve the window start (term start or today minus weeks_before weeks; --since wins)
- Connect to PostgreSQL (not for --dry-run), run the reconciliation engine,
  print status + SUMMARY
- Optionally export the enrollment analysis and the class reports as CSV

Exit codes: 0 every step succeeded, 2 some write step failed, 1 fatal
(config, connection, lock, fetch or projection failure).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

# steps whose failure means nothing was written
ABORTING_STEPS = ("lock", "fetch", "project")


@contextmanager
def _db_connection(cfg: SyncConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper; tested via integration)
    """Provide a psycopg2 cursor on an autocommit connection.

    Connection settings resolve in this order:
        1. DATABASE_URL / PGDSN (whole DSN), then the database.dsn config value
        2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. the database section of config/sync.yml for anything still missing
    The store issues its own BEGIN/COMMIT per write.
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    try:
        conn.autocommit = True
        with conn.cursor() as cur:
            yield cur
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; .env values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Shopify orders -> attendance sync")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config file (default: config/sync.yml)")
    p.add_argument("--since", type=_parse_date, help="Override the sync window start (YYYY-MM-DD)")
    p.add_argument("--as-of", type=_parse_date, dest="as_of", help="Reference date (default: today in the configured timezone)")
    p.add_argument("--dry-run", action="store_true", help="Fetch and project only; print counts, write nothing")
    p.add_argument("--export-enrollment", type=Path, metavar="PATH", help="Write the block enrollment analysis CSV")
    p.add_argument(
        "--export-reports",
        type=Path,
        metavar="DIR",
        help="Write class popularity, free class conversion, term revenue and enrollment timing CSVs",
    )
    p.add_argument(
        "--block-start",
        type=_parse_date,
        dest="block_start",
        help="First class of block B for the timing report (default: term start + 5 weeks)",
    )
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def term_scope(cfg: SyncConfig) -> TermScope:
    block = Block(cfg.term.block) if cfg.term.block else Block.NONE
    return TermScope(term=cfg.term.number, block=block)


def build_engine(cfg: SyncConfig, cursor: Any, *, as_of: date) -> ReconciliationEngine:
    """Wire the production collaborators around one database cursor.

    With cursor=None the engine has no store and no customer directory and
    can only dry-run.
    """
    tables = cfg.tables
    if cursor is None:
        return ReconciliationEngine(
            ShopifyOrderSource(cfg.shopify),
            None,
            as_of=as_of,
            scope=term_scope(cfg),
            tables=tables,
            recency_days=cfg.free_class_recency_days,
        )
    store = PostgresAttendanceStore(
        cursor,
        key_columns={
            tables.paid_attendance: PAID_ATTENDANCE_KEY,
            tables.free_attendance: FREE_ATTENDANCE_KEY,
            tables.social_attendance: SOCIAL_ATTENDANCE_KEY,
        },
        lock_id=cfg.lock_id,
    )
    return ReconciliationEngine(
        ShopifyOrderSource(cfg.shopify),
        store,
        as_of=as_of,
        scope=term_scope(cfg),
        tables=tables,
        customer_directory=PostgresCustomerDirectory(cursor, tables.customers),
        recency_days=cfg.free_class_recency_days,
    )


def exit_code_for(report: ReconciliationReport) -> int:
    if report.ok:
        return EXIT_SUCCESS_ALL
    if report.failed_step in ABORTING_STEPS:
        return EXIT_FATAL
    return EXIT_PARTIAL_FAILURE


def _export_enrollment(engine: ReconciliationEngine, cfg: SyncConfig, path: Path, logger) -> None:
    if not cfg.term.number:
        logger.warning("export: term.number is not configured; enrollment analysis skipped")
        return
    analysis = analyze_block_enrollment(engine.orders, term=cfg.term.number, customers=engine.customers)
    written = export_enrollment_csv(analysis, path)
    logger.info(f"Exported {written} ({len(analysis.rows)} rows)")


def _block_b_start(cfg: SyncConfig, override: date | None) -> date | None:
    if override:
        return override
    if cfg.term.start_date:
        return cfg.term.start_date + timedelta(weeks=BLOCK_WEEKS)
    return None


def _export_reports(engine: ReconciliationEngine, cfg: SyncConfig, args: argparse.Namespace, logger) -> None:
    out_dir: Path = args.export_reports
    scope = term_scope(cfg)
    popularity = class_popularity(engine.orders, scope)
    export_report_csv(popularity.to_dataframe(), out_dir / "class_popularity.csv")
    conversion = free_class_conversion(engine.orders, engine.customers)
    export_report_csv(conversion.to_dataframe(), out_dir / "free_class_conversion.csv")
    revenue = revenue_by_term(engine.orders, scope)
    export_report_csv(revenue_dataframe(revenue, "Term"), out_dir / "revenue_by_term.csv")
    logger.info(
        f"reports: enrollments={popularity.total_enrollments} most_popular={popularity.most_popular or '-'} "
        f"free_class_customers={len(conversion.rows)} conversion_rate={conversion.conversion_rate:.1f}%"
    )

    block_start = _block_b_start(cfg, args.block_start)
    if not cfg.term.number or block_start is None:
        logger.warning("reports: term.number and a block start are needed; enrollment timing skipped")
        return
    timing = enrollment_timing(engine.orders, term=cfg.term.number, class_start=block_start)
    export_report_csv(timing.to_dataframe(), out_dir / "enrollment_timing.csv")
    logger.info(
        f"reports: timing class_start={block_start.isoformat()} signups={len(timing.rows)} "
        f"day_of={timing.percent_day_of:.1f}%"
    )


def main(argv: list[str] | None = None) -> int:
    # None only: an explicit [] from tests must not pick up pytest's own argv
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        today = datetime.now(ZoneInfo(cfg.timezone)).date()
    except ZoneInfoNotFoundError:
        logger.error(f"config: unknown timezone {cfg.timezone}")
        return EXIT_FATAL
    as_of = args.as_of or today
    since = (
        datetime.combine(args.since, time.min, tzinfo=UTC)
        if args.since
        else window_start(cfg.term, as_of)
    )
    logger.info(f"{cfg.term.name}: syncing orders created since {since.date().isoformat()}")

    try:
        if args.dry_run:
            # fetch + project only: no database connection
            engine = build_engine(cfg, None, as_of=as_of)
            report = engine.reconcile(since, dry_run=True)
        else:
            with _db_connection(cfg) as cur:
                engine = build_engine(cfg, cur, as_of=as_of)
                report = engine.reconcile(since)
        if args.export_enrollment:
            _export_enrollment(engine, cfg, args.export_enrollment, logger)
        if args.export_reports:
            _export_reports(engine, cfg, args, logger)
    except SourceFetchError as e:
        logger.error(f"source: {e}")
        return EXIT_FATAL
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except Exception as e:
        logger.exception(f"sync failed: {e}")
        return EXIT_FATAL

    if args.dry_run:
        for key, value in sorted(report.counts.items()):
            logger.info(f"dry-run {key}={value}")
        for class_name, amount in revenue_by_class(engine.orders, term_scope(cfg)).items():
            logger.info(f"dry-run revenue {class_name}={amount:.2f}")
        for term_key, amount in revenue_by_term(engine.orders, term_scope(cfg)).items():
            logger.info(f"dry-run revenue {term_key}={amount:.2f}")
    for line in render_table_lines(report):
        logger.info(line)

    # log_summary adds the "SUMMARY " label itself
    log_summary(render_summary_line(report).removeprefix("SUMMARY "))
    return exit_code_for(report)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
