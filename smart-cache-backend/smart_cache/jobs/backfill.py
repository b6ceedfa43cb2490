"""Command line entry point for historical backfill.

Usage::

    python -m smart_cache.jobs.backfill --period-type monthly --periods 12
    python -m smart_cache.jobs.backfill --dry-run --platform meta --client-id 3

Exit code 0 when the batch completed (even with per-period failures, which
are listed in the printed summary), 1 when it could not start.
"""
from __future__ import annotations

import argparse
import sys
from typing import Callable, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_cache.config import BACKFILL_SETTINGS, SUPPORTED_PLATFORMS
from smart_cache.database import SessionLocal, init_db
from smart_cache.integrations import build_resilient_fetchers
from smart_cache.models.db.enums import PeriodType
from smart_cache.services.backfill import BackfillOptions, BackfillOrchestrator, BackfillSetupError
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.utils import configure_logging_from_env, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smart-cache-backfill",
        description="Populate historical campaign summaries for all active clients",
    )
    parser.add_argument("--dry-run", action="store_true", help="Classify and log only; fetch and store nothing")
    parser.add_argument(
        "--skip-existing",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Skip periods that already hold good data (default: on)",
    )
    parser.add_argument(
        "--periods",
        type=int,
        default=int(BACKFILL_SETTINGS["default_periods"]),
        help="Number of completed periods to walk back (default: %(default)s)",
    )
    parser.add_argument(
        "--period-type",
        choices=[p.value for p in PeriodType],
        default=PeriodType.MONTHLY.value,
    )
    parser.add_argument("--platform", choices=[*SUPPORTED_PLATFORMS, "all"], default="all")
    parser.add_argument(
        "--force-refresh",
        action="store_true",
        help="Rebuild even good historical entries and allow the in-progress period",
    )
    parser.add_argument(
        "--include-current",
        action="store_true",
        help="Also consider the in-progress period (only fetched with --force-refresh)",
    )
    parser.add_argument(
        "--client-id",
        type=int,
        action="append",
        dest="client_ids",
        help="Restrict to a client id (repeatable)",
    )
    return parser


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    fetchers: Optional[Mapping[str, ResilientFetcher]] = None,
) -> int:
    args = build_parser().parse_args(argv)
    configure_logging_from_env("INFO")

    platforms = tuple(SUPPORTED_PLATFORMS) if args.platform == "all" else (args.platform,)
    try:
        options = BackfillOptions(
            period_type=PeriodType(args.period_type),
            periods=args.periods,
            platforms=platforms,
            client_ids=args.client_ids,
            dry_run=args.dry_run,
            skip_existing=args.skip_existing,
            force_refresh=args.force_refresh,
            include_current=args.include_current,
        )
    except ValueError as exc:
        print(f"Invalid arguments: {exc}", file=sys.stderr)
        return 1

    session = session_factory()
    try:
        init_db(bind=session.get_bind())
        orchestrator = BackfillOrchestrator(session, fetchers or build_resilient_fetchers(platforms))
        report = orchestrator.run(options)
    except (BackfillSetupError, SQLAlchemyError) as exc:
        logger.error("Backfill could not start", error=str(exc))
        print(f"Backfill setup failed: {exc}", file=sys.stderr)
        return 1
    finally:
        session.close()

    for line in report.summary_lines():
        print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
