"""Command line entry point for the reconciliation audit.

Prints one line per client/platform with its consistency rating, then every
discrepancy record and storage integrity issue. ``--json`` dumps the full
report instead.
"""
from __future__ import annotations

import argparse
import sys
from typing import Callable, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_cache.config import SUPPORTED_PLATFORMS
from smart_cache.database import SessionLocal, init_db
from smart_cache.integrations import build_resilient_fetchers
from smart_cache.models.db.enums import PeriodType
from smart_cache.models.schemas.reconciliation import AuditReport
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.services.reconciler import Reconciler
from smart_cache.utils import configure_logging_from_env, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smart-cache-audit",
        description="Compare report, database and cache views of recent periods",
    )
    parser.add_argument("--periods", type=int, default=3)
    parser.add_argument("--period-type", choices=[p.value for p in PeriodType], default=PeriodType.MONTHLY.value)
    parser.add_argument("--platform", choices=[*SUPPORTED_PLATFORMS, "all"], default="meta")
    parser.add_argument(
        "--include-current",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Audit the in-progress period as well (default: on)",
    )
    parser.add_argument("--client-id", type=int, action="append", dest="client_ids")
    parser.add_argument("--json", action="store_true", help="Print the full report as JSON")
    return parser


def render(report: AuditReport) -> list[str]:
    lines = [f"Reconciliation audit ({report.generated_at.isoformat()}, tolerance {report.tolerance_pct:.0%})"]
    for client in report.clients:
        lines.append(
            f"  {client.client_name or client.client_id} [{client.platform}]: {client.rating.value} "
            f"(critical={client.critical_count} high={client.high_count} warnings={client.warning_count})"
        )
        for period in client.periods:
            for record in period.records:
                lines.append(f"    {period.period_id} {record.severity.value} {record.message}")
    if report.system_issues:
        lines.append("System issues:")
        for issue in report.system_issues:
            lines.append(f"  {issue.type} ({issue.severity.value}): {issue.description}")
    return lines


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    fetchers: Optional[Mapping[str, ResilientFetcher]] = None,
) -> int:
    args = build_parser().parse_args(argv)
    configure_logging_from_env("WARNING")

    platforms = tuple(SUPPORTED_PLATFORMS) if args.platform == "all" else (args.platform,)
    session = session_factory()
    try:
        init_db(bind=session.get_bind())
        reconciler = Reconciler(session, fetchers or build_resilient_fetchers(platforms))
        report = reconciler.audit(
            client_ids=args.client_ids,
            platforms=platforms,
            period_type=args.period_type,
            periods=args.periods,
            include_current=args.include_current,
        )
    except SQLAlchemyError as exc:
        logger.error("Audit could not run", error=str(exc))
        print(f"Audit failed: {exc}", file=sys.stderr)
        return 1
    finally:
        session.close()

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        for line in render(report):
            print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
