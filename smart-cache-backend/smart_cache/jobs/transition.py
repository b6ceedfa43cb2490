"""Period transition job: archive elapsed cache entries, then apply retention.

Meant to run shortly after midnight on Mondays and on the 1st of each month.
"""
from __future__ import annotations

import argparse
import sys
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_cache.config import RETENTION_SETTINGS
from smart_cache.database import SessionLocal, init_db
from smart_cache.services.period_transition import PeriodTransitionService
from smart_cache.utils import configure_logging_from_env, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="smart-cache-transition", description=__doc__)
    parser.add_argument("--skip-cleanup", action="store_true", help="Archive only, keep old summaries")
    parser.add_argument("--keep-months", type=int, default=int(RETENTION_SETTINGS["keep_months"]))
    return parser


def main(argv: Optional[Sequence[str]] = None, *, session_factory: Callable[[], Session] = SessionLocal) -> int:
    args = build_parser().parse_args(argv)
    configure_logging_from_env("INFO")

    session = session_factory()
    try:
        init_db(bind=session.get_bind())
        service = PeriodTransitionService(session)
        result = service.archive_expired()
        deleted = 0 if args.skip_cleanup else service.cleanup_old_data(args.keep_months)
    except SQLAlchemyError as exc:
        logger.error("Period transition failed", error=str(exc))
        print(f"Period transition failed: {exc}", file=sys.stderr)
        return 1
    finally:
        session.close()

    print(
        f"Archived {result.archived}, kept existing {result.kept_existing}, "
        f"removed {result.removed} cache entries, {result.failed} failed; deleted {deleted} old summaries"
    )
    for error in result.errors:
        print(f"  - {error}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
