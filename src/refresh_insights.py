"""
Insight Refresh: scheduled / on-demand job runner
===================================================
Run after a user's data changed, or once a day for everybody:
  1. Run idempotent startup migrations
  2. Generate a fresh insight bundle per user
  3. Store it and push an insights_updated event

Usage:
    python refresh_insights.py --job refresh_insights --user-id 42
    python refresh_insights.py --job daily_insights
    python refresh_insights.py --job daily_insights --no-migrations
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger("refresh_insights")

from pipeline.refresh_pipeline import JOB_DAILY, JOB_REFRESH, JOB_TYPES, InsightRefreshPipeline


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Regenerate life-metrics insights for one user or all users",
    )
    parser.add_argument("--job", choices=JOB_TYPES, default=JOB_DAILY,
                        help="Job to run (default: daily_insights)")
    parser.add_argument("--user-id", type=int, default=None,
                        help="User to refresh (required for refresh_insights)")
    parser.add_argument("--no-migrations", action="store_true",
                        help="Skip startup migrations")
    args = parser.parse_args(argv)

    if args.job == JOB_REFRESH and args.user_id is None:
        parser.error("--user-id is required for refresh_insights")

    pipeline = InsightRefreshPipeline(run_migrations=not args.no_migrations)
    success = pipeline.run(args.job, user_id=args.user_id)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
