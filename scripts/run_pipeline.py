"""
scripts/run_pipeline.py — CLI to run the lead pipeline on a transcript CSV export.

Usage:
    python scripts/run_pipeline.py --tenant acme --csv export.csv
    python scripts/run_pipeline.py --tenant acme --csv export.csv --dry-run
    python scripts/run_pipeline.py --tenant acme --csv export.csv --no-ai --limit 50
    python scripts/run_pipeline.py --tenant acme --csv export.csv --scheduled
"""

import sys
import os
import argparse
import csv
import logging

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("run_pipeline")

from app.config import settings
from app.db.session import is_database_configured
from app.ingestion.rows import rows_from_records
from app.services.pipeline import build_default_pipeline
from app.services.schedule_guard import ScheduleGuard


def read_csv(path: str) -> list[dict]:
    # utf-8-sig drops the BOM spreadsheet exports add
    with open(path, newline="", encoding="utf-8-sig") as f:
        return list(csv.DictReader(f))


def run(args: argparse.Namespace) -> int:
    print("\n" + "=" * 55)
    print("  🏛️  Council Lead Pipeline")
    print("=" * 55)

    if args.scheduled:
        last_run_lookup = None
        if is_database_configured():
            from app.db.stores import SqlRunHistory
            last_run_lookup = SqlRunHistory().last_run_at
        decision = ScheduleGuard(last_run_lookup=last_run_lookup).check(args.tenant, force=args.force)
        if not decision.allowed:
            print(f"\n⏸️  Skipped: {decision.reason} (next allowed: {decision.next_allowed_at})")
            return 0

    print(f"\n📄 Reading {args.csv}...")
    records = read_csv(args.csv)
    rows = rows_from_records(records)
    print(f"   ✅ {len(rows)} candidate rows from {len(records)} records.")

    if not rows:
        print("   ⚠️  Nothing to process. Exiting.")
        return 0

    pipeline = build_default_pipeline(use_ai=not args.no_ai)
    outcome = pipeline.run_sync(
        rows,
        args.tenant,
        limit=args.limit,
        first_order_limit=args.first_order_limit,
        dry_run=args.dry_run,
        use_ai=not args.no_ai,
    )
    result = outcome.result

    print("\n" + "=" * 55)
    print(f"  Fetched:             {result.total_fetched}")
    if result.included_count is not None:
        print(f"  In allow-list:       {result.included_count}")
    print(f"  Excluded:            {result.excluded_count or 0}")
    print(f"  Zero-order passed:   {result.zero_order_passed}")
    print(f"  First-order:         {result.first_order_processed}")
    if result.ai_ranked_count is not None:
        print(f"  AI ranked:           {result.ai_ranked_count} {result.ai_rank_distribution}")
        print(f"  C-rank left out:     {result.c_rank_excluded}")
    label = "Would import" if args.dry_run else "Imported"
    count = len(outcome.rows) if args.dry_run else result.imported_count
    print(f"  {label + ':':<21}{count}")
    for err in result.errors:
        print(f"  ⚠️  {err}")
    print("=" * 55 + "\n")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run the council lead pipeline on a CSV export.")
    parser.add_argument("--tenant", required=True, help="Tenant (company) id")
    parser.add_argument("--csv", required=True, help="Path to the transcript CSV export")
    parser.add_argument(
        "--limit", type=int, default=0,
        help="Zero-order cap (0 = keep every passing row)",
    )
    parser.add_argument(
        "--first-order-limit", type=int, default=settings.first_order_limit,
        help="Max rows sent to subtitle evidence extraction (default from .env)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Compute everything, write nothing")
    parser.add_argument("--no-ai", action="store_true", help="Keyword triage only, no AI ranking")
    parser.add_argument("--scheduled", action="store_true", help="Apply quiet hours and minimum interval")
    parser.add_argument("--force", action="store_true", help="With --scheduled, bypass the guard")
    args = parser.parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()
