#!/usr/bin/env python
"""Run one bounded auto-mapping batch.

Links provider orders without an active link to their storefront
counterparts, or proposes a link for review when the match is not clear
enough. Intended for cron or a one-off backfill.

Usage:
    python backend/scripts/run_auto_map.py [--max-orders N] [--time-budget SECONDS] [--verbose]

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    AUTO_LINK_THRESHOLD, AUTO_LINK_MARGIN, REVIEW_THRESHOLD: Decision policy
    AUTO_MAP_MAX_ORDERS, AUTO_MAP_TIME_BUDGET_SECONDS: Default batch bounds

Exit code is 0 when every processed order succeeded, 1 when some orders
failed (they are listed in the output and retried on the next run).
"""

import argparse
import sys
from pathlib import Path

# Add backend/src to Python path
backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from config import get_settings
from database import get_db_session
from observability.logging_config import configure_logging
from reconciliation.auto_mapper import AutoMapper


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description='Auto-map provider orders to storefront orders',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        '--max-orders',
        type=int,
        help='Process at most this many provider orders (default: AUTO_MAP_MAX_ORDERS or unbounded)'
    )
    parser.add_argument(
        '--time-budget',
        type=float,
        dest='time_budget_seconds',
        help='Stop starting new orders after this many seconds'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Print the outcome of every processed order'
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    with get_db_session() as session:
        result = AutoMapper(session, settings).run(
            max_orders=args.max_orders,
            time_budget_seconds=args.time_budget_seconds,
        )

    print(f"Processed:        {result.processed}")
    print(f"Linked:           {result.successful_mappings}")
    print(f"Pending review:   {result.pending_review_created}")
    print(f"Left unlinked:    {result.left_unlinked}")
    print(f"Broken links:     {result.broken_links_detected}")
    print(f"Errors:           {len(result.errors)}")
    if result.stopped_early:
        print("Batch stopped early; run again to continue.")

    if args.verbose:
        for detail in result.details:
            target = f" -> {detail.storefront_order_id}" if detail.storefront_order_id else ""
            score = f" ({detail.score:.3f})" if detail.score is not None else ""
            print(f"  {detail.provider_order_id}{target}: {detail.outcome}{score} {detail.reason or ''}")

    for error in result.errors:
        print(f"ERROR: provider order {error.provider_order_id}: {error.message}", file=sys.stderr)

    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
