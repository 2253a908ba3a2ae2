#!/usr/bin/env python3
"""
Expired Order Sweep

Cancels every PENDING_PAYMENT order whose payment window has elapsed.
Intended for cron alongside (or instead of) the API's background sweeper;
concurrent runs are safe.

Usage:
    python scripts/sweep_expired_orders.py
    python scripts/sweep_expired_orders.py --dry-run
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.logging_config import setup_logging
from config import get_settings
from domain.errors import OrderSystemError
from domain.order import OrderStatus
from domain.time import utc_now
from repositories.order_repository import list_orders
from services.order_service import expire_overdue_orders


def main() -> int:
    parser = argparse.ArgumentParser(description="Cancel orders whose payment window has elapsed")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List overdue orders without cancelling them"
    )
    args = parser.parse_args()

    setup_logging(get_settings().log_level)

    try:
        if args.dry_run:
            now = utc_now()
            overdue = [o for o in list_orders(status=OrderStatus.PENDING_PAYMENT) if o.is_overdue(now)]
            print(f"{len(overdue)} overdue order(s):")
            for order in overdue:
                print(f"  {order.order_code}  expired {order.expires_at.isoformat()}")
            return 0

        cancelled = expire_overdue_orders()
        print(f"Cancelled {len(cancelled)} order(s)")
        for order in cancelled:
            print(f"  {order.order_code}")
        return 0

    except OrderSystemError as e:
        print(f"\nFATAL ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
