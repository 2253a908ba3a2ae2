#!/usr/bin/env python3
"""
Inventory Import Script

Loads accounts for one product from a text file, one account per line
(e.g. "email|password|recovery"), as new AVAILABLE inventory units.
Blank lines and duplicate lines are skipped.

Usage:
    python scripts/import_inventory.py 7 path/to/gmail_accounts.txt
    python scripts/import_inventory.py 7 path/to/gmail_accounts.txt --dry-run
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import OrderSystemError
from domain.inventory import normalize_import_batch
from repositories.inventory_repository import count_available, import_units


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Import accounts for a product into inventory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("product_id", type=int, help="Product the accounts belong to")
    parser.add_argument("path", help="Text file with one account per line")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse the file without inserting to database"
    )
    args = parser.parse_args()

    path = Path(args.path)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 1

    lines = path.read_text(encoding="utf-8").splitlines()
    cleaned = normalize_import_batch(lines)
    print(f"Read {len(lines)} line(s), {len(cleaned)} account(s) after removing blanks/duplicates")

    if args.dry_run:
        return 0

    try:
        units = import_units(args.product_id, cleaned)
        available = count_available(args.product_id)
    except OrderSystemError as e:
        print(f"\nFATAL ERROR: {e}", file=sys.stderr)
        return 1

    print(f"Imported {len(units)} account(s); product {args.product_id} now has {available} available")
    return 0


if __name__ == "__main__":
    sys.exit(main())
