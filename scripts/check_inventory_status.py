"""
Check inventory status - available accounts per product, and orders waiting
for approval that the current stock could not cover.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.order import OrderStatus
from repositories.inventory_repository import stock_summary
from repositories.order_repository import list_order_items, list_orders


def check_inventory_status():
    """Print available stock per product and the demand from WAITING_APPROVAL orders."""

    available = stock_summary()

    waiting = list_orders(status=OrderStatus.WAITING_APPROVAL)
    demand: dict[int, int] = {}
    for order in waiting:
        for item in list_order_items(order.id):
            demand[item.product_id] = demand.get(item.product_id, 0) + item.quantity

    print("=" * 50)
    print("INVENTORY STATUS")
    print("=" * 50)
    print(f"Total available accounts:  {sum(available.values())}")
    print(f"Orders waiting approval:   {len(waiting)}")
    print("=" * 50)

    print("\nBreakdown by product:")
    print("-" * 50)
    for product_id in sorted(set(available) | set(demand)):
        have = available.get(product_id, 0)
        need = demand.get(product_id, 0)
        flag = "  <-- SHORT" if need > have else ""
        print(f"Product {product_id}: {have} available, {need} awaiting approval{flag}")
    print("-" * 50)


if __name__ == "__main__":
    check_inventory_status()
