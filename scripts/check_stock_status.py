"""
Check stock status - on hand vs reserved vs available, per warehouse.
"""

import sys
from collections import defaultdict
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fulfillment.api.container import build_container
from fulfillment.config import Settings
from fulfillment.domain.warehouse import fallback_sort_key


def check_stock_status():
    """Print stock levels grouped by warehouse, in fallback order."""

    container = build_container(Settings.from_env())
    warehouses = sorted(container.store.list_warehouses(), key=fallback_sort_key)

    by_warehouse = defaultdict(list)
    for record in container.store.list_stock():
        by_warehouse[record.warehouse_id].append(record)

    print("=" * 60)
    print("STOCK STATUS")
    print("=" * 60)

    for warehouse in warehouses:
        records = sorted(by_warehouse.get(warehouse.warehouse_id, []), key=lambda r: r.sku_id)
        status = "active" if warehouse.is_active else "INACTIVE"
        print(f"\n{warehouse.name} [{warehouse.warehouse_id}] ({warehouse.type.value}, {status})")
        print(f"Zones: {', '.join(sorted(warehouse.serviceable_zone_ids)) or '-'}")
        print("-" * 60)
        if not records:
            print("  (no stock)")
            continue

        print(f"  {'SKU':<30}{'on hand':>10}{'reserved':>10}{'available':>10}")
        for record in records:
            print(f"  {record.sku_id:<30}{record.on_hand:>10}{record.reserved:>10}{record.available:>10}")

        total_on_hand = sum(r.on_hand for r in records)
        total_reserved = sum(r.reserved for r in records)
        print(f"  {'TOTAL':<30}{total_on_hand:>10}{total_reserved:>10}{total_on_hand - total_reserved:>10}")

    print("=" * 60)


if __name__ == "__main__":
    check_stock_status()
