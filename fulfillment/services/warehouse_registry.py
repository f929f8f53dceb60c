"""
Warehouse registry: warehouse records, the per-zone fallback order, and stock reads.

Warehouse records are reference data cached in memory; stock is always read
from the store. The registry never mutates reservations.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from fulfillment.domain.errors import ValidationError
from fulfillment.domain.stock import Sku, StockMovement, StockRecord
from fulfillment.domain.time import utc_now
from fulfillment.domain.warehouse import Warehouse, fallback_sort_key
from fulfillment.repositories.store import FulfillmentStore

logger = logging.getLogger(__name__)


class WarehouseRegistry:
    def __init__(self, store: FulfillmentStore, *, clock: Callable[[], datetime] = utc_now):
        self._store = store
        self._clock = clock
        self._warehouses: Dict[str, Warehouse] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def refresh(self) -> None:
        warehouses = {w.warehouse_id: w for w in self._store.list_warehouses()}
        with self._lock:
            self._warehouses = warehouses
            self._loaded = True
        logger.info("Loaded %d warehouses", len(warehouses))

    def _snapshot(self) -> Dict[str, Warehouse]:
        if not self._loaded:
            self.refresh()
        return self._warehouses

    def get_warehouse(self, warehouse_id: str) -> Optional[Warehouse]:
        return self._snapshot().get(warehouse_id)

    def warehouses_for_zone(self, zone_id: str) -> List[Warehouse]:
        """Active warehouses serving the zone, local -> zonal -> central, lowest id first."""

        serving = [w for w in self._snapshot().values() if w.serves(zone_id)]
        return sorted(serving, key=fallback_sort_key)

    def get_stock(self, sku_id: str, warehouse_id: str) -> StockRecord:
        """Current stock for (sku, warehouse). Absence is a zeroed record, not an error."""

        record = self._store.get_stock(sku_id, warehouse_id)
        return record if record is not None else StockRecord.empty(sku_id, warehouse_id)

    def stock_for_sku(self, sku_id: str) -> List[StockRecord]:
        """Stock of one SKU at every known warehouse, in fallback order (inactive ones included)."""

        warehouses = sorted(self._snapshot().values(), key=fallback_sort_key)
        return [self.get_stock(sku_id, w.warehouse_id) for w in warehouses]

    def adjust_stock(
        self,
        sku_id: str,
        warehouse_id: str,
        delta_on_hand: int,
        reason: str = "manual adjustment",
    ) -> StockRecord:
        """
        Administrative on-hand adjustment (receiving, shrinkage, corrections).

        The store records a StockMovement with the same change.

        Raises:
            ValidationError: unknown warehouse, zero delta, or on_hand would
                drop below the units currently reserved.
        """

        if self.get_warehouse(warehouse_id) is None:
            raise ValidationError(f"Unknown warehouse: {warehouse_id}")
        if isinstance(delta_on_hand, bool) or not isinstance(delta_on_hand, int) or delta_on_hand == 0:
            raise ValidationError(f"delta must be a non-zero integer, got {delta_on_hand!r}")
        sku_id = Sku.parse(sku_id).sku_id

        record = self._store.adjust_on_hand(
            sku_id, warehouse_id, delta_on_hand, reason=reason, at=self._clock()
        )
        logger.info(
            "Adjusted stock sku=%s warehouse=%s by %+d (%s; on_hand=%d reserved=%d)",
            sku_id,
            warehouse_id,
            delta_on_hand,
            reason,
            record.on_hand,
            record.reserved,
        )
        return record

    def movements(
        self, sku_id: Optional[str] = None, warehouse_id: Optional[str] = None, limit: int = 50
    ) -> List[StockMovement]:
        """Most recent stock movements first."""

        if limit < 1:
            raise ValidationError(f"limit must be >= 1, got {limit}")
        return self._store.list_movements(sku_id=sku_id, warehouse_id=warehouse_id, limit=limit)


__all__ = ["WarehouseRegistry"]
