"""
Storage interface for the fulfillment core.

The services never import a concrete client: a FulfillmentStore handle is
passed in through their constructors. Two implementations ship with the
package: SupabaseFulfillmentStore (production) and InMemoryFulfillmentStore
(tests, local runs).

Atomicity contract:
- reserve / release / confirm / adjust_on_hand are each indivisible with
  respect to every other mutation on the same (sku_id, warehouse_id).
- adjust_on_hand appends a StockMovement in the same step as the on-hand change.
- reserve is a compare-and-increment: it inserts a held reservation and
  increments `reserved` only if `on_hand - reserved >= quantity`.
- release / confirm only act on a held reservation; on a terminal one they
  return it unchanged with changed=False.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from fulfillment.domain.location import PincodeDetails
from fulfillment.domain.stock import Reservation, StockMovement, StockRecord
from fulfillment.domain.warehouse import Warehouse


class FulfillmentStore(Protocol):
    # Reference data
    def list_pincodes(self) -> List[PincodeDetails]: ...

    def get_pincode(self, pincode: str) -> Optional[PincodeDetails]: ...

    def list_warehouses(self) -> List[Warehouse]: ...

    # Stock
    def get_stock(self, sku_id: str, warehouse_id: str) -> Optional[StockRecord]: ...

    def list_stock(self) -> List[StockRecord]: ...

    def adjust_on_hand(
        self, sku_id: str, warehouse_id: str, delta: int, *, reason: str, at: datetime
    ) -> StockRecord: ...

    def list_movements(
        self, sku_id: Optional[str] = None, warehouse_id: Optional[str] = None, limit: int = 50
    ) -> List[StockMovement]: ...

    # Reservations (atomic primitives)
    def reserve(self, reservation: Reservation) -> bool: ...

    def release(self, reservation_id: str, at: datetime) -> Tuple[Reservation, bool]: ...

    def confirm(self, reservation_id: str, at: datetime) -> Tuple[Reservation, bool]: ...

    # Reservation reads
    def get_reservation(self, reservation_id: str) -> Optional[Reservation]: ...

    def find_reservations(self, order_token: str) -> List[Reservation]: ...

    def find_held_reservations(self, created_before: datetime) -> List[Reservation]: ...


__all__ = ["FulfillmentStore"]
