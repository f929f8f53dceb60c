"""
Warehouse-aware allocation engine.

Given a SKU, a destination pincode and a quantity, decides whether the item
can be delivered and which warehouse would ship it.

Key rules:
- Zone resolution first: an un-mapped pincode is not deliverable
  (reason "zone_unresolved"), a malformed one is a ValidationError.
- Warehouses are tried in the registry's fallback order (local -> zonal ->
  central). The first one whose available stock covers the quantity wins.
  Choosing anything other than a local warehouse sets fallback_used.
- A cart is checked line by line; each line stands alone, and the cart is
  only fully deliverable when every line is.
- Output is a pure function of the inputs and the stock snapshot read.

Results are advisory. Nothing here reserves stock: the reservation manager
re-checks availability atomically when it mutates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from fulfillment.domain.errors import ValidationError
from fulfillment.domain.location import Zone, validate_pincode
from fulfillment.domain.stock import CartLine, Sku
from fulfillment.domain.warehouse import Warehouse
from fulfillment.services.pincode_directory import PincodeDirectory
from fulfillment.services.warehouse_registry import WarehouseRegistry

logger = logging.getLogger(__name__)

REASON_ZONE_UNRESOLVED = "zone_unresolved"
REASON_ZONE_NOT_SERVICEABLE = "zone_not_serviceable"
REASON_INSUFFICIENT_STOCK = "insufficient_stock"

_MESSAGES = {
    REASON_ZONE_UNRESOLVED: "We do not deliver to this pincode yet",
    REASON_ZONE_NOT_SERVICEABLE: "No warehouse currently serves this pincode",
    REASON_INSUFFICIENT_STOCK: "Not enough stock to deliver this quantity to this pincode",
}


@dataclass(frozen=True, slots=True)
class AvailabilityResult:
    """Deliverability of one SKU/quantity to one pincode."""

    sku_id: str
    quantity: int
    deliverable: bool
    warehouse: Optional[Warehouse] = None
    fallback_used: bool = False
    reason: Optional[str] = None
    zone: Optional[Zone] = None
    # Available units at the chosen warehouse, or the best single-warehouse figure when not deliverable.
    available_quantity: int = 0

    @property
    def message(self) -> str:
        if not self.deliverable:
            return _MESSAGES.get(self.reason or "", "Not deliverable")
        if self.fallback_used and self.warehouse is not None:
            return f"Available for delivery from {self.warehouse.type.value} warehouse"
        return "Available for delivery"


@dataclass(frozen=True, slots=True)
class CartLineAvailability:
    line_index: int
    line: CartLine
    result: AvailabilityResult


@dataclass(frozen=True, slots=True)
class CartAvailability:
    pincode: str
    lines: List[CartLineAvailability]

    @property
    def deliverable_items(self) -> List[CartLineAvailability]:
        return [item for item in self.lines if item.result.deliverable]

    @property
    def undeliverable_items(self) -> List[CartLineAvailability]:
        return [item for item in self.lines if not item.result.deliverable]

    @property
    def all_deliverable(self) -> bool:
        return bool(self.lines) and not self.undeliverable_items


def _require_quantity(quantity: int) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    if quantity < 1:
        raise ValidationError(f"quantity must be >= 1, got {quantity}")
    return quantity


class AllocationEngine:
    def __init__(self, directory: PincodeDirectory, registry: WarehouseRegistry):
        self._directory = directory
        self._registry = registry

    def check_availability(
        self, sku: Union[Sku, str], pincode: str, quantity: int = 1
    ) -> AvailabilityResult:
        """
        Check whether `quantity` units of `sku` can be delivered to `pincode`.

        Raises:
            ValidationError: malformed pincode, SKU or quantity.
        """

        sku_id = sku.sku_id if isinstance(sku, Sku) else Sku.parse(str(sku)).sku_id
        quantity = _require_quantity(quantity)

        zone = self._directory.resolve_zone(pincode)
        if zone is None:
            return AvailabilityResult(
                sku_id=sku_id,
                quantity=quantity,
                deliverable=False,
                reason=REASON_ZONE_UNRESOLVED,
            )

        candidates = self._registry.warehouses_for_zone(zone.zone_id)
        if not candidates:
            logger.warning("Zone %s has no serving warehouse (not even a central one)", zone.zone_id)
            return AvailabilityResult(
                sku_id=sku_id,
                quantity=quantity,
                deliverable=False,
                reason=REASON_ZONE_NOT_SERVICEABLE,
                zone=zone,
            )

        best_available = 0
        for warehouse in candidates:
            available = self._registry.get_stock(sku_id, warehouse.warehouse_id).available
            if available >= quantity:
                return AvailabilityResult(
                    sku_id=sku_id,
                    quantity=quantity,
                    deliverable=True,
                    warehouse=warehouse,
                    fallback_used=warehouse.is_fallback,
                    zone=zone,
                    available_quantity=available,
                )
            best_available = max(best_available, available)

        return AvailabilityResult(
            sku_id=sku_id,
            quantity=quantity,
            deliverable=False,
            reason=REASON_INSUFFICIENT_STOCK,
            zone=zone,
            available_quantity=best_available,
        )

    def check_cart_availability(self, lines: Sequence[CartLine], pincode: str) -> CartAvailability:
        """
        Check every cart line independently against the same pincode.

        Lines keep their cart order. There is no substitution between lines.
        """

        if not lines:
            raise ValidationError("cart must contain at least one item")
        normalized = validate_pincode(pincode)

        results = [
            CartLineAvailability(
                line_index=idx,
                line=line,
                result=self.check_availability(line.sku, normalized, line.quantity),
            )
            for idx, line in enumerate(lines)
        ]
        return CartAvailability(pincode=normalized, lines=results)


__all__ = [
    "AllocationEngine",
    "AvailabilityResult",
    "CartAvailability",
    "CartLineAvailability",
    "REASON_INSUFFICIENT_STOCK",
    "REASON_ZONE_NOT_SERVICEABLE",
    "REASON_ZONE_UNRESOLVED",
]
