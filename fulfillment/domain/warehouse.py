"""
Domain: Warehouses and the fallback order.

Contract:
- Warehouse type is one of local, zonal, central.
- Every zone is served by at least one central warehouse (fallback of last
  resort). Local and zonal warehouses are optional accelerants.
- Fallback order for a zone is local -> zonal -> central; among warehouses of
  the same type, the lowest warehouse id comes first. Every other component
  relies on this order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Tuple


class WarehouseType(str, Enum):
    LOCAL = "local"
    ZONAL = "zonal"
    CENTRAL = "central"

    @property
    def rank(self) -> int:
        return _TYPE_RANK[self]


_TYPE_RANK = {
    WarehouseType.LOCAL: 0,
    WarehouseType.ZONAL: 1,
    WarehouseType.CENTRAL: 2,
}


@dataclass(frozen=True, slots=True)
class Warehouse:
    warehouse_id: str
    name: str
    type: WarehouseType
    serviceable_zone_ids: FrozenSet[str] = field(default_factory=frozenset)
    is_active: bool = True

    def serves(self, zone_id: str) -> bool:
        return self.is_active and zone_id in self.serviceable_zone_ids

    @property
    def is_fallback(self) -> bool:
        """Any non-local warehouse counts as a fallback source."""

        return self.type is not WarehouseType.LOCAL


def _id_sort_key(warehouse_id: str) -> Tuple[int, int, str]:
    # Numeric ids compare numerically ("9" before "10"); others lexically after them.
    if warehouse_id.isdigit():
        return (0, int(warehouse_id), "")
    return (1, 0, warehouse_id)


def fallback_sort_key(warehouse: Warehouse) -> tuple:
    return (warehouse.type.rank, _id_sort_key(warehouse.warehouse_id))


__all__ = [
    "Warehouse",
    "WarehouseType",
    "fallback_sort_key",
]
