"""
Domain: SKUs, stock levels and reservations.

Contract excerpts implemented here:
- A SKU is a base product or one specific variant of it. A variant is an
  independent stock-keeping unit for allocation and reservation.
- StockRecord is keyed by (sku_id, warehouse_id). 0 <= reserved <= on_hand
  at all times, so available = on_hand - reserved is never negative.
- Reservation lifecycle: held -> confirmed | released. Both are terminal.

Pure entities/value objects: no I/O, no locking. Mutation discipline lives in
the store implementations.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import ValidationError
from .time import require_utc_timestamp

_VARIANT_SEPARATOR = ":"


@dataclass(frozen=True, slots=True)
class Sku:
    product_id: str
    variant_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.product_id:
            raise ValidationError("product_id is required")
        if _VARIANT_SEPARATOR in self.product_id:
            raise ValidationError(f"product_id must not contain '{_VARIANT_SEPARATOR}'")

    @property
    def sku_id(self) -> str:
        if self.variant_id:
            return f"{self.product_id}{_VARIANT_SEPARATOR}{self.variant_id}"
        return self.product_id

    @staticmethod
    def parse(sku_id: str) -> "Sku":
        product_id, sep, variant_id = sku_id.partition(_VARIANT_SEPARATOR)
        return Sku(product_id=product_id, variant_id=variant_id if sep else None)

    def __str__(self) -> str:
        return self.sku_id


@dataclass(frozen=True, slots=True)
class CartLine:
    """One line of a cart: exactly one SKU (base product XOR one variant) and a quantity."""

    product_id: str
    quantity: int
    variant_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool):
            raise ValidationError("quantity must be an integer")
        if self.quantity < 1:
            raise ValidationError(f"quantity must be >= 1, got {self.quantity}")

    @property
    def sku(self) -> Sku:
        return Sku(product_id=self.product_id, variant_id=self.variant_id)


@dataclass(frozen=True, slots=True)
class StockRecord:
    sku_id: str
    warehouse_id: str
    on_hand: int = 0
    reserved: int = 0

    def __post_init__(self) -> None:
        if self.on_hand < 0:
            raise ValueError("on_hand must be >= 0")
        if self.reserved < 0:
            raise ValueError("reserved must be >= 0")
        if self.reserved > self.on_hand:
            raise ValueError(
                f"reserved ({self.reserved}) must not exceed on_hand ({self.on_hand}) "
                f"for sku={self.sku_id} warehouse={self.warehouse_id}"
            )

    @staticmethod
    def empty(sku_id: str, warehouse_id: str) -> "StockRecord":
        return StockRecord(sku_id=sku_id, warehouse_id=warehouse_id)

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved

    def with_reserved(self, quantity: int) -> "StockRecord":
        """Hold quantity more units. Raises ValueError if that would oversell."""

        return replace(self, reserved=self.reserved + quantity)

    def with_released(self, quantity: int) -> "StockRecord":
        return replace(self, reserved=self.reserved - quantity)

    def with_deducted(self, quantity: int) -> "StockRecord":
        """Permanently remove quantity reserved units from inventory."""

        return replace(self, on_hand=self.on_hand - quantity, reserved=self.reserved - quantity)

    def with_on_hand_delta(self, delta: int) -> "StockRecord":
        return replace(self, on_hand=self.on_hand + delta)


@dataclass(frozen=True, slots=True)
class StockMovement:
    """
    One administrative on-hand change (receiving, shrinkage, correction).

    Movements are append-only history; reservations do not produce them.
    """

    movement_id: str
    sku_id: str
    warehouse_id: str
    delta: int
    on_hand_after: int
    reason: str
    created_at: datetime

    def __post_init__(self) -> None:
        if self.delta == 0:
            raise ValueError("delta must be non-zero")
        require_utc_timestamp("created_at", self.created_at)


class ReservationState(str, Enum):
    HELD = "held"
    CONFIRMED = "confirmed"
    RELEASED = "released"

    @property
    def is_terminal(self) -> bool:
        return self is not ReservationState.HELD


@dataclass(frozen=True, slots=True)
class Reservation:
    """
    Temporary hold against available stock, pending payment.

    Transitions return new instances; a terminal reservation cannot move again.
    """

    reservation_id: str
    order_token: str
    sku_id: str
    warehouse_id: str
    quantity: int
    state: ReservationState
    created_at: datetime
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError("quantity must be >= 1")
        require_utc_timestamp("created_at", self.created_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)

    @property
    def is_held(self) -> bool:
        return self.state is ReservationState.HELD

    def transition(self, state: ReservationState, at: datetime) -> "Reservation":
        if self.state.is_terminal:
            raise ValueError(
                f"Reservation {self.reservation_id} is already {self.state.value}"
            )
        if state is ReservationState.HELD:
            raise ValueError("A reservation cannot transition back to held")
        return replace(self, state=state, updated_at=at)


__all__ = [
    "CartLine",
    "Reservation",
    "ReservationState",
    "Sku",
    "StockMovement",
    "StockRecord",
]
