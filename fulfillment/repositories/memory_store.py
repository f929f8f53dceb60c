"""
In-memory FulfillmentStore.

Dict-backed store used by the test suite and by `STORAGE_BACKEND=memory`.
Each (sku_id, warehouse_id) pair has its own lock; every mutation touching
that pair's stock row runs inside it, which is the single-writer critical
section that keeps reserved <= on_hand under concurrent checkouts.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from fulfillment.domain.errors import UnknownReservationError, ValidationError
from fulfillment.domain.location import PincodeDetails
from fulfillment.domain.stock import Reservation, ReservationState, StockMovement, StockRecord
from fulfillment.domain.warehouse import Warehouse

_StockKey = Tuple[str, str]


class InMemoryFulfillmentStore:
    def __init__(self) -> None:
        self._pincodes: Dict[str, PincodeDetails] = {}
        self._warehouses: Dict[str, Warehouse] = {}
        self._stock: Dict[_StockKey, StockRecord] = {}
        self._reservations: Dict[str, Reservation] = {}
        self._movements: List[StockMovement] = []
        self._locks: Dict[_StockKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, sku_id: str, warehouse_id: str) -> threading.Lock:
        key = (sku_id, warehouse_id)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_pincode(self, details: PincodeDetails) -> None:
        self._pincodes[details.pincode] = details

    def add_warehouse(self, warehouse: Warehouse) -> None:
        self._warehouses[warehouse.warehouse_id] = warehouse

    def set_stock(self, sku_id: str, warehouse_id: str, on_hand: int, reserved: int = 0) -> StockRecord:
        with self._lock_for(sku_id, warehouse_id):
            record = StockRecord(
                sku_id=sku_id, warehouse_id=warehouse_id, on_hand=on_hand, reserved=reserved
            )
            self._stock[(sku_id, warehouse_id)] = record
            return record

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def list_pincodes(self) -> List[PincodeDetails]:
        return list(self._pincodes.values())

    def get_pincode(self, pincode: str) -> Optional[PincodeDetails]:
        return self._pincodes.get(pincode)

    def list_warehouses(self) -> List[Warehouse]:
        return list(self._warehouses.values())

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def get_stock(self, sku_id: str, warehouse_id: str) -> Optional[StockRecord]:
        return self._stock.get((sku_id, warehouse_id))

    def list_stock(self) -> List[StockRecord]:
        return sorted(self._stock.values(), key=lambda r: (r.sku_id, r.warehouse_id))

    def adjust_on_hand(
        self, sku_id: str, warehouse_id: str, delta: int, *, reason: str, at: datetime
    ) -> StockRecord:
        with self._lock_for(sku_id, warehouse_id):
            current = self._stock.get((sku_id, warehouse_id)) or StockRecord.empty(sku_id, warehouse_id)
            new_on_hand = current.on_hand + delta
            if new_on_hand < current.reserved:
                raise ValidationError(
                    f"Adjustment of {delta} would leave on_hand={new_on_hand} below "
                    f"reserved={current.reserved} for sku={sku_id} warehouse={warehouse_id}"
                )
            updated = current.with_on_hand_delta(delta)
            movement = StockMovement(
                movement_id=str(uuid4()),
                sku_id=sku_id,
                warehouse_id=warehouse_id,
                delta=delta,
                on_hand_after=updated.on_hand,
                reason=reason,
                created_at=at,
            )
            self._stock[(sku_id, warehouse_id)] = updated
            self._movements.append(movement)
            return updated

    def list_movements(
        self, sku_id: Optional[str] = None, warehouse_id: Optional[str] = None, limit: int = 50
    ) -> List[StockMovement]:
        matches = [
            m
            for m in self._movements
            if (sku_id is None or m.sku_id == sku_id)
            and (warehouse_id is None or m.warehouse_id == warehouse_id)
        ]
        # Newest first; list order breaks ties between equal timestamps.
        ordered = sorted(enumerate(matches), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [m for _, m in ordered[:limit]]

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(self, reservation: Reservation) -> bool:
        if not reservation.is_held:
            raise ValueError("Only a held reservation can be stored by reserve()")

        key = (reservation.sku_id, reservation.warehouse_id)
        with self._lock_for(*key):
            if reservation.reservation_id in self._reservations:
                raise ValueError(f"Reservation already exists: {reservation.reservation_id}")
            current = self._stock.get(key) or StockRecord.empty(*key)
            if current.available < reservation.quantity:
                return False
            self._stock[key] = current.with_reserved(reservation.quantity)
            self._reservations[reservation.reservation_id] = reservation
            return True

    def _finish(
        self, reservation_id: str, target: ReservationState, at: datetime
    ) -> Tuple[Reservation, bool]:
        existing = self._reservations.get(reservation_id)
        if existing is None:
            raise UnknownReservationError(reservation_id)

        key = (existing.sku_id, existing.warehouse_id)
        with self._lock_for(*key):
            # Re-read inside the critical section: a concurrent call may have finished it.
            reservation = self._reservations[reservation_id]
            if reservation.state.is_terminal:
                return reservation, False

            current = self._stock.get(key) or StockRecord.empty(*key)
            if target is ReservationState.CONFIRMED:
                updated_stock = current.with_deducted(reservation.quantity)
            else:
                updated_stock = current.with_released(reservation.quantity)

            finished = reservation.transition(target, at)
            self._stock[key] = updated_stock
            self._reservations[reservation_id] = finished
            return finished, True

    def release(self, reservation_id: str, at: datetime) -> Tuple[Reservation, bool]:
        return self._finish(reservation_id, ReservationState.RELEASED, at)

    def confirm(self, reservation_id: str, at: datetime) -> Tuple[Reservation, bool]:
        return self._finish(reservation_id, ReservationState.CONFIRMED, at)

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        return self._reservations.get(reservation_id)

    def find_reservations(self, order_token: str) -> List[Reservation]:
        matches = [r for r in self._reservations.values() if r.order_token == order_token]
        return sorted(matches, key=lambda r: r.created_at)

    def find_held_reservations(self, created_before: datetime) -> List[Reservation]:
        return [
            r
            for r in self._reservations.values()
            if r.is_held and r.created_at < created_before
        ]


__all__ = ["InMemoryFulfillmentStore"]
