"""
Stock reservation manager.

Handles:
- Atomic reserve (check available >= quantity and increment reserved as one step)
- Idempotent release and confirm-deduction
- Lookup of every reservation made under one order token
- The stale-reservation sweep that frees holds abandoned by crashed checkouts

Rejection for lack of stock is a normal outcome, reported in
ReservationResult rather than raised: stock can move between an
availability check and the reservation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from uuid import uuid4

from fulfillment.domain.errors import TransientStorageError, ValidationError
from fulfillment.domain.stock import Reservation, ReservationState, Sku
from fulfillment.domain.time import require_utc_timestamp, utc_now
from fulfillment.repositories.store import FulfillmentStore

logger = logging.getLogger(__name__)

ERROR_INSUFFICIENT_STOCK = "insufficient_stock"


@dataclass(frozen=True, slots=True)
class ReservationResult:
    """Outcome of a reserve() call."""

    success: bool
    reservation: Optional[Reservation]
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return not self.success


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """
    Outcome of release() / confirm_deduction().

    changed is False when the reservation was already terminal and the call
    was a no-op.
    """

    reservation: Reservation
    changed: bool


class StockReservationManager:
    def __init__(
        self,
        store: FulfillmentStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ):
        self._store = store
        self._clock = clock
        self._id_factory = id_factory

    def reserve(
        self, order_token: str, sku_id: str, warehouse_id: str, quantity: int
    ) -> ReservationResult:
        """
        Hold `quantity` units of `sku_id` at `warehouse_id` for `order_token`.

        Raises:
            ValidationError: missing order token / warehouse or bad quantity.
            TransientStorageError: the store failed.
        """

        if not order_token:
            raise ValidationError("order_token is required")
        if not warehouse_id:
            raise ValidationError("warehouse_id is required")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError(f"quantity must be a positive integer, got {quantity!r}")
        sku_id = Sku.parse(sku_id).sku_id

        reservation = Reservation(
            reservation_id=self._id_factory(),
            order_token=order_token,
            sku_id=sku_id,
            warehouse_id=warehouse_id,
            quantity=quantity,
            state=ReservationState.HELD,
            created_at=self._clock(),
        )

        if not self._store.reserve(reservation):
            logger.warning(
                "Reservation rejected: order=%s sku=%s warehouse=%s qty=%d (insufficient stock)",
                order_token,
                sku_id,
                warehouse_id,
                quantity,
            )
            return ReservationResult(
                success=False,
                reservation=None,
                error_code=ERROR_INSUFFICIENT_STOCK,
                error_message=(
                    f"Insufficient stock for {sku_id} at warehouse {warehouse_id}. "
                    f"Requested: {quantity}"
                ),
            )

        logger.info(
            "Reserved %d x %s at %s for order %s (reservation %s)",
            quantity,
            sku_id,
            warehouse_id,
            order_token,
            reservation.reservation_id,
        )
        return ReservationResult(success=True, reservation=reservation)

    def release(self, reservation_id: str) -> TransitionResult:
        """Return held stock to available. No-op on an already confirmed/released reservation."""

        reservation, changed = self._store.release(reservation_id, self._clock())
        if changed:
            logger.info("Released reservation %s (order %s)", reservation_id, reservation.order_token)
        else:
            logger.debug("Release of %s ignored: already %s", reservation_id, reservation.state.value)
        return TransitionResult(reservation=reservation, changed=changed)

    def confirm_deduction(self, reservation_id: str) -> TransitionResult:
        """Turn a hold into a permanent deduction. No-op on an already terminal reservation."""

        reservation, changed = self._store.confirm(reservation_id, self._clock())
        if changed:
            logger.info(
                "Confirmed deduction for reservation %s (order %s)",
                reservation_id,
                reservation.order_token,
            )
        else:
            logger.debug("Confirm of %s ignored: already %s", reservation_id, reservation.state.value)
        return TransitionResult(reservation=reservation, changed=changed)

    def find_by_order_token(self, order_token: str) -> List[Reservation]:
        return self._store.find_reservations(order_token)

    def release_all(self, order_token: str) -> List[TransitionResult]:
        return [
            self.release(r.reservation_id)
            for r in self.find_by_order_token(order_token)
            if r.is_held
        ]

    def confirm_all(self, order_token: str) -> List[TransitionResult]:
        return [
            self.confirm_deduction(r.reservation_id)
            for r in self.find_by_order_token(order_token)
            if r.is_held
        ]

    def release_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> List[str]:
        """
        Release every held reservation older than `max_age`.

        Safety net for checkouts that died between reserve and settle. A
        failure on one reservation is logged and the sweep continues.

        Returns:
            Ids of the reservations released by this sweep.
        """

        now = now or self._clock()
        require_utc_timestamp("now", now)
        cutoff = now - max_age

        released: List[str] = []
        for reservation in self._store.find_held_reservations(cutoff):
            try:
                result = self.release(reservation.reservation_id)
            except TransientStorageError:
                logger.exception(
                    "Sweep could not release reservation %s (order %s)",
                    reservation.reservation_id,
                    reservation.order_token,
                )
                continue
            if result.changed:
                released.append(reservation.reservation_id)

        if released:
            logger.info("Swept %d stale reservations older than %s", len(released), cutoff.isoformat())
        return released


__all__ = [
    "ERROR_INSUFFICIENT_STOCK",
    "ReservationResult",
    "StockReservationManager",
    "TransitionResult",
]
