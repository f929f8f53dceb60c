"""
Checkout orchestrator.

Drives one checkout attempt through an explicit state machine:

    VALIDATING_DELIVERY -> RESERVING_STOCK -> AWAITING_PAYMENT -> CONFIRMING -> DONE
                                                         \\-> RELEASING -> FAILED

Key rules:
- Delivery is re-validated with the allocation engine; the read cache is
  never consulted here.
- Every cart line is reserved in cart order at the warehouse chosen during
  validation. If any line is rejected, every reservation made in the attempt
  is released (all-or-nothing) and the attempt fails.
- AWAITING_PAYMENT is the only suspension point. The wait is bounded; a
  timeout is handled exactly like a declined payment. Attempts that are
  not driven by run() are timed out by the periodic sweep.
- Every accepted payment signal is also published to the payment bus under
  the attempt's lock, so the bus and the attempt agree on the first signal.
- Finished attempts are kept for a retention window, then evicted; a later
  call for the same order token is answered from stored reservations.
- Settling is idempotent: duplicate or late payment signals never move a
  terminal attempt.
- A payment success that cannot be turned into a stock deduction is the
  "paid but not fulfilled" state, logged at CRITICAL for alerting.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from fulfillment.domain.checkout import (
    CheckoutState,
    FailureKind,
    PaymentOutcome,
    PaymentSignal,
    can_transition,
)
from fulfillment.domain.errors import (
    InvalidTransitionError,
    TransientStorageError,
    UnknownCheckoutError,
    UnknownReservationError,
    ValidationError,
)
from fulfillment.domain.location import validate_pincode
from fulfillment.domain.stock import CartLine, Reservation, ReservationState, Sku
from fulfillment.domain.time import require_utc_timestamp, utc_now
from fulfillment.services.allocation_service import AllocationEngine, CartAvailability
from fulfillment.services.payment_signals import PaymentSignalBus, PaymentSignalSource
from fulfillment.services.reservation_service import StockReservationManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WarehouseAssignment:
    """One (sku, warehouse, quantity) the caller expects to be deducted."""

    product_id: str
    warehouse_id: str
    quantity: int
    variant_id: Optional[str] = None

    @property
    def sku_id(self) -> str:
        return Sku(product_id=self.product_id, variant_id=self.variant_id).sku_id


@dataclass(slots=True)
class LineReservation:
    line_index: int
    line: CartLine
    warehouse_id: str
    reservation: Optional[Reservation] = None
    error_code: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.reservation is not None and self.error_code is None


@dataclass(slots=True)
class CheckoutAttempt:
    order_token: str
    pincode: str
    lines: List[CartLine]
    state: CheckoutState = CheckoutState.VALIDATING_DELIVERY
    availability: Optional[CartAvailability] = None
    line_reservations: List[LineReservation] = field(default_factory=list)
    failure: Optional[FailureKind] = None
    failure_detail: Optional[str] = None
    payment: Optional[PaymentSignal] = None
    history: List[CheckoutState] = field(default_factory=list)
    awaiting_since: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def all_reserved(self) -> bool:
        return bool(self.line_reservations) and all(r.success for r in self.line_reservations)

    @property
    def nothing_charged(self) -> bool:
        """True for failures where the customer was not (or must not have been) charged."""

        return self.state is CheckoutState.FAILED and (
            self.failure is None or self.failure.nothing_charged
        )

    @property
    def reservations(self) -> List[Reservation]:
        return [r.reservation for r in self.line_reservations if r.reservation is not None]


@dataclass(frozen=True, slots=True)
class SettleResult:
    """Outcome of delivering one payment signal to an attempt."""

    attempt: CheckoutAttempt
    accepted: bool


@dataclass(frozen=True, slots=True)
class SweepReport:
    timed_out: List[str]
    released_reservations: List[str]
    evicted_attempts: int
    evicted_signals: int


class CheckoutOrchestrator:
    def __init__(
        self,
        engine: AllocationEngine,
        reservations: StockReservationManager,
        *,
        payment_timeout_seconds: float = 15 * 60,
        payments: Optional[PaymentSignalBus] = None,
        clock: Callable[[], datetime] = utc_now,
        retention_seconds: float = 60 * 60,
    ):
        self._engine = engine
        self._reservations = reservations
        self._payment_timeout_seconds = payment_timeout_seconds
        self._payments = payments
        self._clock = clock
        self._retention_seconds = retention_seconds
        self._attempts: Dict[str, CheckoutAttempt] = {}
        self._locks: Dict[str, threading.Lock] = {}
        # Guards both maps; per-order locks are taken outside it.
        self._locks_guard = threading.Lock()

    def _lock_for(self, order_token: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(order_token)
            if lock is None:
                lock = threading.Lock()
                self._locks[order_token] = lock
            return lock

    def _remember(self, attempt: CheckoutAttempt) -> None:
        with self._locks_guard:
            self._attempts[attempt.order_token] = attempt

    def get_attempt(self, order_token: str) -> Optional[CheckoutAttempt]:
        return self._attempts.get(order_token)

    def status(self, order_token: str) -> CheckoutAttempt:
        """
        Current attempt for the order, rebuilt from stored reservations if it
        is no longer in memory.

        Raises:
            UnknownCheckoutError: nothing is known about the order token.
        """

        with self._lock_for(order_token):
            attempt = self._attempts.get(order_token) or self._recover(order_token)
        if attempt is None:
            raise UnknownCheckoutError(order_token)
        return attempt

    @property
    def tracked_attempts(self) -> int:
        return len(self._attempts)

    @property
    def tracked_locks(self) -> int:
        return len(self._locks)

    # ------------------------------------------------------------------
    # State machine plumbing
    # ------------------------------------------------------------------

    def _advance(self, attempt: CheckoutAttempt, target: CheckoutState) -> None:
        if not can_transition(attempt.state, target):
            raise InvalidTransitionError(
                f"Checkout {attempt.order_token} cannot move {attempt.state.value} -> {target.value}"
            )
        logger.info("Checkout %s: %s -> %s", attempt.order_token, attempt.state.value, target.value)
        attempt.state = target
        attempt.history.append(target)
        if target is CheckoutState.AWAITING_PAYMENT:
            attempt.awaiting_since = self._clock()
        elif target.is_terminal:
            attempt.finished_at = self._clock()

    def _fail(self, attempt: CheckoutAttempt, kind: FailureKind, detail: str) -> None:
        attempt.failure = kind
        attempt.failure_detail = detail
        if kind is FailureKind.PAID_NOT_FULFILLED:
            logger.critical(
                "Checkout %s: payment succeeded but fulfillment failed: %s",
                attempt.order_token,
                detail,
            )
        else:
            logger.warning("Checkout %s failed (%s): %s", attempt.order_token, kind.value, detail)
        if attempt.state is not CheckoutState.FAILED:
            self._advance(attempt, CheckoutState.FAILED)

    # ------------------------------------------------------------------
    # Pre-payment steps
    # ------------------------------------------------------------------

    def begin(self, order_token: str, pincode: str, lines: Sequence[CartLine]) -> CheckoutAttempt:
        """
        Validate delivery and reserve stock for every cart line.

        Returns the attempt in AWAITING_PAYMENT (everything reserved) or
        FAILED. Calling begin again for the same order token returns the
        existing attempt instead of reserving twice.

        Raises:
            ValidationError: missing order token, empty cart, malformed pincode.
        """

        if not order_token:
            raise ValidationError("order_token is required")
        if not lines:
            raise ValidationError("cart must contain at least one item")
        normalized = validate_pincode(pincode)

        with self._lock_for(order_token):
            existing = self._attempts.get(order_token) or self._recover(order_token)
            if existing is not None:
                logger.info(
                    "Checkout %s already started (%s); not reserving again",
                    order_token,
                    existing.state.value,
                )
                return existing

            attempt = CheckoutAttempt(
                order_token=order_token,
                pincode=normalized,
                lines=list(lines),
                history=[CheckoutState.VALIDATING_DELIVERY],
            )
            self._remember(attempt)

            self._validate_delivery(attempt)
            if attempt.state is CheckoutState.RESERVING_STOCK:
                self._reserve_stock(attempt)
            return attempt

    def _validate_delivery(self, attempt: CheckoutAttempt) -> None:
        try:
            availability = self._engine.check_cart_availability(attempt.lines, attempt.pincode)
        except TransientStorageError as e:
            self._fail(attempt, FailureKind.STORAGE_ERROR, str(e))
            return

        attempt.availability = availability
        if not availability.all_deliverable:
            reasons = ", ".join(
                f"{item.line.sku.sku_id}: {item.result.reason}"
                for item in availability.undeliverable_items
            )
            self._fail(attempt, FailureKind.UNDELIVERABLE, reasons)
            return
        self._advance(attempt, CheckoutState.RESERVING_STOCK)

    def _reserve_stock(self, attempt: CheckoutAttempt) -> None:
        if attempt.availability is None:
            raise InvalidTransitionError(f"Checkout {attempt.order_token} was never validated")

        for item in attempt.availability.lines:
            warehouse = item.result.warehouse
            if warehouse is None:
                raise InvalidTransitionError(
                    f"Checkout {attempt.order_token}: line {item.line_index} has no source warehouse"
                )
            line_reservation = LineReservation(
                line_index=item.line_index,
                line=item.line,
                warehouse_id=warehouse.warehouse_id,
            )
            attempt.line_reservations.append(line_reservation)

            try:
                result = self._reservations.reserve(
                    attempt.order_token,
                    item.line.sku.sku_id,
                    warehouse.warehouse_id,
                    item.line.quantity,
                )
            except TransientStorageError as e:
                line_reservation.error_code = "storage_error"
                self._rollback(attempt)
                self._fail(attempt, FailureKind.STORAGE_ERROR, str(e))
                return

            if result.success:
                line_reservation.reservation = result.reservation
            else:
                line_reservation.error_code = result.error_code

        if not attempt.all_reserved:
            rejected = [r for r in attempt.line_reservations if not r.success]
            self._rollback(attempt)
            self._fail(
                attempt,
                FailureKind.RESERVATION_REJECTED,
                ", ".join(f"{r.line.sku.sku_id}@{r.warehouse_id}: {r.error_code}" for r in rejected),
            )
            return

        self._advance(attempt, CheckoutState.AWAITING_PAYMENT)

    def _rollback(self, attempt: CheckoutAttempt) -> None:
        """Best-effort release of every reservation held by this attempt."""

        for line_reservation in attempt.line_reservations:
            reservation = line_reservation.reservation
            if reservation is None or not reservation.is_held:
                continue
            try:
                line_reservation.reservation = self._reservations.release(
                    reservation.reservation_id
                ).reservation
            except (TransientStorageError, UnknownReservationError):
                logger.exception(
                    "Could not release reservation %s for order %s; "
                    "left held for the stale reservation sweep",
                    reservation.reservation_id,
                    attempt.order_token,
                )

    # ------------------------------------------------------------------
    # Payment outcome
    # ------------------------------------------------------------------

    def settle(self, signal: PaymentSignal) -> CheckoutAttempt:
        """
        Apply a payment outcome to the attempt awaiting it.

        success -> CONFIRMING -> DONE; failure/timeout -> RELEASING -> FAILED.
        A signal for an attempt that is no longer awaiting payment is a no-op,
        except a success arriving after the stock was released, which is
        flagged as paid-not-fulfilled.

        Raises:
            UnknownCheckoutError: no attempt or stored reservation for the token.
        """

        return self.accept_signal(signal).attempt

    def accept_signal(self, signal: PaymentSignal) -> SettleResult:
        """
        Like settle(), also reporting whether this signal was the one that
        decided the attempt (False for duplicates and late signals).
        """

        return self._settle(signal, publish=True)

    def _settle(self, signal: PaymentSignal, *, publish: bool) -> SettleResult:
        with self._lock_for(signal.order_token):
            attempt = self._attempts.get(signal.order_token) or self._recover(signal.order_token)
            if attempt is None:
                raise UnknownCheckoutError(signal.order_token)

            if attempt.state is not CheckoutState.AWAITING_PAYMENT:
                self._handle_late_signal(attempt, signal)
                return SettleResult(attempt=attempt, accepted=False)

            if publish and self._payments is not None:
                self._payments.publish(signal)
            attempt.payment = signal
            if signal.outcome is PaymentOutcome.SUCCESS:
                self._advance(attempt, CheckoutState.CONFIRMING)
                self._confirm(attempt)
            else:
                self._advance(attempt, CheckoutState.RELEASING)
                self._rollback(attempt)
                kind = (
                    FailureKind.PAYMENT_TIMEOUT
                    if signal.outcome is PaymentOutcome.TIMEOUT
                    else FailureKind.PAYMENT_DECLINED
                )
                self._fail(attempt, kind, f"payment {signal.outcome.value}")
            return SettleResult(attempt=attempt, accepted=True)

    def _handle_late_signal(self, attempt: CheckoutAttempt, signal: PaymentSignal) -> None:
        already_paid = attempt.payment is not None and attempt.payment.outcome is PaymentOutcome.SUCCESS
        if (
            signal.outcome is PaymentOutcome.SUCCESS
            and not already_paid
            and attempt.state is CheckoutState.FAILED
            and attempt.failure is not FailureKind.PAID_NOT_FULFILLED
        ):
            attempt.payment = signal
            attempt.failure = FailureKind.PAID_NOT_FULFILLED
            reference = signal.payment_reference or "without reference"
            attempt.failure_detail = (
                f"payment {reference} arrived after the attempt had already failed "
                f"({attempt.failure_detail})"
            )
            logger.critical(
                "Checkout %s: payment succeeded but fulfillment failed: %s",
                attempt.order_token,
                attempt.failure_detail,
            )
            return
        logger.info(
            "Ignoring %s payment signal for checkout %s in state %s",
            signal.outcome.value,
            attempt.order_token,
            attempt.state.value,
        )

    def _confirm(self, attempt: CheckoutAttempt) -> None:
        problems: List[str] = []
        for line_reservation in attempt.line_reservations:
            reservation = line_reservation.reservation
            if reservation is None:
                continue
            try:
                result = self._reservations.confirm_deduction(reservation.reservation_id)
            except (TransientStorageError, UnknownReservationError) as e:
                logger.exception(
                    "Could not confirm reservation %s for order %s",
                    reservation.reservation_id,
                    attempt.order_token,
                )
                problems.append(f"{reservation.reservation_id}: {e}")
                continue
            line_reservation.reservation = result.reservation
            if result.reservation.state is not ReservationState.CONFIRMED:
                problems.append(
                    f"{reservation.reservation_id}: already {result.reservation.state.value}"
                )

        if problems:
            self._fail(attempt, FailureKind.PAID_NOT_FULFILLED, "; ".join(problems))
            return
        self._advance(attempt, CheckoutState.DONE)

    def _recover(self, order_token: str) -> Optional[CheckoutAttempt]:
        """Rebuild an attempt from stored reservations (e.g. after a restart)."""

        stored = self._reservations.find_by_order_token(order_token)
        if not stored:
            return None

        if any(r.is_held for r in stored):
            state = CheckoutState.AWAITING_PAYMENT
        elif all(r.state is ReservationState.CONFIRMED for r in stored):
            state = CheckoutState.DONE
        else:
            state = CheckoutState.FAILED

        lines = []
        line_reservations = []
        for idx, reservation in enumerate(stored):
            sku = Sku.parse(reservation.sku_id)
            line = CartLine(
                product_id=sku.product_id, quantity=reservation.quantity, variant_id=sku.variant_id
            )
            lines.append(line)
            line_reservations.append(
                LineReservation(
                    line_index=idx,
                    line=line,
                    warehouse_id=reservation.warehouse_id,
                    reservation=reservation,
                )
            )

        attempt = CheckoutAttempt(
            order_token=order_token,
            pincode="",
            lines=lines,
            state=state,
            line_reservations=line_reservations,
            failure_detail="recovered from stored reservations" if state is CheckoutState.FAILED else None,
            history=[state],
        )
        if state is CheckoutState.AWAITING_PAYMENT:
            # The payment wait is measured from the oldest hold still outstanding.
            attempt.awaiting_since = min(r.created_at for r in stored if r.is_held)
        else:
            attempt.finished_at = self._clock()
        self._remember(attempt)
        logger.info("Recovered checkout %s from %d stored reservations (%s)", order_token, len(stored), state.value)
        return attempt

    # ------------------------------------------------------------------
    # Entry points used by the HTTP layer
    # ------------------------------------------------------------------

    def confirm_deduction(self, order_token: str, assignments: Sequence[WarehouseAssignment]) -> bool:
        """
        Confirm payment success for the order and check the expected deductions.

        Returns True when every assignment matches a confirmed reservation of
        the order (same sku, warehouse and quantity).
        """

        attempt = self.settle(PaymentSignal(order_token=order_token, outcome=PaymentOutcome.SUCCESS))
        confirmed = [r for r in attempt.reservations if r.state is ReservationState.CONFIRMED]

        unmatched = list(confirmed)
        for assignment in assignments:
            match = next(
                (
                    r
                    for r in unmatched
                    if r.sku_id == assignment.sku_id
                    and r.warehouse_id == assignment.warehouse_id
                    and r.quantity == assignment.quantity
                ),
                None,
            )
            if match is None:
                logger.warning(
                    "Checkout %s: no confirmed reservation for %s@%s x%d",
                    order_token,
                    assignment.sku_id,
                    assignment.warehouse_id,
                    assignment.quantity,
                )
                return False
            unmatched.remove(match)
        return bool(assignments)

    def cancel(self, order_token: str) -> CheckoutAttempt:
        """Release the order's stock as if its payment had been declined."""

        return self.settle(PaymentSignal(order_token=order_token, outcome=PaymentOutcome.FAILURE))

    async def run(
        self,
        order_token: str,
        pincode: str,
        lines: Sequence[CartLine],
        payments: PaymentSignalSource,
    ) -> CheckoutAttempt:
        """Run a whole checkout, suspending only while waiting for the payment signal."""

        attempt = await asyncio.to_thread(self.begin, order_token, pincode, lines)
        if attempt.state is not CheckoutState.AWAITING_PAYMENT:
            return attempt

        try:
            signal = await asyncio.wait_for(
                payments.wait_for(order_token), timeout=self._payment_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Checkout %s: no payment signal within %ss",
                order_token,
                self._payment_timeout_seconds,
            )
            timeout = PaymentSignal(order_token=order_token, outcome=PaymentOutcome.TIMEOUT)
            return await asyncio.to_thread(self.settle, timeout)

        # The signal came off the bus already; do not publish it a second time.
        result = await asyncio.to_thread(self._settle, signal, publish=False)
        return result.attempt

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def expire_overdue(self, now: Optional[datetime] = None) -> List[str]:
        """
        Time out every attempt that has waited for payment longer than the
        payment timeout. Their stock is released exactly as for a decline.

        Returns:
            Order tokens of the attempts timed out by this call.
        """

        now = now or self._clock()
        require_utc_timestamp("now", now)
        cutoff = now - timedelta(seconds=self._payment_timeout_seconds)

        with self._locks_guard:
            overdue = [
                a.order_token
                for a in self._attempts.values()
                if a.state is CheckoutState.AWAITING_PAYMENT
                and a.awaiting_since is not None
                and a.awaiting_since <= cutoff
            ]

        timed_out: List[str] = []
        for order_token in overdue:
            logger.warning(
                "Checkout %s: no payment signal within %ss",
                order_token,
                self._payment_timeout_seconds,
            )
            result = self.accept_signal(
                PaymentSignal(order_token=order_token, outcome=PaymentOutcome.TIMEOUT)
            )
            if result.accepted:
                timed_out.append(order_token)
        return timed_out

    def evict_finished(self, now: Optional[datetime] = None) -> int:
        """
        Drop finished attempts older than the retention window, and per-order
        locks nothing refers to any more. Locks currently held are kept.

        Returns:
            Number of attempts evicted.
        """

        now = now or self._clock()
        require_utc_timestamp("now", now)
        cutoff = now - timedelta(seconds=self._retention_seconds)

        evicted = 0
        with self._locks_guard:
            for order_token in list(self._attempts):
                attempt = self._attempts[order_token]
                if not attempt.is_terminal or attempt.finished_at is None or attempt.finished_at > cutoff:
                    continue
                lock = self._locks.get(order_token)
                if lock is not None:
                    if not lock.acquire(blocking=False):
                        continue
                    del self._locks[order_token]
                    lock.release()
                del self._attempts[order_token]
                evicted += 1

            for order_token in [t for t in self._locks if t not in self._attempts]:
                lock = self._locks[order_token]
                if lock.acquire(blocking=False):
                    del self._locks[order_token]
                    lock.release()

        if evicted:
            logger.info("Evicted %d finished checkouts", evicted)
        return evicted

    def sweep(self, reservation_max_age: timedelta, now: Optional[datetime] = None) -> SweepReport:
        """One housekeeping pass: payment timeouts, stale holds, then eviction."""

        now = now or self._clock()
        timed_out = self.expire_overdue(now)
        released = self._reservations.release_stale(reservation_max_age, now=now)
        evicted_attempts = self.evict_finished(now)
        evicted_signals = (
            self._payments.evict_older_than(self._retention_seconds) if self._payments is not None else 0
        )
        return SweepReport(
            timed_out=timed_out,
            released_reservations=released,
            evicted_attempts=evicted_attempts,
            evicted_signals=evicted_signals,
        )

    async def run_sweeper(self, interval_seconds: float, reservation_max_age: timedelta) -> None:
        """Run sweep() every `interval_seconds` until cancelled. Storage failures are retried next pass."""

        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await asyncio.to_thread(self.sweep, reservation_max_age)
            except TransientStorageError:
                logger.exception("Checkout sweep failed; retrying in %ss", interval_seconds)


__all__ = [
    "CheckoutAttempt",
    "CheckoutOrchestrator",
    "LineReservation",
    "SettleResult",
    "SweepReport",
    "WarehouseAssignment",
]
