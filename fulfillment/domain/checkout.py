"""
Domain: Checkout state machine vocabulary.

States:
    VALIDATING_DELIVERY -> RESERVING_STOCK -> AWAITING_PAYMENT -> CONFIRMING -> DONE
Failure edges go from any non-terminal state to FAILED. The compensation edge
is AWAITING_PAYMENT (declined | timeout) -> RELEASING -> FAILED.
DONE and FAILED are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, FrozenSet


class CheckoutState(str, Enum):
    VALIDATING_DELIVERY = "VALIDATING_DELIVERY"
    RESERVING_STOCK = "RESERVING_STOCK"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    CONFIRMING = "CONFIRMING"
    RELEASING = "RELEASING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (CheckoutState.DONE, CheckoutState.FAILED)


ALLOWED_TRANSITIONS: Mapping[CheckoutState, FrozenSet[CheckoutState]] = {
    CheckoutState.VALIDATING_DELIVERY: frozenset(
        {CheckoutState.RESERVING_STOCK, CheckoutState.FAILED}
    ),
    CheckoutState.RESERVING_STOCK: frozenset(
        {CheckoutState.AWAITING_PAYMENT, CheckoutState.FAILED}
    ),
    CheckoutState.AWAITING_PAYMENT: frozenset(
        {CheckoutState.CONFIRMING, CheckoutState.RELEASING, CheckoutState.FAILED}
    ),
    CheckoutState.CONFIRMING: frozenset({CheckoutState.DONE, CheckoutState.FAILED}),
    CheckoutState.RELEASING: frozenset({CheckoutState.FAILED}),
    CheckoutState.DONE: frozenset(),
    CheckoutState.FAILED: frozenset(),
}


def can_transition(current: CheckoutState, target: CheckoutState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class PaymentOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class PaymentSignal:
    """The only thing the orchestrator needs from the payment collaborator."""

    order_token: str
    outcome: PaymentOutcome
    payment_reference: Optional[str] = None


class FailureKind(str, Enum):
    UNDELIVERABLE = "undeliverable"
    RESERVATION_REJECTED = "reservation_rejected"
    STORAGE_ERROR = "storage_error"
    PAYMENT_DECLINED = "payment_declined"
    PAYMENT_TIMEOUT = "payment_timeout"
    # Payment went through but the stock could not be deducted. Must be alerted on.
    PAID_NOT_FULFILLED = "paid_not_fulfilled"

    @property
    def nothing_charged(self) -> bool:
        return self is not FailureKind.PAID_NOT_FULFILLED


__all__ = [
    "ALLOWED_TRANSITIONS",
    "CheckoutState",
    "FailureKind",
    "PaymentOutcome",
    "PaymentSignal",
    "can_transition",
]
