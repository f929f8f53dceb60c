"""
Error taxonomy for the fulfillment core.

Only genuine faults are exceptions. Expected business outcomes (an item that
cannot be delivered, a reservation rejected for lack of stock, a repeated
confirm/release) are reported as structured results by the services.
"""

from __future__ import annotations


class ValidationError(ValueError):
    """Malformed input (bad pincode, non-positive quantity, missing field). Never retried."""


class TransientStorageError(RuntimeError):
    """The persistence collaborator failed. The current step is aborted."""


class InvalidTransitionError(RuntimeError):
    """A checkout attempt was asked to move along an edge the state machine does not have."""


class UnknownReservationError(LookupError):
    """A confirm/release referenced a reservation id the store has never seen."""

    def __init__(self, reservation_id: str):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation not found: {reservation_id}")


class UnknownCheckoutError(LookupError):
    """No checkout attempt (and no stored reservation) exists for the order token."""

    def __init__(self, order_token: str):
        self.order_token = order_token
        super().__init__(f"No checkout found for order token: {order_token}")


__all__ = [
    "InvalidTransitionError",
    "TransientStorageError",
    "UnknownCheckoutError",
    "UnknownReservationError",
    "ValidationError",
]
