"""
Checkout API Endpoints.

Endpoints that move a checkout attempt through its lifecycle: reserve stock,
confirm the deduction after payment, release on cancellation, and accept
payment outcome signals.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from fulfillment.api.container import ServiceContainer, get_container
from fulfillment.api.models import (
    CheckoutStatusResponse,
    ConfirmDeductionRequest,
    ConfirmDeductionResponse,
    PaymentSignalRequest,
    PaymentSignalResponse,
    ReleaseRequest,
    ReservationLine,
    ReservationResultItem,
    ReserveStockRequest,
)
from fulfillment.domain.checkout import CheckoutState, FailureKind, PaymentSignal
from fulfillment.domain.errors import (
    TransientStorageError,
    UnknownCheckoutError,
    ValidationError,
)
from fulfillment.services.checkout_service import CheckoutAttempt, WarehouseAssignment

logger = logging.getLogger(__name__)

router = APIRouter()

_HANDLED_ERRORS = (ValidationError, TransientStorageError, UnknownCheckoutError)


def _reservation_lines(attempt: CheckoutAttempt) -> List[ReservationLine]:
    if attempt.line_reservations:
        return [
            ReservationLine(
                line_index=r.line_index,
                product_id=r.line.product_id,
                variant_id=r.line.variant_id,
                quantity=r.line.quantity,
                warehouse_id=r.warehouse_id,
                success=r.success,
                reservation_id=r.reservation.reservation_id if r.reservation else None,
                reservation_state=r.reservation.state.value if r.reservation else None,
                error=r.error_code,
            )
            for r in attempt.line_reservations
        ]

    # Nothing was reserved: report what delivery validation decided per line.
    lines = []
    items = attempt.availability.lines if attempt.availability else []
    for item in items:
        warehouse = item.result.warehouse
        lines.append(
            ReservationLine(
                line_index=item.line_index,
                product_id=item.line.product_id,
                variant_id=item.line.variant_id,
                quantity=item.line.quantity,
                warehouse_id=warehouse.warehouse_id if warehouse else None,
                success=False,
                error=item.result.reason,
            )
        )
    return lines


def _message(attempt: CheckoutAttempt) -> str:
    if attempt.state is CheckoutState.AWAITING_PAYMENT:
        return "Stock reserved. Awaiting payment."
    if attempt.state is CheckoutState.DONE:
        return "Order confirmed. Stock deducted."
    if attempt.failure is not None:
        return f"Checkout failed ({attempt.failure.value}): {attempt.failure_detail}"
    return f"Checkout is {attempt.state.value}"


def _status_response(attempt: CheckoutAttempt, success: Optional[bool] = None) -> CheckoutStatusResponse:
    lines = _reservation_lines(attempt)
    return CheckoutStatusResponse(
        success=attempt.state is not CheckoutState.FAILED if success is None else success,
        all_reserved=attempt.all_reserved,
        reservation_results=[
            ReservationResultItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                warehouse_id=line.warehouse_id,
                quantity=line.quantity,
                success=line.success,
            )
            for line in lines
        ],
        order_token=attempt.order_token,
        state=attempt.state.value,
        failure_reason=attempt.failure.value if attempt.failure else None,
        nothing_charged=attempt.nothing_charged,
        reservations=lines,
        message=_message(attempt),
    )


@router.post(
    "/checkout/reserve",
    response_model=CheckoutStatusResponse,
    summary="Reserve Stock",
    description="Validate delivery and reserve stock for every cart line (all-or-nothing)."
)
def reserve_stock(
    request: ReserveStockRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Start a checkout: validate delivery, then reserve every cart line.

    **All-or-Nothing Strategy:**
    If any line cannot be reserved, every reservation made for the order is
    released and the checkout fails. The customer has not been charged.

    Calling this again with the same `order_token` returns the existing
    checkout instead of reserving twice.

    **Failure response (line 2 out of stock):**
    Line 1 was held and then released by the rollback; its entry in
    `reservations` shows `reservation_state: "released"`.
    ```json
    {
      "success": false,
      "all_reserved": false,
      "reservation_results": [
        {"product_id": "tshirt-basic", "variant_id": "red-m", "warehouse_id": "local-1", "quantity": 2, "success": true},
        {"product_id": "mug", "variant_id": null, "warehouse_id": "local-1", "quantity": 1, "success": false}
      ],
      "order_token": "ord_8f2c1a",
      "state": "FAILED",
      "failure_reason": "reservation_rejected",
      "nothing_charged": true,
      "reservations": ["..."],
      "message": "Checkout failed (reservation_rejected): mug@local-1: insufficient_stock"
    }
    ```
    """
    try:
        lines = [item.to_cart_line() for item in request.items]
        attempt = container.orchestrator.begin(request.order_token, request.pincode, lines)
        return _status_response(attempt)

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Reserve stock failed for order %s", request.order_token)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reserve stock: {str(e)}"
        )


@router.post(
    "/checkout/confirm-deduction",
    response_model=ConfirmDeductionResponse,
    summary="Confirm Stock Deduction",
    description="Payment succeeded: permanently deduct the order's reserved stock."
)
def confirm_deduction(
    request: ConfirmDeductionRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Confirm the deduction of every reservation held for the order.

    `all_deducted` is true only when each warehouse assignment matches a
    confirmed reservation (same SKU, warehouse and quantity). Repeating the
    call is harmless.
    """
    try:
        assignments = [
            WarehouseAssignment(
                product_id=a.product_id,
                warehouse_id=a.warehouse_id,
                quantity=a.quantity,
                variant_id=a.variant_id or None,
            )
            for a in request.warehouse_assignments
        ]
        all_deducted = container.orchestrator.confirm_deduction(request.order_token, assignments)
        attempt = container.orchestrator.get_attempt(request.order_token)
        state = attempt.state.value if attempt else CheckoutState.FAILED.value

        if all_deducted:
            message = "Stock deducted for all assignments."
        elif attempt is not None and attempt.failure is not None:
            message = _message(attempt)
        else:
            message = "Some assignments do not match a confirmed reservation."

        return ConfirmDeductionResponse(
            success=all_deducted,
            order_token=request.order_token,
            state=state,
            all_deducted=all_deducted,
            message=message,
        )

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Confirm deduction failed for order %s", request.order_token)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to confirm deduction: {str(e)}"
        )


@router.post(
    "/checkout/release",
    response_model=CheckoutStatusResponse,
    summary="Release Reserved Stock",
    description="Cancel a checkout that is awaiting payment and return its stock."
)
def release_stock(
    request: ReleaseRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Release every hold of the order. A checkout that already finished is
    left untouched and reported as-is.
    """
    try:
        attempt = container.orchestrator.cancel(request.order_token)
        return _status_response(attempt, success=attempt.state is CheckoutState.FAILED)

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Release failed for order %s", request.order_token)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to release stock: {str(e)}"
        )


@router.post(
    "/checkout/payment-signal",
    response_model=PaymentSignalResponse,
    summary="Report Payment Outcome",
    description="Deliver the payment outcome (success, failure or timeout) for an order."
)
def payment_signal(
    request: PaymentSignalRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Apply a payment outcome to the checkout awaiting it.

    The first signal for an order wins; duplicates are acknowledged with
    `accepted: false` and change nothing. A success arriving after the
    checkout already failed is reported as paid-not-fulfilled.
    """
    try:
        signal = PaymentSignal(
            order_token=request.order_token,
            outcome=request.outcome,
            payment_reference=request.payment_reference,
        )
        result = container.orchestrator.accept_signal(signal)
        attempt = result.attempt

        if result.accepted or attempt.failure is FailureKind.PAID_NOT_FULFILLED:
            message = _message(attempt)
        else:
            message = "Duplicate payment signal ignored."

        return PaymentSignalResponse(
            accepted=result.accepted,
            order_token=request.order_token,
            state=attempt.state.value,
            message=message,
        )

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Payment signal failed for order %s", request.order_token)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to apply payment signal: {str(e)}"
        )


@router.get(
    "/checkout/status/{order_token}",
    response_model=CheckoutStatusResponse,
    summary="Get Checkout Status",
    description="Current state of a checkout, including payment timeouts applied by the sweep."
)
def checkout_status(
    order_token: str,
    container: ServiceContainer = Depends(get_container),
):
    """Look up a checkout. Returns 404 when nothing is known about the order token."""
    try:
        attempt = container.orchestrator.status(order_token)
        return _status_response(attempt)

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Status lookup failed for order %s", order_token)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get checkout status: {str(e)}"
        )
