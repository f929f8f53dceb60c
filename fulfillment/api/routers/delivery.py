"""
Delivery API Endpoints.

Read-only deliverability checks used by product and cart pages. Responses
are served through the delivery cache and are advisory: checkout re-checks
stock when it reserves.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from fulfillment.api.container import ServiceContainer, get_container
from fulfillment.api.models import (
    BatchDeliveryRequest,
    BatchDeliveryResponse,
    CartDeliveryRequest,
    CartDeliveryResponse,
    CartLineDelivery,
    DeliveryCheckData,
    DeliveryCheckRequest,
    DeliveryCheckResponse,
    PincodeData,
    PincodeDetailsResponse,
)
from fulfillment.domain.errors import TransientStorageError, ValidationError
from fulfillment.services.allocation_service import AvailabilityResult, CartLineAvailability
from fulfillment.services.delivery_service import DeliveryQuery

logger = logging.getLogger(__name__)

router = APIRouter()

# Raised on purpose by the services; mapped to 400/503 by the app's exception handlers.
_HANDLED_ERRORS = (ValidationError, TransientStorageError)


def _to_check_data(result: AvailabilityResult) -> DeliveryCheckData:
    warehouse = result.warehouse
    return DeliveryCheckData(
        sku_id=result.sku_id,
        quantity=result.quantity,
        is_available=result.deliverable,
        warehouse_id=warehouse.warehouse_id if warehouse else None,
        warehouse_type=warehouse.type.value if warehouse else None,
        fallback_used=result.fallback_used,
        zone_id=result.zone.zone_id if result.zone else None,
        reason=result.reason,
        message=result.message,
    )


def _product_ids(items: List[CartLineAvailability]) -> List[str]:
    # Variant lines share their product id; list each product once.
    return list(dict.fromkeys(item.line.product_id for item in items))


def _to_line_delivery(item: CartLineAvailability) -> CartLineDelivery:
    warehouse = item.result.warehouse
    return CartLineDelivery(
        line_index=item.line_index,
        product_id=item.line.product_id,
        variant_id=item.line.variant_id,
        quantity=item.line.quantity,
        is_available=item.result.deliverable,
        warehouse_id=warehouse.warehouse_id if warehouse else None,
        warehouse_type=warehouse.type.value if warehouse else None,
        fallback_used=item.result.fallback_used,
        reason=item.result.reason,
        message=item.result.message,
    )


@router.post(
    "/delivery/check",
    response_model=DeliveryCheckResponse,
    summary="Check Delivery",
    description="Check whether a quantity of one SKU can be delivered to a pincode."
)
def check_delivery(
    request: DeliveryCheckRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Check delivery of one SKU to one pincode.

    Warehouses are tried local first, then zonal, then central. When the
    shipping warehouse is not a local one, `fallback_used` is true.

    **Example response (served from central):**
    ```json
    {
      "success": true,
      "data": {
        "sku_id": "tshirt-basic:red-m",
        "quantity": 2,
        "is_available": true,
        "warehouse_id": "central-1",
        "warehouse_type": "central",
        "fallback_used": true,
        "zone_id": "blr-north",
        "reason": null,
        "message": "Available for delivery from central warehouse"
      }
    }
    ```
    """
    try:
        result = container.delivery.check_product(request.to_sku(), request.pincode, request.quantity)
        return DeliveryCheckResponse(success=True, data=_to_check_data(result))

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Delivery check failed")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to check delivery: {str(e)}"
        )


@router.post(
    "/delivery/check-cart",
    response_model=CartDeliveryResponse,
    summary="Check Cart Delivery",
    description="Check every line of a cart against one pincode."
)
def check_cart_delivery(
    request: CartDeliveryRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Check delivery for a whole cart.

    Each line is judged on its own. The cart is deliverable only when every
    line is; undeliverable lines are listed with their reason.
    """
    try:
        lines = [item.to_cart_line() for item in request.items]
        availability = container.delivery.check_cart(lines, request.pincode)

        return CartDeliveryResponse(
            success=True,
            deliverable_product_ids=_product_ids(availability.deliverable_items),
            undeliverable_product_ids=_product_ids(availability.undeliverable_items),
            pincode=availability.pincode,
            all_deliverable=availability.all_deliverable,
            deliverable_items=[_to_line_delivery(i) for i in availability.deliverable_items],
            undeliverable_items=[_to_line_delivery(i) for i in availability.undeliverable_items],
        )

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Cart delivery check failed")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to check cart delivery: {str(e)}"
        )


@router.post(
    "/delivery/check-batch",
    response_model=BatchDeliveryResponse,
    summary="Batch Delivery Check",
    description="Check many SKU/pincode combinations in one call."
)
async def check_delivery_batch(
    request: BatchDeliveryRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Check many SKU/pincode/quantity combinations.

    Results come back in request order. A malformed pincode anywhere in the
    batch rejects the whole request with 400.
    """
    try:
        queries = [
            DeliveryQuery(sku=r.to_sku(), pincode=r.pincode, quantity=r.quantity)
            for r in request.requests
        ]
        results = await container.delivery.check_many(queries)
        return BatchDeliveryResponse(success=True, results=[_to_check_data(r) for r in results])

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Batch delivery check failed")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to check delivery batch: {str(e)}"
        )


@router.get(
    "/delivery/pincode/{pincode}",
    response_model=PincodeDetailsResponse,
    summary="Get Pincode Details",
    description="Zone and delivery flags for a pincode."
)
def get_pincode_details(
    pincode: str,
    container: ServiceContainer = Depends(get_container),
):
    """Look up a pincode. Returns 404 for a well-formed pincode we have no record of."""
    try:
        details = container.delivery.get_pincode_details(pincode)
        if details is None:
            raise HTTPException(
                status_code=404,
                detail=f"Pincode not found: {pincode}"
            )

        return PincodeDetailsResponse(
            success=True,
            data=PincodeData(
                pincode=details.pincode,
                zone_id=details.zone.zone_id,
                zone_name=details.zone.zone_name,
                city=details.zone.city,
                state=details.zone.state,
                delivery_available=details.delivery_available,
                cod_available=details.cod_available,
                estimated_delivery_days=details.estimated_delivery_days,
            ),
        )

    except HTTPException:
        raise
    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Pincode lookup failed")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get pincode details: {str(e)}"
        )
