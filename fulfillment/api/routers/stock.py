"""
Stock Administration API Endpoints.

Back-office stock reads, on-hand adjustments and the movement history.
Adjustments never touch reserved units; an adjustment that would leave
on_hand below reserved is rejected with 400.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from fulfillment.api.container import ServiceContainer, get_container
from fulfillment.api.models import (
    StockAdjustmentRequest,
    StockAdjustmentResponse,
    StockLevel,
    StockLevelsResponse,
    StockMovementModel,
    StockMovementsResponse,
)
from fulfillment.domain.errors import TransientStorageError, ValidationError
from fulfillment.domain.stock import Sku

logger = logging.getLogger(__name__)

router = APIRouter()

_HANDLED_ERRORS = (ValidationError, TransientStorageError)


@router.get(
    "/stock/movements",
    response_model=StockMovementsResponse,
    summary="List Stock Movements",
    description="Most recent on-hand adjustments, optionally filtered by SKU and warehouse."
)
def list_stock_movements(
    sku_id: Optional[str] = Query(None, description="Full SKU id ('product' or 'product:variant')"),
    warehouse_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    container: ServiceContainer = Depends(get_container),
):
    try:
        movements = container.registry.movements(
            sku_id=Sku.parse(sku_id).sku_id if sku_id else None,
            warehouse_id=warehouse_id,
            limit=limit,
        )
        return StockMovementsResponse(
            success=True,
            movements=[
                StockMovementModel(
                    movement_id=m.movement_id,
                    sku_id=m.sku_id,
                    warehouse_id=m.warehouse_id,
                    delta=m.delta,
                    on_hand_after=m.on_hand_after,
                    reason=m.reason,
                    created_at=m.created_at,
                )
                for m in movements
            ],
        )

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Listing stock movements failed")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list stock movements: {str(e)}"
        )


@router.get(
    "/stock/{sku_id}",
    response_model=StockLevelsResponse,
    summary="Get Stock Levels",
    description="On-hand, reserved and available units of one SKU at every warehouse."
)
def get_stock_levels(
    sku_id: str,
    container: ServiceContainer = Depends(get_container),
):
    """
    Stock of one SKU across the warehouse network, in fallback order.

    Warehouses with no stock row are listed with zeros. Inactive warehouses
    are included so their stock can still be moved out.
    """
    try:
        normalized = Sku.parse(sku_id).sku_id
        levels = []
        for record in container.registry.stock_for_sku(normalized):
            warehouse = container.registry.get_warehouse(record.warehouse_id)
            levels.append(
                StockLevel(
                    warehouse_id=record.warehouse_id,
                    warehouse_type=warehouse.type.value,
                    is_active=warehouse.is_active,
                    on_hand=record.on_hand,
                    reserved=record.reserved,
                    available=record.available,
                )
            )

        return StockLevelsResponse(
            success=True,
            sku_id=normalized,
            total_on_hand=sum(level.on_hand for level in levels),
            total_available=sum(level.available for level in levels if level.is_active),
            warehouses=levels,
        )

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Stock lookup failed for %s", sku_id)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get stock levels: {str(e)}"
        )


@router.post(
    "/stock/adjust",
    response_model=StockAdjustmentResponse,
    summary="Adjust Stock",
    description="Receive (positive delta) or write off (negative delta) on-hand units."
)
def adjust_stock(
    request: StockAdjustmentRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Apply one on-hand adjustment and record it in the movement history.

    Cached availability answers are advisory and may lag the adjustment
    until their TTL expires.
    """
    try:
        sku = Sku(product_id=request.product_id, variant_id=request.variant_id or None)
        record = container.registry.adjust_stock(
            sku.sku_id, request.warehouse_id, request.delta, reason=request.reason
        )
        return StockAdjustmentResponse(
            success=True,
            sku_id=record.sku_id,
            warehouse_id=record.warehouse_id,
            on_hand=record.on_hand,
            reserved=record.reserved,
            available=record.available,
            message=f"Adjusted by {request.delta:+d} ({request.reason})",
        )

    except _HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Stock adjustment failed for %s at %s", request.product_id, request.warehouse_id)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to adjust stock: {str(e)}"
        )
