"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from fulfillment.domain.checkout import PaymentOutcome
from fulfillment.domain.stock import CartLine, Sku


# ============================================================================
# Shared
# ============================================================================

class ErrorResponse(BaseModel):
    """Body returned for rejected requests (400/404/503)."""
    success: bool = False
    error: str


class CartItem(BaseModel):
    """One cart line: a base product or one of its variants."""
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    variant_id: Optional[str] = None

    def to_cart_line(self) -> CartLine:
        return CartLine(
            product_id=self.product_id,
            quantity=self.quantity,
            variant_id=self.variant_id or None,
        )


# ============================================================================
# Delivery Models
# ============================================================================

class DeliveryCheckRequest(BaseModel):
    """Request to check delivery of one SKU to one pincode."""
    pincode: str
    sku_id: Optional[str] = Field(
        None,
        description="Full SKU id ('product' or 'product:variant'). Alternative to product_id/variant_id."
    )
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    quantity: int = Field(1, ge=1)

    @model_validator(mode="after")
    def require_sku(self):
        if not self.sku_id and not self.product_id:
            raise ValueError("either sku_id or product_id is required")
        return self

    def to_sku(self) -> Sku:
        if self.sku_id:
            sku = Sku.parse(self.sku_id)
            if sku.variant_id is None and self.variant_id:
                return Sku(product_id=sku.product_id, variant_id=self.variant_id)
            return sku
        return Sku(product_id=self.product_id, variant_id=self.variant_id or None)

    class Config:
        json_schema_extra = {
            "example": {
                "product_id": "tshirt-basic",
                "variant_id": "red-m",
                "pincode": "560001",
                "quantity": 2
            }
        }


class DeliveryCheckData(BaseModel):
    """Deliverability of one SKU/quantity to one pincode."""
    sku_id: str
    quantity: int
    is_available: bool
    warehouse_id: Optional[str] = None
    warehouse_type: Optional[str] = None  # "local", "zonal" or "central"
    fallback_used: bool = False
    zone_id: Optional[str] = None
    reason: Optional[str] = None
    message: str


class DeliveryCheckResponse(BaseModel):
    """Response for a single delivery check."""
    success: bool
    data: DeliveryCheckData

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "data": {
                    "sku_id": "tshirt-basic:red-m",
                    "quantity": 2,
                    "is_available": True,
                    "warehouse_id": "central-1",
                    "warehouse_type": "central",
                    "fallback_used": True,
                    "zone_id": "blr-north",
                    "reason": None,
                    "message": "Available for delivery from central warehouse"
                }
            }
        }


class CartDeliveryRequest(BaseModel):
    """Request to check delivery of a whole cart to one pincode."""
    pincode: str
    items: List[CartItem] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "pincode": "560001",
                "items": [
                    {"product_id": "tshirt-basic", "variant_id": "red-m", "quantity": 2},
                    {"product_id": "mug", "quantity": 1}
                ]
            }
        }


class CartLineDelivery(BaseModel):
    """Deliverability of one cart line."""
    line_index: int
    product_id: str
    variant_id: Optional[str] = None
    quantity: int
    is_available: bool
    warehouse_id: Optional[str] = None
    warehouse_type: Optional[str] = None
    fallback_used: bool = False
    reason: Optional[str] = None
    message: str


class CartDeliveryResponse(BaseModel):
    """Response for a cart delivery check."""
    success: bool
    deliverable_product_ids: List[str]
    undeliverable_product_ids: List[str]
    pincode: str
    all_deliverable: bool
    deliverable_items: List[CartLineDelivery]
    undeliverable_items: List[CartLineDelivery]


class BatchDeliveryRequest(BaseModel):
    """Many single-SKU checks in one call. They are coalesced server-side."""
    requests: List[DeliveryCheckRequest] = Field(..., min_length=1, max_length=100)


class BatchDeliveryResponse(BaseModel):
    """Results in request order."""
    success: bool
    results: List[DeliveryCheckData]


class PincodeData(BaseModel):
    pincode: str
    zone_id: str
    zone_name: str
    city: Optional[str] = None
    state: Optional[str] = None
    delivery_available: bool
    cod_available: bool
    estimated_delivery_days: Optional[int] = None


class PincodeDetailsResponse(BaseModel):
    """Response for a pincode lookup."""
    success: bool
    data: PincodeData

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "data": {
                    "pincode": "560001",
                    "zone_id": "blr-north",
                    "zone_name": "Bangalore North",
                    "city": "Bangalore",
                    "state": "KA",
                    "delivery_available": True,
                    "cod_available": True,
                    "estimated_delivery_days": 2
                }
            }
        }


# ============================================================================
# Checkout Models
# ============================================================================

class ReserveStockRequest(BaseModel):
    """Request to validate delivery and reserve stock for a checkout."""
    order_token: str = Field(..., min_length=1)
    pincode: str
    items: List[CartItem] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "order_token": "ord_8f2c1a",
                "pincode": "560001",
                "items": [
                    {"product_id": "tshirt-basic", "variant_id": "red-m", "quantity": 2}
                ]
            }
        }


class ReservationLine(BaseModel):
    """Reservation outcome for one cart line."""
    line_index: int
    product_id: str
    variant_id: Optional[str] = None
    quantity: int
    warehouse_id: Optional[str] = None
    success: bool
    reservation_id: Optional[str] = None
    reservation_state: Optional[str] = None
    error: Optional[str] = None


class ReservationResultItem(BaseModel):
    """Where one cart line is held, in the shape the storefront checkout reads."""
    product_id: str
    variant_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    quantity: int
    success: bool


class CheckoutStatusResponse(BaseModel):
    """State of a checkout attempt after a checkout call."""
    success: bool
    all_reserved: bool
    reservation_results: List[ReservationResultItem]
    order_token: str
    state: str
    failure_reason: Optional[str] = None
    nothing_charged: bool
    reservations: List[ReservationLine]
    message: str

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "all_reserved": True,
                "reservation_results": [
                    {
                        "product_id": "tshirt-basic",
                        "variant_id": "red-m",
                        "warehouse_id": "local-1",
                        "quantity": 2,
                        "success": True
                    }
                ],
                "order_token": "ord_8f2c1a",
                "state": "AWAITING_PAYMENT",
                "failure_reason": None,
                "nothing_charged": False,
                "reservations": [
                    {
                        "line_index": 0,
                        "product_id": "tshirt-basic",
                        "variant_id": "red-m",
                        "quantity": 2,
                        "warehouse_id": "local-1",
                        "success": True,
                        "reservation_id": "9b3f0c9e-5d7e-4a55-bb0c-0c1f0f7e2a11",
                        "reservation_state": "held",
                        "error": None
                    }
                ],
                "message": "Stock reserved. Awaiting payment."
            }
        }


class WarehouseAssignmentModel(BaseModel):
    """One expected deduction: which warehouse ships how many units of a SKU."""
    product_id: str = Field(..., min_length=1)
    warehouse_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    variant_id: Optional[str] = None


class ConfirmDeductionRequest(BaseModel):
    """Payment succeeded: turn the order's holds into deductions."""
    order_token: str = Field(..., min_length=1)
    warehouse_assignments: List[WarehouseAssignmentModel] = Field(..., min_length=1)


class ConfirmDeductionResponse(BaseModel):
    success: bool
    order_token: str
    state: str
    all_deducted: bool
    message: str


class ReleaseRequest(BaseModel):
    """Cancel a checkout and return its held stock."""
    order_token: str = Field(..., min_length=1)


class PaymentSignalRequest(BaseModel):
    """Payment outcome reported by the payment collaborator."""
    order_token: str = Field(..., min_length=1)
    outcome: PaymentOutcome
    payment_reference: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "order_token": "ord_8f2c1a",
                "outcome": "success",
                "payment_reference": "pay_N3kq8"
            }
        }


class PaymentSignalResponse(BaseModel):
    accepted: bool
    order_token: str
    state: Optional[str] = None
    message: str


# ============================================================================
# Stock Administration Models
# ============================================================================

class StockLevel(BaseModel):
    warehouse_id: str
    warehouse_type: str
    is_active: bool
    on_hand: int
    reserved: int
    available: int


class StockLevelsResponse(BaseModel):
    """Stock of one SKU across every warehouse."""
    success: bool
    sku_id: str
    total_on_hand: int
    total_available: int
    warehouses: List[StockLevel]


class StockAdjustmentRequest(BaseModel):
    """Add (positive delta) or remove (negative delta) on-hand units at one warehouse."""
    product_id: str = Field(..., min_length=1)
    variant_id: Optional[str] = None
    warehouse_id: str = Field(..., min_length=1)
    delta: int
    reason: str = Field("manual adjustment", min_length=1, max_length=200)

    class Config:
        json_schema_extra = {
            "example": {
                "product_id": "mug",
                "warehouse_id": "local-1",
                "delta": 24,
                "reason": "received PO-1042"
            }
        }


class StockAdjustmentResponse(BaseModel):
    success: bool
    sku_id: str
    warehouse_id: str
    on_hand: int
    reserved: int
    available: int
    message: str


class StockMovementModel(BaseModel):
    movement_id: str
    sku_id: str
    warehouse_id: str
    delta: int
    on_hand_after: int
    reason: str
    created_at: datetime


class StockMovementsResponse(BaseModel):
    """Most recent movements first."""
    success: bool
    movements: List[StockMovementModel]
