"""
Supabase-backed FulfillmentStore (persistence).

Reference data and reads go through the PostgREST table API. Every stock
mutation goes through a Postgres function (see supabase/migrations) that
locks the `warehouse_stock` row FOR UPDATE, so the compare-and-increment and
the reservation state change commit in one transaction.

This module contains no allocation rules; it only maps rows to domain
entities and surfaces storage failures as TransientStorageError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from postgrest.exceptions import APIError

from fulfillment.domain.errors import (
    TransientStorageError,
    UnknownReservationError,
    ValidationError,
)
from fulfillment.domain.location import PincodeDetails, Zone
from fulfillment.domain.stock import Reservation, ReservationState, StockMovement, StockRecord
from fulfillment.domain.time import parse_utc, to_iso_utc
from fulfillment.domain.warehouse import Warehouse, WarehouseType

# Supabase table names. Keep these aligned with supabase/migrations.
_PINCODES_TABLE: str = "pincodes"
_WAREHOUSES_TABLE: str = "warehouses"
_STOCK_TABLE: str = "warehouse_stock"
_RESERVATIONS_TABLE: str = "stock_reservations"
_MOVEMENTS_TABLE: str = "stock_movements"


def _row_to_pincode(row: Mapping[str, Any]) -> PincodeDetails:
    days = row.get("estimated_delivery_days")
    return PincodeDetails(
        pincode=str(row["pincode"]),
        zone=Zone(
            zone_id=str(row["zone_id"]),
            zone_name=str(row.get("zone_name") or row["zone_id"]),
            city=row.get("city"),
            state=row.get("state"),
        ),
        delivery_available=bool(row.get("delivery_available", True)),
        cod_available=bool(row.get("cod_available", False)),
        estimated_delivery_days=int(days) if days is not None else None,
    )


def _row_to_warehouse(row: Mapping[str, Any]) -> Warehouse:
    zone_ids = row.get("serviceable_zone_ids") or []
    return Warehouse(
        warehouse_id=str(row["warehouse_id"]),
        name=str(row.get("name") or row["warehouse_id"]),
        type=WarehouseType(str(row["warehouse_type"]).lower()),
        serviceable_zone_ids=frozenset(str(z) for z in zone_ids),
        is_active=bool(row.get("is_active", True)),
    )


def _row_to_stock(row: Mapping[str, Any]) -> StockRecord:
    return StockRecord(
        sku_id=str(row["sku_id"]),
        warehouse_id=str(row["warehouse_id"]),
        on_hand=int(row.get("on_hand") or 0),
        reserved=int(row.get("reserved") or 0),
    )


def _row_to_movement(row: Mapping[str, Any]) -> StockMovement:
    return StockMovement(
        movement_id=str(row["movement_id"]),
        sku_id=str(row["sku_id"]),
        warehouse_id=str(row["warehouse_id"]),
        delta=int(row["delta"]),
        on_hand_after=int(row["on_hand_after"]),
        reason=str(row.get("reason") or ""),
        created_at=parse_utc(row["created_at_utc"]),
    )


def _row_to_reservation(row: Mapping[str, Any]) -> Reservation:
    updated_val = row.get("updated_at_utc")
    return Reservation(
        reservation_id=str(row["reservation_id"]),
        order_token=str(row["order_token"]),
        sku_id=str(row["sku_id"]),
        warehouse_id=str(row["warehouse_id"]),
        quantity=int(row["quantity"]),
        state=ReservationState(str(row["state"])),
        created_at=parse_utc(row["created_at_utc"]),
        updated_at=parse_utc(updated_val) if updated_val is not None else None,
    )


def _api_error_payload(error: APIError) -> Dict[str, Any]:
    json_fn = getattr(error, "json", None)
    if not callable(json_fn):
        return {}
    try:
        data = json_fn()
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


class SupabaseFulfillmentStore:
    """FulfillmentStore over a supabase-py Client."""

    def __init__(self, client: Any):
        self._client = client

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _rows(self, query: Any, action: str) -> List[Mapping[str, Any]]:
        try:
            response = query.execute()
        except APIError as e:
            raise TransientStorageError(f"Failed to {action}: {e}") from e

        error = getattr(response, "error", None)
        if error:
            raise TransientStorageError(f"Failed to {action}: {error}")
        return getattr(response, "data", None) or []

    def _call_rpc(self, function: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Call a Postgres function that returns a JSON object.

        supabase-py raises APIError for some JSON results even when the function
        succeeded, so a payload carrying a `success` key is treated as the result.
        """

        try:
            response = self._client.rpc(function, dict(params)).execute()
        except APIError as e:
            payload = _api_error_payload(e)
            if "success" in payload:
                return payload
            raise TransientStorageError(f"{function} failed: {e}") from e

        error = getattr(response, "error", None)
        if error:
            raise TransientStorageError(f"{function} failed: {error}")

        data = getattr(response, "data", None)
        if not isinstance(data, dict):
            raise TransientStorageError(f"{function} returned an unexpected payload: {data!r}")
        return data

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def list_pincodes(self) -> List[PincodeDetails]:
        rows = self._rows(self._client.table(_PINCODES_TABLE).select("*"), "fetch pincodes")
        return [_row_to_pincode(row) for row in rows]

    def get_pincode(self, pincode: str) -> Optional[PincodeDetails]:
        rows = self._rows(
            self._client.table(_PINCODES_TABLE).select("*").eq("pincode", pincode).limit(1),
            "fetch pincode",
        )
        return _row_to_pincode(rows[0]) if rows else None

    def list_warehouses(self) -> List[Warehouse]:
        rows = self._rows(self._client.table(_WAREHOUSES_TABLE).select("*"), "fetch warehouses")
        return [_row_to_warehouse(row) for row in rows]

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def get_stock(self, sku_id: str, warehouse_id: str) -> Optional[StockRecord]:
        rows = self._rows(
            self._client.table(_STOCK_TABLE)
            .select("sku_id, warehouse_id, on_hand, reserved")
            .eq("sku_id", sku_id)
            .eq("warehouse_id", warehouse_id)
            .limit(1),
            "fetch stock",
        )
        return _row_to_stock(rows[0]) if rows else None

    def list_stock(self) -> List[StockRecord]:
        rows = self._rows(
            self._client.table(_STOCK_TABLE)
            .select("sku_id, warehouse_id, on_hand, reserved")
            .order("sku_id")
            .order("warehouse_id"),
            "fetch stock",
        )
        return [_row_to_stock(row) for row in rows]

    def adjust_on_hand(
        self, sku_id: str, warehouse_id: str, delta: int, *, reason: str, at: datetime
    ) -> StockRecord:
        result = self._call_rpc(
            "adjust_stock_atomic",
            {
                "p_sku_id": sku_id,
                "p_warehouse_id": warehouse_id,
                "p_delta": delta,
                "p_movement_id": str(uuid4()),
                "p_reason": reason,
                "p_at": to_iso_utc(at, name="at"),
            },
        )
        if not result.get("success"):
            raise ValidationError(result.get("message") or "Stock adjustment rejected")
        return _row_to_stock(result["stock"])

    def list_movements(
        self, sku_id: Optional[str] = None, warehouse_id: Optional[str] = None, limit: int = 50
    ) -> List[StockMovement]:
        query = self._client.table(_MOVEMENTS_TABLE).select("*")
        if sku_id is not None:
            query = query.eq("sku_id", sku_id)
        if warehouse_id is not None:
            query = query.eq("warehouse_id", warehouse_id)
        rows = self._rows(
            query.order("created_at_utc", desc=True).limit(limit),
            "fetch stock movements",
        )
        return [_row_to_movement(row) for row in rows]

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(self, reservation: Reservation) -> bool:
        result = self._call_rpc(
            "reserve_stock_atomic",
            {
                "p_reservation_id": reservation.reservation_id,
                "p_order_token": reservation.order_token,
                "p_sku_id": reservation.sku_id,
                "p_warehouse_id": reservation.warehouse_id,
                "p_quantity": reservation.quantity,
                "p_created_at": to_iso_utc(reservation.created_at, name="created_at"),
            },
        )
        if result.get("success"):
            return True
        if result.get("error") == "insufficient_stock":
            return False
        raise TransientStorageError(
            f"reserve_stock_atomic failed: {result.get('error')}: {result.get('message')}"
        )

    def _finish(self, function: str, reservation_id: str, at: datetime) -> Tuple[Reservation, bool]:
        result = self._call_rpc(
            function,
            {"p_reservation_id": reservation_id, "p_at": to_iso_utc(at, name="at")},
        )
        if not result.get("success"):
            if result.get("error") == "not_found":
                raise UnknownReservationError(reservation_id)
            raise TransientStorageError(
                f"{function} failed: {result.get('error')}: {result.get('message')}"
            )
        return _row_to_reservation(result["reservation"]), bool(result.get("changed"))

    def release(self, reservation_id: str, at: datetime) -> Tuple[Reservation, bool]:
        return self._finish("release_reservation_atomic", reservation_id, at)

    def confirm(self, reservation_id: str, at: datetime) -> Tuple[Reservation, bool]:
        return self._finish("confirm_reservation_atomic", reservation_id, at)

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        rows = self._rows(
            self._client.table(_RESERVATIONS_TABLE)
            .select("*")
            .eq("reservation_id", reservation_id)
            .limit(1),
            "fetch reservation",
        )
        return _row_to_reservation(rows[0]) if rows else None

    def find_reservations(self, order_token: str) -> List[Reservation]:
        rows = self._rows(
            self._client.table(_RESERVATIONS_TABLE)
            .select("*")
            .eq("order_token", order_token)
            .order("created_at_utc"),
            "fetch reservations",
        )
        return [_row_to_reservation(row) for row in rows]

    def find_held_reservations(self, created_before: datetime) -> List[Reservation]:
        rows = self._rows(
            self._client.table(_RESERVATIONS_TABLE)
            .select("*")
            .eq("state", ReservationState.HELD.value)
            .lt("created_at_utc", to_iso_utc(created_before, name="created_before")),
            "fetch held reservations",
        )
        return [_row_to_reservation(row) for row in rows]


__all__ = ["SupabaseFulfillmentStore"]
