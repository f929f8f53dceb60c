"""
Tests for `repositories/supabase_store.py` against a fake supabase client.

Covers contract rules:
- Rows map to domain entities; timestamps come back as UTC datetimes.
- PostgREST failures surface as TransientStorageError.
- Stock mutations go through the atomic Postgres functions; an
  insufficient_stock answer is a rejection, not an error.
- supabase-py raising APIError for a successful JSON result is tolerated.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from fulfillment.domain.errors import TransientStorageError, UnknownReservationError, ValidationError
from fulfillment.domain.stock import Reservation, ReservationState
from fulfillment.domain.warehouse import WarehouseType
from fulfillment.repositories.supabase_store import SupabaseFulfillmentStore

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

RESERVATION_ROW = {
    "reservation_id": "r1",
    "order_token": "ord-1",
    "sku_id": "mug",
    "warehouse_id": "local-1",
    "quantity": 2,
    "state": "released",
    "created_at_utc": "2025-01-01T12:00:00Z",
    "updated_at_utc": "2025-01-01T12:05:00+00:00",
}


class FakeQuery:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, response=None, error=None):
        self.calls = []
        self._response = response
        self._error = error

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args))
            return self

        return method

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._response


def _client_returning(query: FakeQuery) -> MagicMock:
    client = MagicMock()
    client.table.return_value = query
    client.rpc.return_value = query
    return client


def _reservation() -> Reservation:
    return Reservation(
        reservation_id="r1",
        order_token="ord-1",
        sku_id="mug",
        warehouse_id="local-1",
        quantity=2,
        state=ReservationState.HELD,
        created_at=T0,
    )


def test_list_warehouses_maps_rows() -> None:
    query = FakeQuery(
        SimpleNamespace(
            data=[
                {
                    "warehouse_id": "central-1",
                    "name": "National DC",
                    "warehouse_type": "CENTRAL",
                    "serviceable_zone_ids": ["blr-north", "blr-south"],
                    "is_active": True,
                }
            ],
            error=None,
        )
    )
    store = SupabaseFulfillmentStore(_client_returning(query))

    [warehouse] = store.list_warehouses()

    assert warehouse.type is WarehouseType.CENTRAL
    assert warehouse.serviceable_zone_ids == frozenset({"blr-north", "blr-south"})


def test_get_pincode_maps_zone_and_handles_missing_row() -> None:
    row = {"pincode": 560001, "zone_id": "blr-north", "zone_name": "Bangalore North", "cod_available": True}
    store = SupabaseFulfillmentStore(_client_returning(FakeQuery(SimpleNamespace(data=[row], error=None))))

    details = store.get_pincode("560001")

    assert details.pincode == "560001"
    assert details.zone.zone_id == "blr-north"
    assert details.delivery_available is True
    assert details.cod_available is True

    empty = SupabaseFulfillmentStore(_client_returning(FakeQuery(SimpleNamespace(data=[], error=None))))
    assert empty.get_pincode("110001") is None


def test_find_reservations_parses_utc_timestamps() -> None:
    query = FakeQuery(SimpleNamespace(data=[RESERVATION_ROW], error=None))
    store = SupabaseFulfillmentStore(_client_returning(query))

    [reservation] = store.find_reservations("ord-1")

    assert reservation.state is ReservationState.RELEASED
    assert reservation.created_at == T0
    assert reservation.updated_at.tzinfo is not None
    assert ("eq", ("order_token", "ord-1")) in query.calls


def test_api_error_becomes_transient_storage_error() -> None:
    query = FakeQuery(error=APIError({"message": "connection refused", "code": "08006"}))
    store = SupabaseFulfillmentStore(_client_returning(query))

    with pytest.raises(TransientStorageError):
        store.get_stock("mug", "local-1")


def test_response_error_becomes_transient_storage_error() -> None:
    query = FakeQuery(SimpleNamespace(data=None, error="timeout"))
    store = SupabaseFulfillmentStore(_client_returning(query))

    with pytest.raises(TransientStorageError):
        store.list_stock()


def test_reserve_calls_atomic_function() -> None:
    query = FakeQuery(SimpleNamespace(data={"success": True}, error=None))
    client = _client_returning(query)
    store = SupabaseFulfillmentStore(client)

    assert store.reserve(_reservation()) is True

    function, params = client.rpc.call_args.args
    assert function == "reserve_stock_atomic"
    assert params["p_quantity"] == 2
    assert params["p_created_at"] == "2025-01-01T12:00:00+00:00"


def test_reserve_insufficient_stock_is_a_rejection() -> None:
    query = FakeQuery(SimpleNamespace(data={"success": False, "error": "insufficient_stock"}, error=None))
    store = SupabaseFulfillmentStore(_client_returning(query))

    assert store.reserve(_reservation()) is False


def test_rpc_success_wrapped_in_api_error_is_accepted() -> None:
    """Verify the supabase-py quirk of raising APIError for a JSON success payload."""

    payload = {"success": True, "changed": True, "reservation": RESERVATION_ROW}
    error = APIError({"message": "JSON could not be generated", "code": "200"})
    error.json = lambda: payload
    store = SupabaseFulfillmentStore(_client_returning(FakeQuery(error=error)))

    reservation, changed = store.release("r1", T0)

    assert changed is True
    assert reservation.state is ReservationState.RELEASED


def test_finish_unknown_reservation_raises() -> None:
    query = FakeQuery(SimpleNamespace(data={"success": False, "error": "not_found"}, error=None))
    store = SupabaseFulfillmentStore(_client_returning(query))

    with pytest.raises(UnknownReservationError):
        store.confirm("missing", T0)


def test_adjust_below_reserved_is_a_validation_error() -> None:
    query = FakeQuery(
        SimpleNamespace(data={"success": False, "message": "on_hand would drop below reserved"}, error=None)
    )
    store = SupabaseFulfillmentStore(_client_returning(query))

    with pytest.raises(ValidationError):
        store.adjust_on_hand("mug", "local-1", -10, reason="cycle count", at=T0)


def test_adjust_sends_movement_fields_and_maps_stock() -> None:
    query = FakeQuery(
        SimpleNamespace(
            data={
                "success": True,
                "stock": {"sku_id": "mug", "warehouse_id": "local-1", "on_hand": 12, "reserved": 1},
            },
            error=None,
        )
    )
    client = _client_returning(query)
    store = SupabaseFulfillmentStore(client)

    record = store.adjust_on_hand("mug", "local-1", 7, reason="received PO-17", at=T0)

    assert (record.on_hand, record.reserved) == (12, 1)
    function, params = client.rpc.call_args.args
    assert function == "adjust_stock_atomic"
    assert params["p_delta"] == 7
    assert params["p_reason"] == "received PO-17"
    assert params["p_at"] == "2025-01-01T12:00:00+00:00"
    assert params["p_movement_id"]


def test_list_movements_filters_and_maps_rows() -> None:
    row = {
        "movement_id": "m1",
        "sku_id": "mug",
        "warehouse_id": "local-1",
        "delta": -2,
        "on_hand_after": 3,
        "reason": "damaged",
        "created_at_utc": "2025-01-01T12:00:00Z",
    }
    query = FakeQuery(SimpleNamespace(data=[row], error=None))
    store = SupabaseFulfillmentStore(_client_returning(query))

    [movement] = store.list_movements(sku_id="mug", limit=10)

    assert (movement.delta, movement.on_hand_after, movement.reason) == (-2, 3, "damaged")
    assert movement.created_at == T0
    assert ("eq", ("sku_id", "mug")) in query.calls
    assert ("limit", (10,)) in query.calls
