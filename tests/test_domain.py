"""
Tests for the `fulfillment.domain` value objects.

Covers contract rules:
- A pincode is 6 digits and never starts with 0; anything else is a ValidationError.
- A SKU is a base product or one variant; its id round-trips through Sku.parse.
- Cart quantities are positive integers.
- StockRecord keeps 0 <= reserved <= on_hand.
- Reservations move held -> confirmed | released and never leave a terminal state.
- Warehouse fallback order is local -> zonal -> central, lowest id first.
- The checkout state machine only allows its documented edges.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from fulfillment.domain.checkout import (
    CheckoutState,
    FailureKind,
    can_transition,
)
from fulfillment.domain.errors import ValidationError
from fulfillment.domain.location import PincodeDetails, Zone, validate_pincode
from fulfillment.domain.stock import CartLine, Reservation, ReservationState, Sku, StockRecord
from fulfillment.domain.time import parse_utc, to_iso_utc
from fulfillment.domain.warehouse import Warehouse, WarehouseType, fallback_sort_key

T0 = datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("pincode", ["560001", "110001", "999999", " 400001 "])
def test_validate_pincode_accepts_six_digits_not_starting_with_zero(pincode) -> None:
    assert validate_pincode(pincode) == pincode.strip()


@pytest.mark.parametrize("pincode", ["012345", "56000", "5600011", "56000a", "", None])
def test_validate_pincode_rejects_malformed_values(pincode) -> None:
    with pytest.raises(ValidationError):
        validate_pincode(pincode)


def test_pincode_details_rejects_malformed_pincode() -> None:
    with pytest.raises(ValidationError):
        PincodeDetails(pincode="012345", zone=Zone(zone_id="z", zone_name="Z"))


def test_sku_id_round_trips_for_base_product_and_variant() -> None:
    """Verify a base product and each variant have distinct, parseable ids."""

    base = Sku("shirt")
    red = Sku("shirt", "red-m")

    assert base.sku_id == "shirt"
    assert red.sku_id == "shirt:red-m"
    assert Sku.parse(red.sku_id) == red
    assert Sku.parse(base.sku_id) == base
    assert base != red


def test_sku_requires_product_id() -> None:
    with pytest.raises(ValidationError):
        Sku("")
    with pytest.raises(ValidationError):
        Sku("a:b")


@pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
def test_cart_line_quantity_must_be_positive_integer(quantity) -> None:
    with pytest.raises(ValidationError):
        CartLine(product_id="shirt", quantity=quantity)


def test_stock_record_never_has_more_reserved_than_on_hand() -> None:
    """Verify the reserved <= on_hand invariant is enforced on construction and update."""

    record = StockRecord(sku_id="shirt", warehouse_id="w1", on_hand=3, reserved=1)
    assert record.available == 2

    with pytest.raises(ValueError):
        StockRecord(sku_id="shirt", warehouse_id="w1", on_hand=1, reserved=2)

    with pytest.raises(ValueError):
        record.with_reserved(3)

    deducted = record.with_deducted(1)
    assert (deducted.on_hand, deducted.reserved) == (2, 0)
    assert record.on_hand == 3


def test_reservation_transitions_are_terminal() -> None:
    """Verify a confirmed or released reservation cannot move again."""

    held = Reservation(
        reservation_id="r1",
        order_token="o1",
        sku_id="shirt",
        warehouse_id="w1",
        quantity=1,
        state=ReservationState.HELD,
        created_at=T0,
    )
    confirmed = held.transition(ReservationState.CONFIRMED, T0 + timedelta(minutes=1))

    assert held.state is ReservationState.HELD
    assert confirmed.state is ReservationState.CONFIRMED
    assert confirmed.updated_at == T0 + timedelta(minutes=1)

    with pytest.raises(ValueError):
        confirmed.transition(ReservationState.RELEASED, T0)
    with pytest.raises(ValueError):
        held.transition(ReservationState.HELD, T0)


def test_reservation_requires_utc_created_at() -> None:
    with pytest.raises(ValueError):
        Reservation("r1", "o1", "shirt", "w1", 1, ReservationState.HELD, datetime(2025, 1, 1))


def test_fallback_sort_key_orders_by_type_then_numeric_id() -> None:
    """Verify local -> zonal -> central, and numeric ids compare as numbers."""

    warehouses = [
        Warehouse("central-1", "C", WarehouseType.CENTRAL),
        Warehouse("10", "L10", WarehouseType.LOCAL),
        Warehouse("zonal-1", "Z", WarehouseType.ZONAL),
        Warehouse("9", "L9", WarehouseType.LOCAL),
    ]

    ordered = [w.warehouse_id for w in sorted(warehouses, key=fallback_sort_key)]

    assert ordered == ["9", "10", "zonal-1", "central-1"]


def test_inactive_warehouse_serves_nothing() -> None:
    warehouse = Warehouse("w", "W", WarehouseType.LOCAL, frozenset({"z"}), is_active=False)
    assert warehouse.serves("z") is False


def test_checkout_state_machine_edges() -> None:
    assert can_transition(CheckoutState.VALIDATING_DELIVERY, CheckoutState.RESERVING_STOCK)
    assert can_transition(CheckoutState.AWAITING_PAYMENT, CheckoutState.RELEASING)
    assert can_transition(CheckoutState.RELEASING, CheckoutState.FAILED)
    assert not can_transition(CheckoutState.RESERVING_STOCK, CheckoutState.DONE)
    assert not can_transition(CheckoutState.DONE, CheckoutState.FAILED)
    assert not can_transition(CheckoutState.FAILED, CheckoutState.AWAITING_PAYMENT)


def test_only_paid_not_fulfilled_means_customer_was_charged() -> None:
    charged = [kind for kind in FailureKind if not kind.nothing_charged]
    assert charged == [FailureKind.PAID_NOT_FULFILLED]


def test_parse_utc_normalizes_stored_timestamps() -> None:
    assert parse_utc("2025-01-01T00:00:00Z") == T0
    assert parse_utc("2025-01-01T05:30:00+05:30") == T0
    assert parse_utc(datetime(2025, 1, 1)) == T0
    assert parse_utc("2025-01-01T05:30:00+05:30").utcoffset() == timedelta(0)


def test_to_iso_utc_refuses_non_utc() -> None:
    assert to_iso_utc(T0, name="at") == "2025-01-01T00:00:00+00:00"
    with pytest.raises(ValueError):
        to_iso_utc(datetime(2025, 1, 1, tzinfo=timezone(timedelta(hours=1))), name="at")
