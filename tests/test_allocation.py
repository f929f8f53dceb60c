"""
Tests for `services/allocation_service.py`, `services/pincode_directory.py`
and `services/warehouse_registry.py`.

Covers contract rules:
- A local warehouse with enough stock is chosen, with no fallback.
- Otherwise the first zonal, then central, warehouse with enough stock is
  chosen and fallback_used is set.
- Un-mapped or switched-off pincodes are not deliverable; malformed ones raise.
- Variants are independent stock-keeping units.
- A cart is judged line by line: no substitution and no cross-warehouse splitting.
- Checks are read-only and repeatable against the same stock snapshot.
"""

from __future__ import annotations

import pytest

from conftest import (
    BLR_SOUTH,
    NORTH_PINCODE,
    SOUTH_PINCODE,
    SWITCHED_OFF_PINCODE,
    UNMAPPED_PINCODE,
    UNSERVED_PINCODE,
)
from fulfillment.domain.errors import ValidationError
from fulfillment.domain.location import PincodeDetails
from fulfillment.domain.stock import CartLine, Sku
from fulfillment.services.allocation_service import (
    REASON_INSUFFICIENT_STOCK,
    REASON_ZONE_NOT_SERVICEABLE,
    REASON_ZONE_UNRESOLVED,
)


def test_local_warehouse_preferred_when_it_has_stock(store, engine) -> None:
    """Verify a local warehouse with enough stock wins, with no fallback."""

    store.set_stock("mug", "local-1", on_hand=5)
    store.set_stock("mug", "central-1", on_hand=50)

    result = engine.check_availability(Sku("mug"), NORTH_PINCODE, 2)

    assert result.deliverable is True
    assert result.warehouse.warehouse_id == "local-1"
    assert result.fallback_used is False
    assert result.reason is None
    assert result.zone.zone_id == "blr-north"


def test_falls_back_to_central_when_local_and_zonal_are_empty(store, engine) -> None:
    """Verify central is used, with fallback_used, once local and zonal are out."""

    store.set_stock("mug", "local-1", on_hand=0)
    store.set_stock("mug", "zonal-1", on_hand=1)
    store.set_stock("mug", "central-1", on_hand=5)

    result = engine.check_availability(Sku("mug"), NORTH_PINCODE, 2)

    assert result.deliverable is True
    assert result.warehouse.warehouse_id == "central-1"
    assert result.fallback_used is True
    assert "central" in result.message


def test_zonal_tried_before_central(store, engine) -> None:
    store.set_stock("mug", "zonal-1", on_hand=3)
    store.set_stock("mug", "central-1", on_hand=3)

    result = engine.check_availability("mug", NORTH_PINCODE, 3)

    assert result.warehouse.warehouse_id == "zonal-1"
    assert result.fallback_used is True


def test_reserved_units_are_not_available(store, engine) -> None:
    """Verify allocation uses on_hand - reserved, not on_hand."""

    store.set_stock("mug", "local-1", on_hand=5, reserved=4)
    store.set_stock("mug", "central-1", on_hand=5)

    result = engine.check_availability("mug", NORTH_PINCODE, 2)

    assert result.warehouse.warehouse_id == "central-1"


def test_inactive_warehouse_is_skipped(store, engine) -> None:
    store.set_stock("mug", "local-9", on_hand=100)

    result = engine.check_availability("mug", NORTH_PINCODE, 1)

    assert result.deliverable is False
    assert result.reason == REASON_INSUFFICIENT_STOCK


def test_unmapped_pincode_is_not_deliverable(store, engine) -> None:
    store.set_stock("mug", "central-1", on_hand=5)

    result = engine.check_availability("mug", UNMAPPED_PINCODE, 1)

    assert result.deliverable is False
    assert result.reason == REASON_ZONE_UNRESOLVED
    assert result.warehouse is None


def test_switched_off_pincode_is_not_deliverable(store, engine) -> None:
    store.set_stock("mug", "local-1", on_hand=5)

    result = engine.check_availability("mug", SWITCHED_OFF_PINCODE, 1)

    assert result.deliverable is False
    assert result.reason == REASON_ZONE_UNRESOLVED


def test_zone_without_any_warehouse_is_not_serviceable(engine, directory) -> None:
    result = engine.check_availability("mug", UNSERVED_PINCODE, 1)

    assert result.deliverable is False
    assert result.reason == REASON_ZONE_NOT_SERVICEABLE
    assert directory.is_serviceable(result.zone) is False


@pytest.mark.parametrize("pincode", ["012345", "56001", "abcdef"])
def test_malformed_pincode_raises(engine, pincode) -> None:
    with pytest.raises(ValidationError):
        engine.check_availability("mug", pincode, 1)


@pytest.mark.parametrize("quantity", [0, -3])
def test_non_positive_quantity_raises(engine, quantity) -> None:
    with pytest.raises(ValidationError):
        engine.check_availability("mug", NORTH_PINCODE, quantity)


def test_variants_are_independent_skus(store, engine) -> None:
    """Verify stock of one variant says nothing about a sibling variant."""

    store.set_stock("shirt:red-m", "local-1", on_hand=5)
    store.set_stock("shirt:blue-m", "local-1", on_hand=0)

    red = engine.check_availability(Sku("shirt", "red-m"), NORTH_PINCODE, 1)
    blue = engine.check_availability(Sku("shirt", "blue-m"), NORTH_PINCODE, 1)
    base = engine.check_availability(Sku("shirt"), NORTH_PINCODE, 1)

    assert red.deliverable is True
    assert blue.deliverable is False
    assert base.deliverable is False


def test_quantity_is_never_split_across_warehouses(store, engine) -> None:
    """Verify 3 + 3 units in two warehouses do not make 5 deliverable."""

    store.set_stock("mug", "local-1", on_hand=3)
    store.set_stock("mug", "central-1", on_hand=3)

    result = engine.check_availability("mug", NORTH_PINCODE, 5)

    assert result.deliverable is False
    assert result.reason == REASON_INSUFFICIENT_STOCK
    assert result.available_quantity == 3


def test_cart_is_checked_line_by_line(store, engine) -> None:
    """Verify one undeliverable line makes the cart undeliverable, others unaffected."""

    store.set_stock("mug", "local-1", on_hand=5)
    store.set_stock("shirt:red-m", "central-1", on_hand=1)

    lines = [
        CartLine("mug", 2),
        CartLine("shirt", 2, variant_id="red-m"),
        CartLine("shirt", 1, variant_id="red-m"),
    ]
    cart = engine.check_cart_availability(lines, NORTH_PINCODE)

    assert cart.all_deliverable is False
    assert [i.line_index for i in cart.deliverable_items] == [0, 2]
    assert [i.line_index for i in cart.undeliverable_items] == [1]
    assert cart.lines[0].result.warehouse.warehouse_id == "local-1"
    assert cart.lines[2].result.fallback_used is True


def test_cart_fully_deliverable(store, engine) -> None:
    store.set_stock("mug", "zonal-1", on_hand=5)
    store.set_stock("plate", "central-1", on_hand=5)

    cart = engine.check_cart_availability([CartLine("mug", 1), CartLine("plate", 4)], SOUTH_PINCODE)

    assert cart.all_deliverable is True
    assert cart.pincode == SOUTH_PINCODE


def test_empty_cart_raises(engine) -> None:
    with pytest.raises(ValidationError):
        engine.check_cart_availability([], NORTH_PINCODE)


def test_checks_do_not_change_stock(store, engine) -> None:
    """Verify availability checks are pure reads."""

    store.set_stock("mug", "local-1", on_hand=5, reserved=1)

    first = engine.check_availability("mug", NORTH_PINCODE, 3)
    second = engine.check_availability("mug", NORTH_PINCODE, 3)

    assert first == second
    record = store.get_stock("mug", "local-1")
    assert (record.on_hand, record.reserved) == (5, 1)


def test_registry_orders_zone_warehouses_for_fallback(registry) -> None:
    ordered = [w.warehouse_id for w in registry.warehouses_for_zone("blr-north")]
    assert ordered == ["local-1", "zonal-1", "central-1"]


def test_registry_reports_missing_stock_as_zero(registry) -> None:
    record = registry.get_stock("nothing", "local-1")
    assert (record.on_hand, record.reserved, record.available) == (0, 0, 0)


def test_registry_adjust_stock(store, registry) -> None:
    """Verify administrative adjustments respect reserved units and known warehouses."""

    store.set_stock("mug", "local-1", on_hand=5, reserved=3)

    assert registry.adjust_stock("mug", "local-1", 2).on_hand == 7

    with pytest.raises(ValidationError):
        registry.adjust_stock("mug", "local-1", -5)
    with pytest.raises(ValidationError):
        registry.adjust_stock("mug", "nowhere", 1)
    with pytest.raises(ValidationError):
        registry.adjust_stock("mug", "local-1", 0)


def test_adjustments_leave_a_movement_history(store, registry, clock) -> None:
    """Verify each accepted adjustment is recorded, newest first, and rejected ones are not."""

    registry.adjust_stock("mug", "local-1", 10, reason="received PO-17")
    clock.advance(minutes=5)
    registry.adjust_stock("mug", "local-1", -2, reason="damaged in aisle")
    registry.adjust_stock("plate", "central-1", 4)
    with pytest.raises(ValidationError):
        registry.adjust_stock("mug", "local-1", -50)

    history = registry.movements(sku_id="mug")

    assert [(m.delta, m.on_hand_after, m.reason) for m in history] == [
        (-2, 8, "damaged in aisle"),
        (10, 10, "received PO-17"),
    ]
    assert history[0].created_at == clock.now
    assert [m.sku_id for m in registry.movements(warehouse_id="central-1")] == ["plate"]
    assert len(registry.movements(limit=1)) == 1


def test_stock_for_sku_lists_every_warehouse_in_fallback_order(store, registry) -> None:
    store.set_stock("mug", "central-1", on_hand=7, reserved=2)

    records = registry.stock_for_sku("mug")

    assert [r.warehouse_id for r in records] == ["local-1", "local-9", "zonal-1", "central-1"]
    assert records[-1].available == 5
    assert records[0].on_hand == 0


def test_directory_details_and_refresh(store, directory) -> None:
    """Verify lookups come from the loaded snapshot until refresh()."""

    assert directory.get_details(NORTH_PINCODE).cod_available is True
    assert directory.get_details(UNMAPPED_PINCODE) is None

    store.add_pincode(PincodeDetails(pincode=UNMAPPED_PINCODE, zone=BLR_SOUTH))
    assert directory.resolve_zone(UNMAPPED_PINCODE) is None

    directory.refresh()
    assert directory.resolve_zone(UNMAPPED_PINCODE) == BLR_SOUTH
