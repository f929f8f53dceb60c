"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import the
`fulfillment` package without installing it, and provides an in-memory
store seeded with a small delivery network:

    zone blr-north (560001): local-1, local-9 (inactive), zonal-1, central-1
    zone blr-south (560002): zonal-1, central-1
    zone far-east  (790001): no warehouse at all
    560099: mapped to blr-north but delivery switched off
    110001: well-formed, not mapped
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fulfillment.domain.location import PincodeDetails, Zone  # noqa: E402
from fulfillment.domain.warehouse import Warehouse, WarehouseType  # noqa: E402
from fulfillment.repositories.memory_store import InMemoryFulfillmentStore  # noqa: E402
from fulfillment.services.allocation_service import AllocationEngine  # noqa: E402
from fulfillment.services.checkout_service import CheckoutOrchestrator  # noqa: E402
from fulfillment.services.pincode_directory import PincodeDirectory  # noqa: E402
from fulfillment.services.reservation_service import StockReservationManager  # noqa: E402
from fulfillment.services.warehouse_registry import WarehouseRegistry  # noqa: E402

BLR_NORTH = Zone(zone_id="blr-north", zone_name="Bangalore North", city="Bangalore", state="KA")
BLR_SOUTH = Zone(zone_id="blr-south", zone_name="Bangalore South", city="Bangalore", state="KA")
FAR_EAST = Zone(zone_id="far-east", zone_name="Far East")

NORTH_PINCODE = "560001"
SOUTH_PINCODE = "560002"
UNSERVED_PINCODE = "790001"
SWITCHED_OFF_PINCODE = "560099"
UNMAPPED_PINCODE = "110001"


class ManualClock:
    """Settable UTC clock for reservation timestamps."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def seed_network(store: InMemoryFulfillmentStore) -> InMemoryFulfillmentStore:
    store.add_pincode(PincodeDetails(pincode=NORTH_PINCODE, zone=BLR_NORTH, cod_available=True, estimated_delivery_days=2))
    store.add_pincode(PincodeDetails(pincode=SOUTH_PINCODE, zone=BLR_SOUTH, estimated_delivery_days=3))
    store.add_pincode(PincodeDetails(pincode=UNSERVED_PINCODE, zone=FAR_EAST))
    store.add_pincode(PincodeDetails(pincode=SWITCHED_OFF_PINCODE, zone=BLR_NORTH, delivery_available=False))

    store.add_warehouse(
        Warehouse("local-1", "Koramangala", WarehouseType.LOCAL, frozenset({"blr-north"}))
    )
    store.add_warehouse(
        Warehouse("local-9", "Closed store", WarehouseType.LOCAL, frozenset({"blr-north"}), is_active=False)
    )
    store.add_warehouse(
        Warehouse("zonal-1", "Bangalore hub", WarehouseType.ZONAL, frozenset({"blr-north", "blr-south"}))
    )
    store.add_warehouse(
        Warehouse("central-1", "National DC", WarehouseType.CENTRAL, frozenset({"blr-north", "blr-south"}))
    )
    return store


@pytest.fixture
def store() -> InMemoryFulfillmentStore:
    return seed_network(InMemoryFulfillmentStore())


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def directory(store) -> PincodeDirectory:
    return PincodeDirectory(store)


@pytest.fixture
def registry(store, clock) -> WarehouseRegistry:
    return WarehouseRegistry(store, clock=clock)


@pytest.fixture
def engine(directory, registry) -> AllocationEngine:
    return AllocationEngine(directory, registry)


@pytest.fixture
def manager(store, clock) -> StockReservationManager:
    return StockReservationManager(store, clock=clock)


@pytest.fixture
def orchestrator(engine, manager, clock) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(engine, manager, payment_timeout_seconds=1, clock=clock)
