"""
Service wiring.

Builds every service once, around a single storage handle, and keeps them
together so the FastAPI app can hand them to request handlers. Tests build a
container over an InMemoryFulfillmentStore and pass it to create_app().
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from fulfillment.config import STORAGE_MEMORY, Settings
from fulfillment.domain.time import utc_now
from fulfillment.repositories.memory_store import InMemoryFulfillmentStore
from fulfillment.repositories.store import FulfillmentStore
from fulfillment.services.allocation_service import AllocationEngine
from fulfillment.services.checkout_service import CheckoutOrchestrator
from fulfillment.services.delivery_cache import DeliveryCache
from fulfillment.services.delivery_service import DeliveryService
from fulfillment.services.payment_signals import PaymentSignalBus
from fulfillment.services.pincode_directory import PincodeDirectory
from fulfillment.services.reservation_service import StockReservationManager
from fulfillment.services.warehouse_registry import WarehouseRegistry


@dataclass(slots=True)
class ServiceContainer:
    settings: Settings
    store: FulfillmentStore
    directory: PincodeDirectory
    registry: WarehouseRegistry
    engine: AllocationEngine
    reservations: StockReservationManager
    cache: DeliveryCache
    delivery: DeliveryService
    orchestrator: CheckoutOrchestrator
    payments: PaymentSignalBus


def _default_store(settings: Settings) -> FulfillmentStore:
    if settings.storage_backend == STORAGE_MEMORY:
        return InMemoryFulfillmentStore()

    from fulfillment.repositories.client import create_supabase_client
    from fulfillment.repositories.supabase_store import SupabaseFulfillmentStore

    return SupabaseFulfillmentStore(create_supabase_client(settings))


def build_container(
    settings: Settings,
    store: Optional[FulfillmentStore] = None,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> ServiceContainer:
    store = store if store is not None else _default_store(settings)

    directory = PincodeDirectory(store)
    registry = WarehouseRegistry(store, clock=clock)
    engine = AllocationEngine(directory, registry)
    reservations = StockReservationManager(store, clock=clock)
    payments = PaymentSignalBus()
    cache = DeliveryCache(
        pincode_ttl=settings.pincode_cache_ttl_seconds,
        availability_ttl=settings.availability_cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
    )
    delivery = DeliveryService(
        engine,
        directory,
        cache,
        batch_window_seconds=settings.batch_window_ms / 1000.0,
        batch_max_size=settings.batch_max_size,
    )
    orchestrator = CheckoutOrchestrator(
        engine,
        reservations,
        payment_timeout_seconds=settings.payment_timeout_seconds,
        payments=payments,
        clock=clock,
        retention_seconds=settings.checkout_retention_seconds,
    )

    return ServiceContainer(
        settings=settings,
        store=store,
        directory=directory,
        registry=registry,
        engine=engine,
        reservations=reservations,
        cache=cache,
        delivery=delivery,
        orchestrator=orchestrator,
        payments=payments,
    )


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the app's ServiceContainer."""

    container = request.app.state.container
    if container is None:
        raise RuntimeError("Service container is not initialised")
    return container


__all__ = ["ServiceContainer", "build_container", "get_container"]
