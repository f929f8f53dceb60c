"""
Read-side delivery checks for storefront pages.

Puts the DeliveryCache (and its RequestBatcher) in front of the allocation
engine and pincode directory. Only the client-facing read path uses this
service; checkout goes to the engine and reservation manager directly.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence

from fulfillment.domain.errors import ValidationError
from fulfillment.domain.location import PincodeDetails, validate_pincode
from fulfillment.domain.stock import CartLine, Sku
from fulfillment.services.allocation_service import (
    AllocationEngine,
    AvailabilityResult,
    CartAvailability,
)
from fulfillment.services.delivery_cache import DeliveryCache, RequestBatcher
from fulfillment.services.pincode_directory import PincodeDirectory


@dataclass(frozen=True, slots=True)
class DeliveryQuery:
    sku: Sku
    pincode: str
    quantity: int = 1


class DeliveryService:
    def __init__(
        self,
        engine: AllocationEngine,
        directory: PincodeDirectory,
        cache: DeliveryCache,
        *,
        batch_window_seconds: float = 0.05,
        batch_max_size: int = 10,
    ):
        self._engine = engine
        self._directory = directory
        self._cache = cache
        self._batcher: RequestBatcher[DeliveryQuery, AvailabilityResult] = RequestBatcher(
            self._process_batch,
            window_seconds=batch_window_seconds,
            max_batch_size=batch_max_size,
        )

    @property
    def cache(self) -> DeliveryCache:
        return self._cache

    def get_pincode_details(self, pincode: str) -> Optional[PincodeDetails]:
        normalized = validate_pincode(pincode)
        return self._cache.get_pincode(normalized, lambda: self._directory.get_details(normalized))

    def check_product(self, sku: Sku, pincode: str, quantity: int = 1) -> AvailabilityResult:
        normalized = validate_pincode(pincode)
        return self._cache.get_availability(
            sku.sku_id,
            normalized,
            quantity,
            lambda: self._engine.check_availability(sku, normalized, quantity),
        )

    def check_cart(self, lines: Sequence[CartLine], pincode: str) -> CartAvailability:
        # Carts are not cached: a cart check usually precedes checkout.
        return self._engine.check_cart_availability(lines, pincode)

    async def check_many(self, queries: Sequence[DeliveryQuery]) -> List[AvailabilityResult]:
        """
        Check many (sku, pincode, quantity) combinations.

        The batcher is shared by concurrent callers, so everything that can
        make a query invalid (pincode, quantity) is checked here, before
        submission: a malformed query fails only its own caller. A storage
        failure while the coalesced batch runs still fails every query in
        that batch.
        """

        normalized = []
        for q in queries:
            if isinstance(q.quantity, bool) or not isinstance(q.quantity, int) or q.quantity < 1:
                raise ValidationError(f"quantity must be a positive integer, got {q.quantity!r}")
            normalized.append(
                DeliveryQuery(sku=q.sku, pincode=validate_pincode(q.pincode), quantity=q.quantity)
            )
        return list(await asyncio.gather(*(self._batcher.submit(q) for q in normalized)))

    def _process_batch(self, queries: List[DeliveryQuery]) -> List[AvailabilityResult]:
        return [self.check_product(q.sku, q.pincode, q.quantity) for q in queries]


__all__ = ["DeliveryQuery", "DeliveryService"]
