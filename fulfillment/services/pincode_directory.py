"""
Pincode directory: pincode -> delivery zone.

Pure lookup over a snapshot of reference data loaded from the store. The
snapshot is loaded on first use and reloaded by refresh().
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, FrozenSet, Optional

from fulfillment.domain.location import PincodeDetails, Zone, validate_pincode
from fulfillment.repositories.store import FulfillmentStore

logger = logging.getLogger(__name__)


class PincodeDirectory:
    def __init__(self, store: FulfillmentStore):
        self._store = store
        self._pincodes: Dict[str, PincodeDetails] = {}
        self._served_zone_ids: FrozenSet[str] = frozenset()
        self._loaded = False
        self._lock = threading.Lock()

    def refresh(self) -> None:
        pincodes = {d.pincode: d for d in self._store.list_pincodes()}
        served = frozenset(
            zone_id
            for warehouse in self._store.list_warehouses()
            if warehouse.is_active
            for zone_id in warehouse.serviceable_zone_ids
        )
        with self._lock:
            self._pincodes = pincodes
            self._served_zone_ids = served
            self._loaded = True
        logger.info("Loaded %d pincodes covering %d served zones", len(pincodes), len(served))

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.refresh()

    def get_details(self, pincode: str) -> Optional[PincodeDetails]:
        """Full reference record for a pincode, or None if it is not mapped."""

        normalized = validate_pincode(pincode)
        self._ensure_loaded()
        return self._pincodes.get(normalized)

    def resolve_zone(self, pincode: str) -> Optional[Zone]:
        """
        Resolve a pincode to its delivery zone.

        Raises ValidationError for a malformed pincode. Returns None when the
        pincode is not mapped or its base deliverability flag is off.
        """

        details = self.get_details(pincode)
        if details is None or not details.delivery_available:
            return None
        return details.zone

    def is_serviceable(self, zone: Zone) -> bool:
        self._ensure_loaded()
        return zone.zone_id in self._served_zone_ids


__all__ = ["PincodeDirectory"]
