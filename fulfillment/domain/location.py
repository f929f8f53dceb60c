"""
Domain: Pincodes and delivery zones.

Rules implemented here:
- A pincode is a 6-digit number whose first digit is 1-9. Anything else is a
  ValidationError, not a lookup miss.
- A pincode maps to at most one Zone. An un-mapped pincode is "undeliverable",
  which is decided by the directory service, not raised here.

This module contains only pure value objects: no I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .errors import ValidationError

_PINCODE_PATTERN = re.compile(r"^[1-9][0-9]{5}$")


def validate_pincode(pincode: object) -> str:
    """Return the normalized pincode or raise ValidationError."""

    if pincode is None:
        raise ValidationError("pincode is required")
    text = str(pincode).strip()
    if not _PINCODE_PATTERN.match(text):
        raise ValidationError(
            f"Invalid pincode '{text}': must be 6 digits and must not start with 0"
        )
    return text


@dataclass(frozen=True, slots=True)
class Zone:
    """Geographic delivery region derived from a pincode."""

    zone_id: str
    zone_name: str
    city: Optional[str] = None
    state: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PincodeDetails:
    """
    Reference record for one pincode.

    delivery_available is the base deliverability flag: a mapped pincode with
    the flag off resolves to no zone.
    """

    pincode: str
    zone: Zone
    delivery_available: bool = True
    cod_available: bool = False
    estimated_delivery_days: Optional[int] = None

    def __post_init__(self) -> None:
        validate_pincode(self.pincode)


__all__ = [
    "PincodeDetails",
    "Zone",
    "validate_pincode",
]
