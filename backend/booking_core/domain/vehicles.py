"""
Vehicle categories as a closed variant with a capability set per member.

Category-specific behaviour is looked up here instead of branching on the
category string at call sites.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class VehicleCapabilities:
    supports_split_payment: bool
    max_passengers: int


class VehicleCategory(str, Enum):
    AUTO = "auto"
    CAR = "car"
    BUS = "bus"

    @property
    def capabilities(self) -> VehicleCapabilities:
        return _CAPABILITIES[self]


_CAPABILITIES = {
    VehicleCategory.AUTO: VehicleCapabilities(supports_split_payment=False, max_passengers=3),
    VehicleCategory.CAR: VehicleCapabilities(supports_split_payment=True, max_passengers=7),
    VehicleCategory.BUS: VehicleCapabilities(supports_split_payment=True, max_passengers=60),
}
