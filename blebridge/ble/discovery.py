"""Discovered peripheral records."""

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from blebridge.ble.utils import sanitize_address

__all__ = ["DiscoveredDevice"]


@dataclass
class DiscoveredDevice:
    """
    Latest advertisement data seen for one peripheral.

    `address` is the stable identity (MAC address, or the platform UUID on
    systems that hide MACs). The registry mutates the same instance in place
    when the address is observed again; events carry `snapshot()` copies.
    """

    address: str
    name: Optional[str] = None
    rssi: Optional[int] = None
    last_seen: float = field(default_factory=time.monotonic)
    service_uuids: List[str] = field(default_factory=list)
    manufacturer_data: Dict[int, bytes] = field(default_factory=dict)
    service_data: Dict[str, bytes] = field(default_factory=dict)
    tx_power: Optional[int] = None

    @property
    def key(self) -> Optional[str]:
        """Registry lookup key for this device."""
        return sanitize_address(self.address)

    def update_from(self, other: "DiscoveredDevice") -> None:
        """
        Merge a newer observation of the same peripheral into this record.

        Fields the new advertisement does not carry (a scan response without a
        name, for example) keep their previous values.
        """
        if other.name:
            self.name = other.name
        if other.rssi is not None:
            self.rssi = other.rssi
        if other.tx_power is not None:
            self.tx_power = other.tx_power
        for uuid in other.service_uuids:
            if uuid not in self.service_uuids:
                self.service_uuids.append(uuid)
        self.manufacturer_data.update(other.manufacturer_data)
        self.service_data.update(other.service_data)
        self.last_seen = other.last_seen

    def snapshot(self) -> "DiscoveredDevice":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Host-facing dictionary: primitives and byte buffers only."""
        return {
            "name": self.name,
            "address": self.address,
            "rssi": self.rssi,
            "services": list(self.service_uuids),
            "manufacturer_data": dict(self.manufacturer_data),
            "service_data": dict(self.service_data),
            "tx_power_level": self.tx_power,
            "last_seen": self.last_seen,
        }
