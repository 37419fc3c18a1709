"""Immutable GATT topology snapshots produced by service discovery."""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from blebridge.ble.utils import normalize_uuid

__all__ = [
    "CharacteristicProperties",
    "Characteristic",
    "Service",
    "GattTopology",
]


@dataclass(frozen=True)
class CharacteristicProperties:
    """Capability bits of a characteristic."""

    read: bool = False
    write: bool = False
    write_without_response: bool = False
    notify: bool = False
    indicate: bool = False

    @classmethod
    def from_flags(cls, flags: Iterable[str]) -> "CharacteristicProperties":
        """
        Build properties from backend property names.

        Accepts the GATT property strings reported by the platform stack
        ("read", "write", "write-without-response", "notify", "indicate");
        unknown flags such as "broadcast" are ignored.
        """
        normalized = {str(flag).strip().lower().replace("_", "-") for flag in flags}
        return cls(
            read="read" in normalized,
            write="write" in normalized,
            write_without_response="write-without-response" in normalized,
            notify="notify" in normalized,
            indicate="indicate" in normalized,
        )

    @property
    def can_subscribe(self) -> bool:
        return self.notify or self.indicate

    def to_dict(self) -> Dict[str, bool]:
        return {
            "read": self.read,
            "write": self.write,
            "write_without_response": self.write_without_response,
            "notify": self.notify,
            "indicate": self.indicate,
        }


@dataclass(frozen=True)
class Characteristic:
    uuid: str
    properties: CharacteristicProperties

    def to_dict(self) -> Dict[str, Any]:
        return {"uuid": self.uuid, "properties": self.properties.to_dict()}


@dataclass(frozen=True)
class Service:
    uuid: str
    characteristics: Tuple[Characteristic, ...] = ()

    def get_characteristic(self, char_uuid: str) -> Optional[Characteristic]:
        for characteristic in self.characteristics:
            if characteristic.uuid == char_uuid:
                return characteristic
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uuid": self.uuid,
            "characteristics": [c.to_dict() for c in self.characteristics],
        }


@dataclass(frozen=True)
class GattTopology:
    """
    Ordered services of one peripheral as seen by the last discovery.

    Instances are never mutated: re-discovery publishes a new snapshot, so
    readers on any thread can use a reference without locking. UUIDs are
    stored in normalized 128-bit lowercase form.
    """

    services: Tuple[Service, ...] = ()

    @classmethod
    def build(
        cls, services: Iterable[Tuple[str, Iterable[Tuple[str, Iterable[str]]]]]
    ) -> "GattTopology":
        """
        Create a topology from ``(service_uuid, [(char_uuid, [flag, ...]), ...])`` tuples.
        """
        built: List[Service] = []
        for service_uuid, characteristics in services:
            built.append(
                Service(
                    uuid=normalize_uuid(service_uuid),
                    characteristics=tuple(
                        Characteristic(
                            uuid=normalize_uuid(char_uuid),
                            properties=CharacteristicProperties.from_flags(flags),
                        )
                        for char_uuid, flags in characteristics
                    ),
                )
            )
        return cls(services=tuple(built))

    def get_service(self, service_uuid: str) -> Optional[Service]:
        """Look up a service by normalized UUID."""
        for service in self.services:
            if service.uuid == service_uuid:
                return service
        return None

    def find_characteristic(
        self, service_uuid: str, char_uuid: str
    ) -> Optional[Characteristic]:
        """Look up a characteristic by normalized service and characteristic UUIDs."""
        service = self.get_service(service_uuid)
        if service is None:
            return None
        return service.get_characteristic(char_uuid)

    def to_list(self) -> List[Dict[str, Any]]:
        """Host-facing representation: a list of plain service dictionaries."""
        return [service.to_dict() for service in self.services]

    def __len__(self) -> int:
        return len(self.services)
