"""Boundary between the bridge core and the platform Bluetooth stack."""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from blebridge.ble.discovery import DiscoveredDevice
from blebridge.ble.gatt import GattTopology

__all__ = [
    "AdvertisementCallback",
    "DisconnectCallback",
    "NotificationCallback",
    "BLETransport",
]

AdvertisementCallback = Callable[[DiscoveredDevice], None]
DisconnectCallback = Callable[[str], None]
NotificationCallback = Callable[[str, bytes], None]


class BLETransport(ABC):
    """
    Opaque capability set of the platform BLE stack.

    Every method is a coroutine executed on the bridge runtime loop. Failures
    are reported by raising the bridge's own error taxonomy: `AdapterError`
    for adapter/scan problems, `BLEConnectionError` for link failures,
    `UnsupportedOperationError` for attributes the peer does not expose and
    `TransportOperationError` for GATT requests that failed on the wire.
    Timeouts are the transport's responsibility and are raised as those
    errors as well.

    Callbacks handed to the transport may be invoked from the runtime loop
    thread at any time until the matching stop/unsubscribe/disconnect call
    returns.
    """

    @abstractmethod
    async def enumerate_adapters(self) -> List[Dict[str, Optional[str]]]:
        """Return ``[{"name": ..., "address": ...}]`` for usable adapters; raise AdapterError if none."""

    @abstractmethod
    async def start_scan(self, on_advertisement: AdvertisementCallback) -> None:
        """Begin discovery; `on_advertisement` receives one record per advertisement."""

    @abstractmethod
    async def stop_scan(self) -> None:
        """End discovery. Must be safe to call when no scan is active."""

    @abstractmethod
    async def connect(self, address: str, on_disconnect: DisconnectCallback) -> None:
        """Open a link to `address`; `on_disconnect(address)` fires on any later link loss."""

    @abstractmethod
    async def disconnect(self, address: str) -> None:
        """Close the link to `address`. Must be safe to call for unknown addresses."""

    @abstractmethod
    async def discover_services(self, address: str) -> GattTopology:
        """Return the complete GATT topology of a connected peripheral."""

    @abstractmethod
    async def read(self, address: str, service_uuid: str, char_uuid: str) -> bytes:
        """Read a characteristic value."""

    @abstractmethod
    async def write(
        self,
        address: str,
        service_uuid: str,
        char_uuid: str,
        data: bytes,
        with_response: bool,
    ) -> None:
        """Write a characteristic; with `with_response` wait for the peer acknowledgement."""

    @abstractmethod
    async def subscribe(
        self,
        address: str,
        service_uuid: str,
        char_uuid: str,
        on_notification: NotificationCallback,
    ) -> None:
        """Enable notifications/indications; `on_notification(char_uuid, data)` receives each push."""

    @abstractmethod
    async def unsubscribe(self, address: str, service_uuid: str, char_uuid: str) -> None:
        """Disable notifications for a characteristic."""

    async def close(self) -> None:
        """Release backend resources. Called once at runtime shutdown."""
