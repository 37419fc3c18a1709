"""Address-keyed table of discovered devices and live connections."""

from threading import RLock
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from blebridge.ble.constants import logger
from blebridge.ble.discovery import DiscoveredDevice
from blebridge.ble.utils import sanitize_address

if TYPE_CHECKING:
    from blebridge.ble.connection import DeviceConnection

__all__ = ["DeviceRegistry"]


class DeviceRegistry:
    """
    Owns every DiscoveredDevice and DeviceConnection, keyed by sanitized address.

    All mutations happen under one reentrant lock. The registry never calls
    into a connection while holding it, so connections may call back into
    the registry from their own critical sections.
    """

    def __init__(self):
        self._lock = RLock()
        self._devices: Dict[str, DiscoveredDevice] = {}
        self._connections: Dict[str, "DeviceConnection"] = {}

    @property
    def lock(self) -> RLock:
        return self._lock

    # Discovered devices

    def record_advertisement(
        self, device: DiscoveredDevice
    ) -> Optional[Tuple[DiscoveredDevice, bool]]:
        """
        Insert or update the record for an advertising peripheral.

        Returns:
            Optional[Tuple[DiscoveredDevice, bool]]: A snapshot of the stored record and True if the address was seen for the first time, or None if the advertisement has no usable address.
        """
        key = device.key
        if key is None:
            return None
        with self._lock:
            existing = self._devices.get(key)
            if existing is None:
                stored = device.snapshot()
                self._devices[key] = stored
                return stored.snapshot(), True
            existing.update_from(device)
            return existing.snapshot(), False

    def get_device(self, address: str) -> Optional[DiscoveredDevice]:
        key = sanitize_address(address)
        with self._lock:
            device = self._devices.get(key) if key else None
            return device.snapshot() if device is not None else None

    def devices(self) -> List[DiscoveredDevice]:
        """Snapshots of every discovered device."""
        with self._lock:
            return [device.snapshot() for device in self._devices.values()]

    def device_count(self) -> int:
        with self._lock:
            return len(self._devices)

    def clear_devices(self) -> int:
        with self._lock:
            count = len(self._devices)
            self._devices.clear()
        if count:
            logger.debug("Cleared %d discovered device(s)", count)
        return count

    # Connections

    def get_connection(self, address: str) -> Optional["DeviceConnection"]:
        key = sanitize_address(address)
        with self._lock:
            return self._connections.get(key) if key else None

    def get_or_create_connection(
        self, address: str, factory: Callable[[str], "DeviceConnection"]
    ) -> Tuple["DeviceConnection", bool]:
        """
        Return the live connection for `address`, creating one with `factory` if none exists.

        A connection that already emitted its terminal record is replaced.

        Returns:
            Tuple[DeviceConnection, bool]: The connection and whether it was newly created.

        Raises:
            ValueError: If `address` is empty.
        """
        key = sanitize_address(address)
        if key is None:
            raise ValueError("Device address must not be empty")
        with self._lock:
            existing = self._connections.get(key)
            if existing is not None and not existing.terminated:
                return existing, False
            connection = factory(address)
            self._connections[key] = connection
            return connection, True

    def remove_connection(self, connection: "DeviceConnection") -> bool:
        """Remove `connection` if it is still the registered instance for its address."""
        key = sanitize_address(connection.address)
        with self._lock:
            if key is None or self._connections.get(key) is not connection:
                return False
            del self._connections[key]
        logger.debug("Removed connection %s from registry", connection.address)
        return True

    def connections(self) -> List["DeviceConnection"]:
        with self._lock:
            return list(self._connections.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
