"""Platform transport backed by the bleak library."""

import asyncio
import sys
import time
from typing import Any, Dict, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from blebridge.ble.constants import (
    BLEAK_VERSION,
    BLEConfig,
    ERROR_ADAPTER_NOT_FOUND,
    ERROR_CHARACTERISTIC_NOT_FOUND,
    ERROR_NOT_CONNECTED,
    ERROR_SERVICE_NOT_FOUND,
    ERROR_TIMEOUT,
    NULL_ADDRESS,
    logger,
)
from blebridge.ble.discovery import DiscoveredDevice
from blebridge.ble.errors import (
    AdapterError,
    BLEConnectionError,
    NotConnectedError,
    TransportOperationError,
    UnsupportedOperationError,
)
from blebridge.ble.gatt import GattTopology
from blebridge.ble.transport import (
    AdvertisementCallback,
    BLETransport,
    DisconnectCallback,
    NotificationCallback,
)
from blebridge.ble.utils import sanitize_address

__all__ = ["BleakTransport", "device_from_advertisement"]


async def _with_timeout(awaitable, timeout: Optional[float], label: str):
    """
    Await an awaitable, applying an optional timeout.

    Raises:
        asyncio.TimeoutError: If the awaitable does not complete before `timeout` elapses; the message names `label`.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise asyncio.TimeoutError(ERROR_TIMEOUT.format(label, timeout)) from exc


def device_from_advertisement(
    device: BLEDevice, adv: Optional[AdvertisementData]
) -> Optional[DiscoveredDevice]:
    """
    Convert a bleak detection callback pair into a DiscoveredDevice.

    Returns None for peripherals without a usable identity.
    """
    address = getattr(device, "address", None)
    if not address or address.upper() == NULL_ADDRESS:
        return None
    name = getattr(adv, "local_name", None) or getattr(device, "name", None)
    rssi = getattr(adv, "rssi", None)
    return DiscoveredDevice(
        address=address,
        name=name,
        rssi=rssi,
        last_seen=time.monotonic(),
        service_uuids=list(getattr(adv, "service_uuids", None) or []),
        manufacturer_data={
            int(company): bytes(data)
            for company, data in (getattr(adv, "manufacturer_data", None) or {}).items()
        },
        service_data={
            str(uuid): bytes(data)
            for uuid, data in (getattr(adv, "service_data", None) or {}).items()
        },
        tx_power=getattr(adv, "tx_power", None),
    )


class BleakTransport(BLETransport):
    """
    BLETransport implementation using bleak's BleakScanner and BleakClient.

    One BleakClient is kept per connected address. Devices seen during a scan
    are remembered so `connect()` can hand bleak the BLEDevice object instead
    of forcing a second scan for the bare address.
    """

    def __init__(
        self,
        *,
        adapter: Optional[str] = None,
        connection_timeout: float = BLEConfig.CONNECTION_TIMEOUT,
        io_timeout: Optional[float] = BLEConfig.GATT_IO_TIMEOUT,
        disconnect_timeout: float = BLEConfig.DISCONNECT_TIMEOUT_SECONDS,
    ) -> None:
        """
        Parameters:
            adapter (Optional[str]): Backend adapter name (e.g. "hci1" on BlueZ); None uses the system default.
            connection_timeout (float): Seconds allowed for a connection attempt.
            io_timeout (Optional[float]): Seconds allowed for each GATT request; None waits indefinitely.
            disconnect_timeout (float): Seconds allowed for a requested disconnect.
        """
        self.adapter = adapter
        self.connection_timeout = connection_timeout
        self.io_timeout = io_timeout
        self.disconnect_timeout = disconnect_timeout
        self._scanner: Optional[BleakScanner] = None
        self._clients: Dict[str, BleakClient] = {}
        self._seen: Dict[str, BLEDevice] = {}

    def _backend_kwargs(self) -> Dict[str, Any]:
        return {"adapter": self.adapter} if self.adapter else {}

    async def enumerate_adapters(self) -> List[Dict[str, Optional[str]]]:
        if sys.platform.startswith("linux"):
            adapters = await self._enumerate_bluez_adapters()
        else:
            # No adapter listing outside BlueZ; constructing a scanner validates the backend.
            try:
                BleakScanner(**self._backend_kwargs())
            except (BleakError, OSError, RuntimeError) as exc:
                raise AdapterError(str(exc) or ERROR_ADAPTER_NOT_FOUND) from exc
            adapters = [{"name": "System Bluetooth Adapter", "address": None}]
        if not adapters:
            raise AdapterError(ERROR_ADAPTER_NOT_FOUND, error_code="ADAPTER_NOT_FOUND")
        logger.debug("bleak %s adapters: %s", BLEAK_VERSION, adapters)
        return adapters

    async def _enumerate_bluez_adapters(self) -> List[Dict[str, Optional[str]]]:
        try:
            from bleak.backends.bluezdbus import defs as bluez_defs
            from bleak.backends.bluezdbus.manager import get_global_bluez_manager
        except ImportError as exc:
            raise AdapterError(f"BlueZ backend unavailable: {exc}") from exc

        try:
            manager = await get_global_bluez_manager()
        except (BleakError, OSError, RuntimeError) as exc:
            raise AdapterError(f"Unable to reach BlueZ: {exc}") from exc

        adapters: List[Dict[str, Optional[str]]] = []
        properties = getattr(manager, "_properties", {}) or {}
        for path, interfaces in properties.items():
            adapter_props = interfaces.get(bluez_defs.ADAPTER_INTERFACE)
            if not adapter_props:
                continue
            name = path.rsplit("/", 1)[-1]
            if self.adapter and name != self.adapter:
                continue
            if not adapter_props.get("Powered", True):
                logger.warning("Bluetooth adapter %s is powered off", name)
                continue
            adapters.append({"name": name, "address": adapter_props.get("Address")})
        return adapters

    async def start_scan(self, on_advertisement: AdvertisementCallback) -> None:
        def _on_detection(device: BLEDevice, adv: AdvertisementData) -> None:
            record = device_from_advertisement(device, adv)
            if record is None:
                return
            key = sanitize_address(record.address)
            if key:
                self._seen[key] = device
            on_advertisement(record)

        await self.stop_scan()
        scanner = BleakScanner(detection_callback=_on_detection, **self._backend_kwargs())
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise AdapterError(f"Scan failed: {exc}", error_code="SCAN_FAILED") from exc
        self._scanner = scanner

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except (BleakError, OSError) as exc:
            raise AdapterError(
                f"Failed to stop scan: {exc}", error_code="SCAN_FAILED"
            ) from exc

    async def connect(self, address: str, on_disconnect: DisconnectCallback) -> None:
        key = sanitize_address(address)
        target: Any = self._seen.get(key, address) if key else address
        client = BleakClient(
            target,
            disconnected_callback=lambda _client: on_disconnect(address),
            timeout=self.connection_timeout,
            **self._backend_kwargs(),
        )
        try:
            await _with_timeout(client.connect(), self.connection_timeout, "Connection")
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            raise BLEConnectionError(f"Connection failed: {exc}") from exc
        if key:
            self._clients[key] = client

    async def disconnect(self, address: str) -> None:
        client = self._clients.pop(sanitize_address(address) or "", None)
        if client is None:
            return
        try:
            await _with_timeout(client.disconnect(), self.disconnect_timeout, "Disconnect")
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            logger.debug("Error disconnecting %s: %s", address, exc)

    def _client(self, address: str) -> BleakClient:
        client = self._clients.get(sanitize_address(address) or "")
        if client is None or not client.is_connected:
            raise NotConnectedError(ERROR_NOT_CONNECTED)
        return client

    def _characteristic(self, client: BleakClient, service_uuid: str, char_uuid: str):
        service = client.services.get_service(service_uuid)
        if service is None:
            raise UnsupportedOperationError(ERROR_SERVICE_NOT_FOUND.format(service_uuid))
        characteristic = service.get_characteristic(char_uuid)
        if characteristic is None:
            raise UnsupportedOperationError(ERROR_CHARACTERISTIC_NOT_FOUND.format(char_uuid))
        return characteristic

    async def discover_services(self, address: str) -> GattTopology:
        client = self._client(address)
        try:
            services = client.services
        except BleakError as exc:
            raise TransportOperationError(f"Service discovery failed: {exc}") from exc
        return GattTopology.build(
            (
                service.uuid,
                [(char.uuid, char.properties) for char in service.characteristics],
            )
            for service in services
        )

    async def read(self, address: str, service_uuid: str, char_uuid: str) -> bytes:
        client = self._client(address)
        characteristic = self._characteristic(client, service_uuid, char_uuid)
        try:
            data = await _with_timeout(
                client.read_gatt_char(characteristic), self.io_timeout, "Characteristic read"
            )
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            raise TransportOperationError(f"Characteristic read failed: {exc}") from exc
        return bytes(data)

    async def write(
        self,
        address: str,
        service_uuid: str,
        char_uuid: str,
        data: bytes,
        with_response: bool,
    ) -> None:
        client = self._client(address)
        characteristic = self._characteristic(client, service_uuid, char_uuid)
        try:
            await _with_timeout(
                client.write_gatt_char(characteristic, data, response=with_response),
                self.io_timeout,
                "Characteristic write",
            )
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            raise TransportOperationError(f"Characteristic write failed: {exc}") from exc

    async def subscribe(
        self,
        address: str,
        service_uuid: str,
        char_uuid: str,
        on_notification: NotificationCallback,
    ) -> None:
        client = self._client(address)
        characteristic = self._characteristic(client, service_uuid, char_uuid)

        def _on_notify(_sender, data: bytearray) -> None:
            on_notification(char_uuid, bytes(data))

        try:
            await _with_timeout(
                client.start_notify(characteristic, _on_notify),
                self.io_timeout,
                "Subscription",
            )
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            raise TransportOperationError(
                f"Subscription to notifications failed: {exc}"
            ) from exc

    async def unsubscribe(self, address: str, service_uuid: str, char_uuid: str) -> None:
        client = self._client(address)
        characteristic = self._characteristic(client, service_uuid, char_uuid)
        try:
            await _with_timeout(
                client.stop_notify(characteristic), self.io_timeout, "Unsubscribe"
            )
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            raise TransportOperationError(f"Unsubscribe failed: {exc}") from exc

    async def close(self) -> None:
        try:
            await self.stop_scan()
        except AdapterError as exc:
            logger.debug("Error stopping scan during close: %s", exc)
        for address in list(self._clients):
            await self.disconnect(address)
        self._seen.clear()
