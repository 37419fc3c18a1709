"""Host-facing handle for one peripheral."""

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from blebridge.ble import ConnectionState, DeviceConnection, OperationKind, logger
from blebridge.signals import SignalEmitter

if TYPE_CHECKING:
    from blebridge.manager import BluetoothManager

__all__ = ["BleDevice"]

WriteData = Union[bytes, bytearray, memoryview, Iterable[int]]


class BleDevice(SignalEmitter):
    """
    Address-based handle for a peripheral.

    The handle holds no reference to connection internals: every call looks
    up the live connection for its address in the registry, so a handle
    outlives disconnects and can be used to reconnect. Operations issued
    while no connection is live fail with ``operation_failed`` on the next
    `BluetoothManager.process()`.
    """

    SIGNALS = (
        "connected",
        "connection_failed",
        "disconnected",
        "services_discovered",
        "characteristic_read",
        "characteristic_written",
        "characteristic_notified",
        "characteristic_subscribed",
        "characteristic_unsubscribed",
        "operation_failed",
    )

    def __init__(self, manager: "BluetoothManager", address: str):
        super().__init__()
        self._manager = manager
        self._address = address

    def __repr__(self) -> str:
        return f"BleDevice(address={self._address!r}, state={self.get_state()})"

    def _connection(self) -> Optional[DeviceConnection]:
        return self._manager.context.get_connection(self._address)

    def get_address(self) -> str:
        return self._address

    def get_name(self) -> str:
        """Advertised name from the last scan, or an empty string."""
        device = self._manager.context.registry.get_device(self._address)
        return (device.name or "") if device is not None else ""

    def get_state(self) -> str:
        connection = self._connection()
        if connection is None:
            return ConnectionState.DISCONNECTED.value
        return connection.state.value

    def is_connected(self) -> bool:
        connection = self._connection()
        return connection is not None and connection.is_connected

    def connect_async(self) -> bool:
        """
        Start connecting unless a connection is already live.

        While the previous link is still disconnecting, the new attempt is
        queued and starts once `disconnected` has been reported.

        Returns:
            bool: True if a new connection attempt was started or queued.
        """
        return self._manager._connect(self._address)

    def disconnect(self) -> bool:
        connection = self._connection()
        if connection is None:
            logger.debug("disconnect: %s is not connected", self._address)
            return False
        return connection.disconnect()

    def discover_services(self) -> bool:
        """Queue service discovery; the result arrives as `services_discovered(services)`."""
        connection = self._connection()
        if connection is None:
            return self._not_connected(OperationKind.DISCOVER_SERVICES)
        return connection.discover_services()

    def get_services(self) -> List[Dict[str, Any]]:
        """Services from the last completed discovery, as plain dictionaries."""
        connection = self._connection()
        topology = connection.topology if connection is not None else None
        return topology.to_list() if topology is not None else []

    def read_characteristic(self, service_uuid: str, char_uuid: str) -> bool:
        connection = self._connection()
        if connection is None:
            return self._not_connected(OperationKind.READ, char_uuid)
        return connection.read_characteristic(service_uuid, char_uuid)

    def write_characteristic(
        self,
        service_uuid: str,
        char_uuid: str,
        data: WriteData,
        with_response: bool = True,
    ) -> bool:
        """
        Queue a characteristic write.

        Parameters:
            service_uuid (str): Service containing the characteristic.
            char_uuid (str): Characteristic to write.
            data (WriteData): Payload bytes, or an iterable of ints in range 0-255.
            with_response (bool): Wait for the peripheral's acknowledgement before `characteristic_written` is emitted; False completes once the local stack accepted the write.

        Returns:
            bool: True if the write was queued.
        """
        connection = self._connection()
        if connection is None:
            return self._not_connected(OperationKind.WRITE, char_uuid)
        return connection.write_characteristic(
            service_uuid, char_uuid, bytes(data), with_response
        )

    def subscribe_characteristic(self, service_uuid: str, char_uuid: str) -> bool:
        connection = self._connection()
        if connection is None:
            return self._not_connected(OperationKind.SUBSCRIBE, char_uuid)
        return connection.subscribe_characteristic(service_uuid, char_uuid)

    def unsubscribe_characteristic(self, service_uuid: str, char_uuid: str) -> bool:
        connection = self._connection()
        if connection is None:
            return self._not_connected(OperationKind.UNSUBSCRIBE, char_uuid)
        return connection.unsubscribe_characteristic(service_uuid, char_uuid)

    def _not_connected(self, kind: OperationKind, char_uuid: str = "") -> bool:
        self._manager._report_not_connected(self._address, kind.value, char_uuid)
        return False
