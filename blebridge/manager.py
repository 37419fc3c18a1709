"""Host-facing Bluetooth adapter manager."""

import time
import traceback
from typing import Callable, Dict, List, Optional

from blebridge.ble import (
    BLEConfig,
    BLEContext,
    BLETransport,
    BleakTransport,
    EventKind,
    EventRecord,
    FailureReason,
    OperationFailed,
    _sleep,
    is_debug_mode,
    logger,
    sanitize_address,
    set_debug_mode,
)
from blebridge.ble.constants import ERROR_ADAPTER_NOT_READY, ERROR_NOT_CONNECTED
from blebridge.ble.events import AdapterErrorOccurred
from blebridge.device import BleDevice
from blebridge.signals import SignalEmitter, publish

__all__ = ["BluetoothManager"]


class BluetoothManager(SignalEmitter):
    """
    Adapter Manager exposed to the host application.

    Every method returns immediately. Results of asynchronous work are queued
    by the runtime and delivered as signals (and pubsub messages) only when
    the host calls `process()` from its own loop, typically once per frame::

        manager = BluetoothManager()
        manager.on("device_discovered", lambda info: print(info["address"]))
        manager.initialize()
        while running:
            manager.process()

    Device handles returned by `connect_device()` are keyed by address and
    remain valid across reconnects.
    """

    SIGNALS = (
        "adapter_initialized",
        "scan_started",
        "scan_stopped",
        "device_discovered",
        "device_updated",
        "device_connecting",
        "device_connected",
        "device_disconnected",
        "error_occurred",
    )

    def __init__(self, transport: Optional[BLETransport] = None, *, debug: bool = False):
        """
        Parameters:
            transport (Optional[BLETransport]): Platform transport; defaults to BleakTransport on the system adapter.
            debug (bool): Enable verbose BLE logging for the process.
        """
        super().__init__()
        if debug:
            set_debug_mode(True)
        self._context = BLEContext(transport if transport is not None else BleakTransport())
        self._handles: Dict[str, BleDevice] = {}
        self._dispatchers: Dict[EventKind, Callable[[EventRecord], None]] = {
            EventKind.ADAPTER_INITIALIZED: self._on_adapter_initialized,
            EventKind.ADAPTER_ERROR: self._on_adapter_error,
            EventKind.SCAN_STARTED: self._on_scan_started,
            EventKind.SCAN_ENDED: self._on_scan_ended,
            EventKind.DEVICE_FOUND: self._on_device_found,
            EventKind.DEVICE_UPDATED: self._on_device_updated,
            EventKind.CONNECTION_STARTED: self._on_connection_started,
            EventKind.CONNECTION_CHANGED: self._on_connection_changed,
            EventKind.CONNECTION_FAILED: self._on_connection_failed,
            EventKind.DISCONNECTED: self._on_disconnected,
            EventKind.SERVICES_READY: self._on_services_ready,
            EventKind.CHARACTERISTIC_READ: self._on_characteristic_read,
            EventKind.CHARACTERISTIC_WRITTEN: self._on_characteristic_written,
            EventKind.SUBSCRIPTION_CHANGED: self._on_subscription_changed,
            EventKind.NOTIFICATION_DATA: self._on_notification,
            EventKind.OPERATION_FAILED: self._on_operation_failed,
        }

    def __repr__(self) -> str:
        return (
            f"BluetoothManager(state={self._context.adapter.state.value}, "
            f"devices={self._context.registry.device_count()}, "
            f"connections={len(self._context.registry)})"
        )

    @property
    def context(self) -> BLEContext:
        return self._context

    # Adapter

    def initialize(self) -> bool:
        """Start adapter initialization; the outcome arrives as `adapter_initialized(success, error)`."""
        return self._context.adapter.initialize()

    def is_initialized(self) -> bool:
        return self._context.adapter.is_ready

    def get_adapter_info(self) -> Dict[str, Optional[str]]:
        return self._context.adapter.info

    def set_debug_mode(self, enabled: bool) -> None:
        set_debug_mode(enabled)

    def is_debug_mode(self) -> bool:
        return is_debug_mode()

    # Scanning

    def start_scan(self, timeout_seconds: float = BLEConfig.DEFAULT_SCAN_TIMEOUT) -> bool:
        """
        Begin discovering peripherals.

        Parameters:
            timeout_seconds (float): Scan duration; 0 or less scans until `stop_scan()`.

        Returns:
            bool: True if a new scan session was started.
        """
        return self._context.adapter.start_scan(timeout_seconds)

    def stop_scan(self) -> bool:
        return self._context.adapter.stop_scan()

    def is_scanning(self) -> bool:
        return self._context.adapter.is_scanning

    def get_discovered_devices(self) -> List[Dict]:
        """Dictionaries for every device seen by the current or last scan."""
        return [device.to_dict() for device in self._context.registry.devices()]

    # Devices

    def connect_device(self, address: str) -> Optional[BleDevice]:
        """
        Return the handle for `address` and start connecting if no connection is live.

        The handle is returned before the connection attempt can complete, so
        callbacks attached to it observe every outcome.

        Returns:
            Optional[BleDevice]: The device handle, or None if the adapter is not ready.
        """
        if not self.is_initialized():
            self._report_adapter_not_ready("connect")
            return None
        handle = self._handle(address)
        self._context.connect(address)
        return handle

    def disconnect_device(self, address: str) -> bool:
        connection = self._context.get_connection(address)
        if connection is None:
            logger.debug("disconnect_device: no connection for %s", address)
            return False
        return connection.disconnect()

    def get_device(self, address: str) -> Optional[BleDevice]:
        """Handle for a device that was discovered or connected, else None."""
        key = sanitize_address(address)
        if key is None:
            return None
        if key in self._handles:
            return self._handles[key]
        if (
            self._context.registry.get_device(address) is None
            and self._context.get_connection(address) is None
        ):
            return None
        return self._handle(address)

    def get_connected_devices(self) -> List[BleDevice]:
        return [
            self._handle(connection.address)
            for connection in self._context.registry.connections()
            if connection.is_connected
        ]

    def _handle(self, address: str) -> BleDevice:
        key = sanitize_address(address)
        if key is None:
            raise ValueError("Device address must not be empty")
        handle = self._handles.get(key)
        if handle is None:
            handle = BleDevice(self, address)
            self._handles[key] = handle
        return handle

    def _connect(self, address: str) -> bool:
        if not self.is_initialized():
            self._report_adapter_not_ready("connect")
            return False
        _connection, created = self._context.connect(address)
        return created

    def _report_adapter_not_ready(self, action: str) -> None:
        logger.warning("Cannot %s: %s", action, ERROR_ADAPTER_NOT_READY)
        self._context.bridge.push(
            AdapterErrorOccurred(ERROR_ADAPTER_NOT_READY, "ADAPTER_NOT_READY")
        )

    def _report_not_connected(self, address: str, operation: str, char_uuid: str = "") -> None:
        self._context.bridge.push(
            OperationFailed(
                address=address,
                operation=operation,
                reason=FailureReason.NOT_CONNECTED,
                error=ERROR_NOT_CONNECTED,
                char_uuid=char_uuid,
            )
        )

    # Host drain step

    def process(self) -> int:
        """
        Deliver every queued event as signals and pubsub messages.

        Must be called from the host thread. Never blocks; returns at once
        when nothing is queued. Events queued by callbacks during this call
        are delivered on the next call.

        Returns:
            int: Number of events dispatched.
        """
        records = self._context.bridge.drain()
        for record in records:
            dispatcher = self._dispatchers.get(record.kind)
            if dispatcher is None:
                logger.warning("No dispatcher for %s", record.kind)
                continue
            dispatcher(record)
        return len(records)

    poll = process

    def _device_for(self, record: EventRecord) -> Optional[BleDevice]:
        key = sanitize_address(record.address)
        return self._handles.get(key) if key else None

    def _on_adapter_initialized(self, record) -> None:
        self.emit("adapter_initialized", record.success, record.error)
        publish(
            "blebridge.adapter.initialized",
            self,
            success=record.success,
            error=record.error,
        )

    def _on_adapter_error(self, record) -> None:
        self.emit("error_occurred", record.message)
        publish("blebridge.error", self, message=record.message)

    def _on_scan_started(self, record) -> None:
        self.emit("scan_started")
        publish("blebridge.scan.started", self, timeout=record.timeout)

    def _on_scan_ended(self, record) -> None:
        info = {
            "was_scanning": record.was_scanning,
            "reason": record.reason,
            "device_count": record.device_count,
        }
        if record.error:
            info["error"] = record.error
        self.emit("scan_stopped", info)
        publish("blebridge.scan.ended", self, info=info)

    def _on_device_found(self, record) -> None:
        info = record.device.to_dict()
        self.emit("device_discovered", info)
        publish("blebridge.device.discovered", self, device=info)

    def _on_device_updated(self, record) -> None:
        info = record.device.to_dict()
        self.emit("device_updated", info)
        publish("blebridge.device.updated", self, device=info)

    def _on_connection_started(self, record) -> None:
        self.emit("device_connecting", record.address)
        publish("blebridge.connection.started", self, address=record.address)

    def _on_connection_changed(self, record) -> None:
        if not record.connected:
            logger.debug("Ignoring connection change without link for %s", record.address)
            return
        device = self._device_for(record)
        if device is not None:
            device.emit("connected")
        self.emit("device_connected", record.address)
        publish("blebridge.connection.established", self, address=record.address)

    def _on_connection_failed(self, record) -> None:
        device = self._device_for(record)
        if device is not None:
            device.emit("connection_failed", record.reason)
        publish(
            "blebridge.connection.failed", self, address=record.address, error=record.reason
        )

    def _on_disconnected(self, record) -> None:
        device = self._device_for(record)
        if device is not None:
            device.emit("disconnected", record.reason)
        self.emit("device_disconnected", record.address)
        publish(
            "blebridge.connection.lost", self, address=record.address, reason=record.reason
        )

    def _on_services_ready(self, record) -> None:
        services = record.topology.to_list()
        device = self._device_for(record)
        if device is not None:
            device.emit("services_discovered", services)
        publish(
            "blebridge.services.discovered", self, address=record.address, services=services
        )

    def _on_characteristic_read(self, record) -> None:
        device = self._device_for(record)
        if device is not None:
            device.emit("characteristic_read", record.char_uuid, record.data)
        publish(
            "blebridge.characteristic.read",
            self,
            address=record.address,
            char_uuid=record.char_uuid,
            data=record.data,
        )

    def _on_characteristic_written(self, record) -> None:
        device = self._device_for(record)
        if device is not None:
            device.emit("characteristic_written", record.char_uuid)
        publish(
            "blebridge.characteristic.written",
            self,
            address=record.address,
            char_uuid=record.char_uuid,
        )

    def _on_subscription_changed(self, record) -> None:
        device = self._device_for(record)
        if device is not None:
            signal = (
                "characteristic_subscribed" if record.subscribed else "characteristic_unsubscribed"
            )
            device.emit(signal, record.char_uuid)
        publish(
            "blebridge.characteristic.subscription",
            self,
            address=record.address,
            char_uuid=record.char_uuid,
            subscribed=record.subscribed,
            changed=record.changed,
        )

    def _on_notification(self, record) -> None:
        device = self._device_for(record)
        if device is not None:
            device.emit("characteristic_notified", record.char_uuid, record.data)
        publish(
            "blebridge.characteristic.notified",
            self,
            address=record.address,
            char_uuid=record.char_uuid,
            data=record.data,
        )

    def _on_operation_failed(self, record) -> None:
        device = self._device_for(record)
        if device is not None:
            device.emit("operation_failed", record.operation, record.error)
        publish(
            "blebridge.operation.failed",
            self,
            address=record.address,
            operation=record.operation,
            reason=record.reason.value,
            error=record.error,
        )

    # Teardown

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop scanning, disconnect every device, deliver the final events and stop the runtime.

        Unlike the rest of the API this call blocks, for at most `timeout`
        seconds, while connections tear down. Safe to call more than once.
        """
        if self._context.closed:
            return
        if timeout is None:
            timeout = BLEConfig.SHUTDOWN_TIMEOUT
        if self.is_scanning():
            self.stop_scan()
        for connection in self._context.registry.connections():
            connection.disconnect()

        deadline = time.monotonic() + timeout
        while self.is_scanning() or len(self._context.registry):
            self.process()
            if time.monotonic() >= deadline:
                logger.warning("Timed out waiting for BLE teardown")
                break
            _sleep(BLEConfig.HOST_POLL_INTERVAL)
        self.process()
        self._context.close(timeout)
        # Terminal records from teardowns cut short by the timeout
        self.process()
        logger.info("Bluetooth manager shut down")

    close = shutdown

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, trace):
        if exc_type is not None and exc_value is not None:
            logger.error(
                "An exception of type %s with value %s has occurred", exc_type, exc_value
            )
        if trace is not None:
            logger.error("Traceback:\n%s", "".join(traceback.format_tb(trace)))
        self.shutdown()
