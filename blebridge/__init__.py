"""
Non-blocking Bluetooth Low Energy bridge for single-threaded host loops.

The host creates a `BluetoothManager`, registers callbacks and calls
`process()` once per iteration of its own loop; all BLE I/O runs on a
background asyncio runtime and is reported back through those callbacks.
"""

from blebridge.ble import (
    BLEConfig,
    BLEConnectionError,
    BLEError,
    BLETransport,
    BleakTransport,
    AdapterError,
    FailureReason,
    RuntimeInitError,
    TransportOperationError,
    UnsupportedOperationError,
    is_debug_mode,
    set_debug_mode,
)
from blebridge.device import BleDevice
from blebridge.manager import BluetoothManager

__all__ = [
    "BluetoothManager",
    "BleDevice",
    "BLEConfig",
    "BLETransport",
    "BleakTransport",
    "BLEError",
    "RuntimeInitError",
    "AdapterError",
    "BLEConnectionError",
    "UnsupportedOperationError",
    "TransportOperationError",
    "FailureReason",
    "set_debug_mode",
    "is_debug_mode",
]
