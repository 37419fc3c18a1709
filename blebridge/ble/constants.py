"""BLE bridge constants and configuration."""

import importlib.metadata
import logging
from threading import Lock

logger = logging.getLogger("blebridge")

# Get bleak version using importlib.metadata (reliable method)
BLEAK_VERSION = importlib.metadata.version("bleak")

# Placeholder address some backends report for peripherals without a MAC
NULL_ADDRESS = "00:00:00:00:00:00"


class BLEConfig:
    """Configuration constants for BLE operations."""

    DEFAULT_SCAN_TIMEOUT = 10.0
    CONNECTION_TIMEOUT = 30.0
    GATT_IO_TIMEOUT = 10.0
    DISCONNECT_TIMEOUT_SECONDS = 5.0
    RUNTIME_THREAD_JOIN_TIMEOUT = 2.0
    SHUTDOWN_TIMEOUT = 5.0
    HOST_POLL_INTERVAL = 0.05  # seconds between drain steps while blocking in shutdown()


# Error message constants
ERROR_TIMEOUT = "{0} timed out after {1:.1f} seconds"
ERROR_ADAPTER_NOT_FOUND = (
    "Bluetooth adapter not found; ensure system Bluetooth is enabled"
)
ERROR_ADAPTER_NOT_READY = "Adapter not initialized"
ERROR_RUNTIME_UNAVAILABLE = "Unable to start BLE runtime: {0}"
ERROR_NOT_CONNECTED = "Device is not connected; connect the device first"
ERROR_DEVICE_DISCONNECTED = "Device disconnected before the operation completed"
ERROR_SERVICE_NOT_FOUND = "Service UUID not found: {0}"
ERROR_CHARACTERISTIC_NOT_FOUND = "Characteristic UUID not found: {0}"
ERROR_CAPABILITY_MISSING = "Characteristic {0} does not support {1}"
ERROR_INVALID_UUID = "Invalid UUID: {0}"
ERROR_SERVICES_NOT_DISCOVERED = "Services not discovered; call discover_services() first"

_debug_lock = Lock()
_debug_mode = False


def set_debug_mode(enabled: bool) -> None:
    """
    Enable or disable verbose BLE logging for the whole process.

    Parameters:
        enabled (bool): When True the package logger emits DEBUG records; when False only warnings and errors are emitted.
    """
    global _debug_mode
    with _debug_lock:
        _debug_mode = bool(enabled)
        logger.setLevel(logging.DEBUG if _debug_mode else logging.WARNING)
    logger.info("Debug mode %s", "enabled" if enabled else "disabled")


def is_debug_mode() -> bool:
    """Return True when verbose BLE logging is enabled."""
    with _debug_lock:
        return _debug_mode
