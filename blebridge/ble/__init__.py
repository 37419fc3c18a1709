"""BLE concurrency core: runtime, adapter, registry, connections and event bridge."""

from blebridge.ble.constants import (
    BLEAK_VERSION,
    BLEConfig,
    is_debug_mode,
    logger,
    set_debug_mode,
)
from blebridge.ble.errors import (
    AdapterError,
    BLEConnectionError,
    BLEError,
    BLEErrorHandler,
    FailureReason,
    NotConnectedError,
    RuntimeInitError,
    TransportOperationError,
    UnsupportedOperationError,
)
from blebridge.ble.events import (
    AdapterErrorOccurred,
    AdapterInitialized,
    CharacteristicRead,
    CharacteristicWritten,
    ConnectionChanged,
    ConnectionFailed,
    ConnectionStarted,
    DeviceFound,
    DeviceUpdated,
    Disconnected,
    EventBridge,
    EventKind,
    EventRecord,
    NotificationData,
    OperationFailed,
    ScanEnded,
    ScanStarted,
    ServicesReady,
    SubscriptionChanged,
)
from blebridge.ble.state import (
    AdapterState,
    AdapterStateManager,
    ConnectionState,
    ConnectionStateManager,
)
from blebridge.ble.gatt import Characteristic, CharacteristicProperties, GattTopology, Service
from blebridge.ble.discovery import DiscoveredDevice
from blebridge.ble.transport import BLETransport
from blebridge.ble.runtime import RuntimeManager
from blebridge.ble.registry import DeviceRegistry
from blebridge.ble.serializer import OperationKind, OperationSerializer, PendingOperation
from blebridge.ble.connection import DeviceConnection
from blebridge.ble.adapter import AdapterController
from blebridge.ble.context import BLEContext
from blebridge.ble.client import BleakTransport, device_from_advertisement
from blebridge.ble.utils import InvalidUUIDError, _sleep, normalize_uuid, sanitize_address

__all__ = [
    # Core classes
    "BLEConfig",
    "BLEContext",
    "RuntimeManager",
    "AdapterController",
    "DeviceRegistry",
    "DeviceConnection",
    "OperationSerializer",
    "OperationKind",
    "PendingOperation",
    "EventBridge",
    "BLETransport",
    "BleakTransport",
    "AdapterState",
    "ConnectionState",
    "AdapterStateManager",
    "ConnectionStateManager",
    "DiscoveredDevice",
    "GattTopology",
    "Service",
    "Characteristic",
    "CharacteristicProperties",
    # Errors
    "BLEError",
    "BLEErrorHandler",
    "FailureReason",
    "RuntimeInitError",
    "AdapterError",
    "BLEConnectionError",
    "UnsupportedOperationError",
    "TransportOperationError",
    "NotConnectedError",
    "InvalidUUIDError",
    # Event records
    "EventKind",
    "EventRecord",
    "AdapterInitialized",
    "AdapterErrorOccurred",
    "ScanStarted",
    "ScanEnded",
    "DeviceFound",
    "DeviceUpdated",
    "ConnectionStarted",
    "ConnectionChanged",
    "ConnectionFailed",
    "Disconnected",
    "ServicesReady",
    "CharacteristicRead",
    "CharacteristicWritten",
    "SubscriptionChanged",
    "NotificationData",
    "OperationFailed",
    # Constants/helpers
    "BLEAK_VERSION",
    "device_from_advertisement",
    "normalize_uuid",
    "sanitize_address",
    "set_debug_mode",
    "is_debug_mode",
    "_sleep",
    "logger",
]
