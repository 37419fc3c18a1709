"""Event records and the ordered channel that carries them to the host thread."""

from collections import deque
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import TYPE_CHECKING, Deque, List, Optional

from blebridge.ble.errors import FailureReason

if TYPE_CHECKING:
    from blebridge.ble.discovery import DiscoveredDevice
    from blebridge.ble.gatt import GattTopology

__all__ = [
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
    "EventBridge",
]


class EventKind(Enum):
    """Tag identifying each event record variant."""

    ADAPTER_INITIALIZED = "adapter_initialized"
    ADAPTER_ERROR = "adapter_error"
    SCAN_STARTED = "scan_started"
    SCAN_ENDED = "scan_ended"
    DEVICE_FOUND = "device_found"
    DEVICE_UPDATED = "device_updated"
    CONNECTION_STARTED = "connection_started"
    CONNECTION_CHANGED = "connection_changed"
    CONNECTION_FAILED = "connection_failed"
    DISCONNECTED = "disconnected"
    SERVICES_READY = "services_ready"
    CHARACTERISTIC_READ = "characteristic_read"
    CHARACTERISTIC_WRITTEN = "characteristic_written"
    SUBSCRIPTION_CHANGED = "subscription_changed"
    NOTIFICATION_DATA = "notification_data"
    OPERATION_FAILED = "operation_failed"


class EventRecord:
    """
    Base class for immutable records produced by background work.

    Records that concern a single peripheral carry its `address`; adapter-wide
    records set it to None. `terminal` marks the last record of a
    connection's lifetime.
    """

    kind: EventKind
    address: Optional[str]
    terminal = False


@dataclass(frozen=True)
class AdapterInitialized(EventRecord):
    success: bool
    error: str = ""
    address = None
    kind = EventKind.ADAPTER_INITIALIZED


@dataclass(frozen=True)
class AdapterErrorOccurred(EventRecord):
    message: str
    error_code: str = ""
    address = None
    kind = EventKind.ADAPTER_ERROR


@dataclass(frozen=True)
class ScanStarted(EventRecord):
    timeout: float
    address = None
    kind = EventKind.SCAN_STARTED


@dataclass(frozen=True)
class ScanEnded(EventRecord):
    was_scanning: bool
    reason: str
    device_count: int = 0
    error: str = ""
    address = None
    kind = EventKind.SCAN_ENDED


@dataclass(frozen=True)
class DeviceFound(EventRecord):
    address: str
    device: "DiscoveredDevice"
    kind = EventKind.DEVICE_FOUND


@dataclass(frozen=True)
class DeviceUpdated(EventRecord):
    address: str
    device: "DiscoveredDevice"
    kind = EventKind.DEVICE_UPDATED


@dataclass(frozen=True)
class ConnectionStarted(EventRecord):
    address: str
    kind = EventKind.CONNECTION_STARTED


@dataclass(frozen=True)
class ConnectionChanged(EventRecord):
    address: str
    connected: bool
    kind = EventKind.CONNECTION_CHANGED


@dataclass(frozen=True)
class ConnectionFailed(EventRecord):
    address: str
    reason: str
    kind = EventKind.CONNECTION_FAILED
    terminal = True


@dataclass(frozen=True)
class Disconnected(EventRecord):
    address: str
    reason: str
    requested: bool = False
    kind = EventKind.DISCONNECTED
    terminal = True


@dataclass(frozen=True)
class ServicesReady(EventRecord):
    address: str
    topology: "GattTopology"
    kind = EventKind.SERVICES_READY


@dataclass(frozen=True)
class CharacteristicRead(EventRecord):
    address: str
    service_uuid: str
    char_uuid: str
    data: bytes
    kind = EventKind.CHARACTERISTIC_READ


@dataclass(frozen=True)
class CharacteristicWritten(EventRecord):
    address: str
    service_uuid: str
    char_uuid: str
    with_response: bool = True
    kind = EventKind.CHARACTERISTIC_WRITTEN


@dataclass(frozen=True)
class SubscriptionChanged(EventRecord):
    """Completion of a subscribe/unsubscribe request; `changed` is False for no-op toggles."""

    address: str
    service_uuid: str
    char_uuid: str
    subscribed: bool
    changed: bool = True
    kind = EventKind.SUBSCRIPTION_CHANGED


@dataclass(frozen=True)
class NotificationData(EventRecord):
    address: str
    char_uuid: str
    data: bytes
    kind = EventKind.NOTIFICATION_DATA


@dataclass(frozen=True)
class OperationFailed(EventRecord):
    address: str
    operation: str
    reason: FailureReason
    error: str
    char_uuid: str = ""
    kind = EventKind.OPERATION_FAILED


class EventBridge:
    """
    Single process-wide FIFO between background workers and the host thread.

    Workers call `push()` from any thread; the host calls `drain()` once per
    step. `drain()` never blocks waiting for records: it takes everything
    queued at that instant and returns it in arrival order. Records pushed
    while the host is dispatching a batch wait for the next drain.
    """

    def __init__(self) -> None:
        self._queue: Deque[EventRecord] = deque()
        self._lock = Lock()

    def push(self, record: EventRecord) -> None:
        with self._lock:
            self._queue.append(record)

    def drain(self) -> List[EventRecord]:
        with self._lock:
            records = list(self._queue)
            self._queue.clear()
        return records

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)
