"""
Shared pytest fixtures for BLE bridge tests.
"""

import asyncio
import functools
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest  # type: ignore[import-untyped]  # pylint: disable=E0401

from blebridge.ble.context import BLEContext
from blebridge.ble.discovery import DiscoveredDevice
from blebridge.ble.errors import AdapterError, BLEConnectionError, BLEError
from blebridge.ble.events import ConnectionChanged, EventRecord, ServicesReady
from blebridge.ble.gatt import GattTopology
from blebridge.ble.transport import BLETransport
from blebridge.ble.utils import normalize_uuid, sanitize_address
from blebridge.manager import BluetoothManager

ADDRESS = "AA:BB:CC:DD:EE:FF"
OTHER_ADDRESS = "11:22:33:44:55:66"

SERVICE = normalize_uuid("180d")
RW_CHAR = normalize_uuid("2a00")  # read + write
NOTIFY_CHAR = normalize_uuid("2a01")  # notify
WNR_CHAR = normalize_uuid("2a02")  # write-without-response only
READ_CHAR = normalize_uuid("2a03")  # read only
INDICATE_CHAR = normalize_uuid("2a04")  # indicate


def make_topology() -> GattTopology:
    """
    Build the GATT table used by most connection tests.

    Returns:
        GattTopology: One heart-rate style service with characteristics covering every capability combination the tests need.
    """
    return GattTopology.build(
        [
            (
                "180d",
                [
                    ("2a00", ["read", "write"]),
                    ("2a01", ["notify"]),
                    ("2a02", ["write-without-response"]),
                    ("2a03", ["read"]),
                    ("2a04", ["indicate"]),
                ],
            )
        ]
    )


class FakeTransport(BLETransport):
    """
    Scripted in-memory transport.

    Every call is appended to `calls` as a tuple whose first element is the
    method name. GATT methods track how many requests are in flight at once
    in `max_in_flight`. Tests mutate the public attributes to script
    outcomes before triggering the host-facing call.
    """

    def __init__(self):
        self.calls: List[Tuple] = []
        self.adapters: List[Dict[str, Optional[str]]] = [
            {"name": "hci0", "address": "00:1A:7D:DA:71:13"}
        ]
        self.adapter_error: Optional[BLEError] = None
        self.scan_error: Optional[BLEError] = None
        self.advertisements: List[DiscoveredDevice] = []
        self.reachable: Set[str] = set()
        self.connect_delay = 0.0
        self.disconnect_delay = 0.0
        self.io_delay = 0.0
        self.topologies: Dict[str, GattTopology] = {}
        self.values: Dict[str, bytes] = {}
        self.failures: Dict[str, BLEError] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._on_advertisement: Optional[Callable[[DiscoveredDevice], None]] = None
        self._on_disconnect: Dict[str, Callable[[str], None]] = {}
        self._on_notification: Dict[Tuple[str, str], Callable[[str, bytes], None]] = {}

    def add_device(self, address: str = ADDRESS, topology: Optional[GattTopology] = None) -> None:
        """Make `address` connectable, optionally with a GATT table."""
        key = sanitize_address(address)
        self.reachable.add(key)
        self.topologies[key] = topology if topology is not None else make_topology()

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def enumerate_adapters(self):
        self.calls.append(("enumerate_adapters",))
        if self.adapter_error is not None:
            raise self.adapter_error
        if not self.adapters:
            raise AdapterError("no adapters", error_code="ADAPTER_NOT_FOUND")
        return list(self.adapters)

    async def start_scan(self, on_advertisement):
        self.calls.append(("start_scan",))
        if self.scan_error is not None:
            raise self.scan_error
        self._on_advertisement = on_advertisement
        for device in self.advertisements:
            on_advertisement(device)

    async def stop_scan(self):
        self.calls.append(("stop_scan",))
        self._on_advertisement = None

    def advertise(self, device: DiscoveredDevice) -> None:
        """Deliver an advertisement as the platform stack would, from the calling thread."""
        if self._on_advertisement is not None:
            self._on_advertisement(device)

    async def connect(self, address, on_disconnect):
        self.calls.append(("connect", address))
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if sanitize_address(address) not in self.reachable:
            raise BLEConnectionError(f"Device with address {address} was not found")
        self._on_disconnect[sanitize_address(address)] = on_disconnect

    async def disconnect(self, address):
        self.calls.append(("disconnect", address))
        if self.disconnect_delay:
            await asyncio.sleep(self.disconnect_delay)
        self._on_disconnect.pop(sanitize_address(address), None)

    def drop(self, address: str = ADDRESS) -> None:
        """Simulate an unsolicited link loss."""
        callback = self._on_disconnect.pop(sanitize_address(address), None)
        if callback is not None:
            callback(address)

    async def _gatt(self, name: str, *details):
        self.calls.append((name,) + details)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.io_delay:
                await asyncio.sleep(self.io_delay)
            if name in self.failures:
                raise self.failures[name]
        finally:
            self.in_flight -= 1

    async def discover_services(self, address):
        await self._gatt("discover_services", address)
        return self.topologies.get(sanitize_address(address), GattTopology())

    async def read(self, address, service_uuid, char_uuid):
        await self._gatt("read", char_uuid)
        return self.values.get(char_uuid, b"")

    async def write(self, address, service_uuid, char_uuid, data, with_response):
        await self._gatt("write", char_uuid, bytes(data), with_response)

    async def subscribe(self, address, service_uuid, char_uuid, on_notification):
        await self._gatt("subscribe", char_uuid)
        self._on_notification[(sanitize_address(address), char_uuid)] = on_notification

    async def unsubscribe(self, address, service_uuid, char_uuid):
        await self._gatt("unsubscribe", char_uuid)
        self._on_notification.pop((sanitize_address(address), char_uuid), None)

    def notify(self, address: str, char_uuid: str, data: bytes) -> bool:
        """Push a notification for a subscribed characteristic; False if not subscribed."""
        callback = self._on_notification.get((sanitize_address(address), char_uuid))
        if callback is None:
            return False
        callback(char_uuid, data)
        return True

    async def close(self):
        self.calls.append(("close",))


class RecordCollector:
    """Drains a context's event bridge and keeps every record in arrival order."""

    def __init__(self, context: BLEContext):
        self.context = context
        self.records: List[EventRecord] = []

    def drain(self) -> List[EventRecord]:
        batch = self.context.bridge.drain()
        self.records.extend(batch)
        return batch

    def wait_for(self, predicate: Callable[[List[EventRecord]], bool], timeout: float = 2.0) -> bool:
        """
        Poll the bridge until `predicate(records)` holds or `timeout` elapses.

        Returns:
            bool: Whether the predicate became true.
        """
        deadline = time.monotonic() + timeout
        while True:
            self.drain()
            if predicate(self.records):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)

    def of_type(self, record_type) -> List[EventRecord]:
        return [record for record in self.records if isinstance(record, record_type)]

    def has(self, record_type, count: int = 1) -> Callable[[List[EventRecord]], bool]:
        return lambda records: sum(isinstance(r, record_type) for r in records) >= count


class SignalRecorder:
    """Registers on every signal of an emitter and records `(signal, args)` in order."""

    def __init__(self):
        self.events: List[Tuple[str, Tuple]] = []

    def attach(self, emitter, prefix: str = "") -> "SignalRecorder":
        for name in emitter.SIGNALS:
            emitter.on(name, functools.partial(self._record, prefix + name))
        return self

    def _record(self, name, *args):
        self.events.append((name, args))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def args(self, name: str) -> List[Tuple]:
        return [args for event_name, args in self.events if event_name == name]

    def count(self, name: str) -> int:
        return len(self.args(name))


def pump(manager: BluetoothManager, predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Run the host drain step until `predicate()` holds or `timeout` elapses."""
    deadline = time.monotonic() + timeout
    while True:
        manager.process()
        if predicate():
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(0.005)


@pytest.fixture
def transport():
    """A fresh FakeTransport with one connectable device at ADDRESS."""
    fake = FakeTransport()
    fake.add_device(ADDRESS)
    return fake


@pytest.fixture
def context(transport):
    """
    BLEContext wired to the fake transport, closed after the test.

    Yields:
        BLEContext: Context whose runtime thread is started lazily by the first operation.
    """
    ctx = BLEContext(transport)
    yield ctx
    for connection in ctx.registry.connections():
        connection.disconnect()
    ctx.close(timeout=1.0)


@pytest.fixture
def collector(context):
    return RecordCollector(context)


@pytest.fixture
def connected(context, collector):
    """
    A connection to ADDRESS that completed service discovery.

    Returns:
        DeviceConnection: Connection in SERVICES_READY state; the collector is cleared of setup records.
    """
    connection, created = context.connect(ADDRESS)
    assert created
    assert collector.wait_for(collector.has(ConnectionChanged))
    assert connection.discover_services()
    assert collector.wait_for(collector.has(ServicesReady))
    collector.records.clear()
    return connection


@pytest.fixture
def manager(transport):
    """BluetoothManager on the fake transport; shut down after the test."""
    mgr = BluetoothManager(transport)
    yield mgr
    mgr.shutdown(timeout=1.0)


@pytest.fixture
def ready_manager(manager):
    """BluetoothManager whose adapter finished initializing."""
    done = []
    manager.on("adapter_initialized", lambda success, error: done.append(success))
    manager.initialize()
    assert pump(manager, lambda: bool(done))
    assert done == [True]
    return manager
