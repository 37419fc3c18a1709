"""Tests for the adapter controller: initialization and scan sessions."""

import time

import pytest

from blebridge.ble.discovery import DiscoveredDevice
from blebridge.ble.errors import AdapterError
from blebridge.ble.events import (
    AdapterErrorOccurred,
    AdapterInitialized,
    DeviceFound,
    DeviceUpdated,
    ScanEnded,
    ScanStarted,
)
from blebridge.ble.state import AdapterState

from conftest import ADDRESS, OTHER_ADDRESS


@pytest.fixture
def ready(context, collector):
    """Initialize the adapter and discard the initialization record."""
    assert context.adapter.initialize()
    assert collector.wait_for(collector.has(AdapterInitialized))
    assert context.adapter.is_ready
    collector.records.clear()
    return context.adapter


class TestInitialize:
    """Test cases for AdapterController.initialize."""

    def test_success(self, context, collector, transport):
        """Test that initialization reports success once and exposes adapter info."""
        adapter = context.adapter
        assert adapter.initialize()
        assert adapter.state in (AdapterState.INITIALIZING, AdapterState.READY)
        assert collector.wait_for(collector.has(AdapterInitialized))
        record = collector.of_type(AdapterInitialized)[0]
        assert record.success and record.error == ""
        assert adapter.info == {"name": "hci0", "address": "00:1A:7D:DA:71:13"}

    def test_repeat_is_noop(self, ready, context, collector, transport):
        """Test that initialize while Ready does not re-run or re-emit."""
        assert not ready.initialize()
        time.sleep(0.05)
        collector.drain()
        assert collector.of_type(AdapterInitialized) == []
        assert transport.call_names().count("enumerate_adapters") == 1

    def test_repeat_while_initializing_is_noop(self, context, collector, transport):
        """Test that a second call during initialization is ignored."""
        assert context.adapter.initialize()
        assert not context.adapter.initialize()
        assert collector.wait_for(collector.has(AdapterInitialized))
        time.sleep(0.05)
        collector.drain()
        assert len(collector.of_type(AdapterInitialized)) == 1

    def test_failure_then_retry(self, context, collector, transport):
        """Test that a failed adapter reports the reason and may be initialized again."""
        transport.adapter_error = AdapterError("Bluetooth is powered off")
        assert context.adapter.initialize()
        assert collector.wait_for(collector.has(AdapterInitialized))
        record = collector.of_type(AdapterInitialized)[0]
        assert not record.success
        assert "powered off" in record.error
        assert context.adapter.state == AdapterState.FAILED
        assert context.adapter.info == {}

        transport.adapter_error = None
        assert context.adapter.initialize()
        assert collector.wait_for(collector.has(AdapterInitialized, 2))
        assert collector.of_type(AdapterInitialized)[1].success

    def test_no_adapters(self, context, collector, transport):
        """Test that an empty adapter list fails initialization."""
        transport.adapters = []
        context.adapter.initialize()
        assert collector.wait_for(collector.has(AdapterInitialized))
        assert not collector.of_type(AdapterInitialized)[0].success


class TestScan:
    """Test cases for scan sessions."""

    def test_scan_requires_ready(self, context, collector):
        """Test that scanning before initialization reports an adapter error."""
        assert not context.adapter.start_scan(1.0)
        collector.drain()
        assert isinstance(collector.records[0], AdapterErrorOccurred)
        assert collector.records[0].error_code == "ADAPTER_NOT_READY"
        assert collector.of_type(ScanStarted) == []

    def test_empty_scan_times_out(self, ready, collector):
        """Test that a scan with nothing in range ends once after its timeout."""
        started = time.monotonic()
        assert ready.start_scan(0.3)
        collector.drain()
        assert isinstance(collector.records[0], ScanStarted)
        assert collector.wait_for(collector.has(ScanEnded), timeout=3.0)
        elapsed = time.monotonic() - started
        time.sleep(0.1)
        collector.drain()

        ended = collector.of_type(ScanEnded)
        assert len(ended) == 1
        assert ended[0].was_scanning
        assert ended[0].reason == "timeout"
        assert ended[0].device_count == 0
        assert elapsed >= 0.3
        assert collector.of_type(DeviceFound) == []
        assert not ready.is_scanning

    @pytest.mark.slow
    def test_empty_scan_five_seconds(self, ready, collector):
        """Test start_scan(5.0) with no devices: ScanStarted, one ScanEnded after >= 5s, nothing found."""
        started = time.monotonic()
        ready.start_scan(5.0)
        assert collector.wait_for(collector.has(ScanEnded), timeout=8.0)
        assert time.monotonic() - started >= 5.0
        kinds = [type(r) for r in collector.records]
        assert kinds == [ScanStarted, ScanEnded]

    def test_advertisements(self, ready, collector, transport):
        """Test that first sightings produce DeviceFound and re-sightings DeviceUpdated."""
        transport.advertisements = [
            DiscoveredDevice(ADDRESS, name="Sensor", rssi=-70),
            DiscoveredDevice(OTHER_ADDRESS, rssi=-80),
        ]
        ready.start_scan(0)
        assert collector.wait_for(collector.has(DeviceFound, 2))
        transport.advertise(DiscoveredDevice(ADDRESS, rssi=-40))
        assert collector.wait_for(collector.has(DeviceUpdated))

        updated = collector.of_type(DeviceUpdated)[0]
        assert updated.device.name == "Sensor"
        assert updated.device.rssi == -40
        assert context_device_count(ready) == 2

        ready.stop_scan()
        assert collector.wait_for(collector.has(ScanEnded))
        ended = collector.of_type(ScanEnded)[0]
        assert ended.reason == "stopped"
        assert ended.device_count == 2

    def test_records_are_snapshots(self, ready, collector, transport):
        """Test that event payloads are not mutated by later advertisements."""
        ready.start_scan(0)
        transport_ready = collector.wait_for(lambda _r: transport._on_advertisement is not None)
        assert transport_ready
        transport.advertise(DiscoveredDevice(ADDRESS, rssi=-70))
        transport.advertise(DiscoveredDevice(ADDRESS, rssi=-30))
        assert collector.wait_for(collector.has(DeviceUpdated))
        assert collector.of_type(DeviceFound)[0].device.rssi == -70

    def test_stop_when_idle(self, ready, collector):
        """Test that stop_scan without a session still yields one ScanEnded."""
        assert not ready.stop_scan()
        collector.drain()
        assert len(collector.records) == 1
        ended = collector.records[0]
        assert isinstance(ended, ScanEnded)
        assert not ended.was_scanning
        assert ended.reason == "not scanning"

    def test_double_stop_single_end(self, ready, collector, transport):
        """Test that repeated stop_scan calls end the session exactly once."""
        ready.start_scan(0)
        assert ready.stop_scan()
        assert ready.stop_scan()
        assert collector.wait_for(collector.has(ScanEnded))
        time.sleep(0.1)
        collector.drain()
        assert len(collector.of_type(ScanEnded)) == 1
        assert transport.call_names().count("stop_scan") >= 1

    def test_start_while_scanning_ignored(self, ready, collector, transport):
        """Test that a second start_scan during a session is ignored."""
        assert ready.start_scan(0)
        assert not ready.start_scan(0)
        collector.drain()
        assert len(collector.of_type(ScanStarted)) == 1
        ready.stop_scan()
        assert collector.wait_for(collector.has(ScanEnded))

    def test_new_scan_clears_previous_results(self, ready, collector, transport, context):
        """Test that starting a scan forgets devices from the last one."""
        transport.advertisements = [DiscoveredDevice(ADDRESS, rssi=-60)]
        ready.start_scan(0.05)
        assert collector.wait_for(collector.has(ScanEnded))
        assert context.registry.device_count() == 1

        transport.advertisements = []
        ready.start_scan(0.05)
        assert collector.wait_for(collector.has(ScanEnded, 2))
        assert context.registry.device_count() == 0

    def test_scan_failure(self, ready, collector, transport):
        """Test that a transport scan error is reported and still ends the session."""
        transport.scan_error = AdapterError("radio busy", error_code="SCAN_FAILED")
        ready.start_scan(5.0)
        assert collector.wait_for(collector.has(ScanEnded))
        kinds = [type(r) for r in collector.records]
        assert kinds == [ScanStarted, AdapterErrorOccurred, ScanEnded]
        ended = collector.of_type(ScanEnded)[0]
        assert ended.reason == "error"
        assert "radio busy" in ended.error
        assert collector.of_type(AdapterErrorOccurred)[0].error_code == "SCAN_FAILED"
        assert not ready.is_scanning

    def test_late_advertisement_ignored(self, ready, collector, transport):
        """Test that advertisements after the session ended are dropped."""
        ready.start_scan(0)
        assert collector.wait_for(lambda _r: transport._on_advertisement is not None)
        callback = transport._on_advertisement
        ready.stop_scan()
        assert collector.wait_for(collector.has(ScanEnded))
        callback(DiscoveredDevice(ADDRESS, rssi=-50))
        collector.drain()
        assert collector.of_type(DeviceFound) == []


    def test_stop_error_still_ends_session(self, ready, collector, transport, monkeypatch):
        """Test that an unexpected error from the backend's stop still ends the session once."""

        async def broken_stop():
            transport.calls.append(("stop_scan",))
            raise RuntimeError("backend went away")

        monkeypatch.setattr(transport, "stop_scan", broken_stop)
        assert ready.start_scan(0)
        assert ready.stop_scan()
        assert collector.wait_for(collector.has(ScanEnded))
        time.sleep(0.05)
        collector.drain()

        assert len(collector.of_type(ScanEnded)) == 1
        assert collector.of_type(ScanEnded)[0].reason == "stopped"
        assert not ready.is_scanning
        assert not ready.stop_scan()

    def test_unexpected_scan_error_reported(self, ready, collector, transport):
        """Test that a non-BLE exception starting the scan ends the session with an error."""
        transport.scan_error = RuntimeError("driver crashed")
        ready.start_scan(5.0)
        assert collector.wait_for(collector.has(ScanEnded))
        ended = collector.of_type(ScanEnded)[0]
        assert ended.reason == "error"
        assert collector.of_type(AdapterErrorOccurred)[0].error_code == "SCAN_FAILED"

def context_device_count(adapter):
    return adapter._context.registry.device_count()
