"""Tests for GATT topology snapshots and discovered device records."""

import dataclasses

import pytest

from blebridge.ble.discovery import DiscoveredDevice
from blebridge.ble.gatt import CharacteristicProperties, GattTopology
from blebridge.ble.utils import InvalidUUIDError

from conftest import NOTIFY_CHAR, RW_CHAR, SERVICE, make_topology


class TestCharacteristicProperties:
    """Test cases for CharacteristicProperties."""

    def test_from_backend_flags(self):
        """Test that backend property strings map onto capability bits."""
        props = CharacteristicProperties.from_flags(
            ["read", "write-without-response", "indicate", "broadcast"]
        )
        assert props.read
        assert props.write_without_response
        assert props.indicate
        assert not props.write
        assert not props.notify
        assert props.can_subscribe

    def test_underscore_spelling_accepted(self):
        """Test that write_without_response spelled with underscores is recognized."""
        props = CharacteristicProperties.from_flags(["WRITE_WITHOUT_RESPONSE"])
        assert props.write_without_response

    def test_to_dict_keys(self):
        """Test the host-facing property dictionary."""
        assert CharacteristicProperties(read=True).to_dict() == {
            "read": True,
            "write": False,
            "write_without_response": False,
            "notify": False,
            "indicate": False,
        }


class TestGattTopology:
    """Test cases for GattTopology."""

    def test_build_normalizes_uuids(self):
        """Test that short UUIDs are stored in canonical 128-bit form."""
        topology = make_topology()
        assert len(topology) == 1
        assert topology.services[0].uuid == SERVICE
        assert topology.find_characteristic(SERVICE, RW_CHAR) is not None

    def test_lookup_misses(self):
        """Test that unknown services and characteristics return None."""
        topology = make_topology()
        assert topology.get_service("0000ffff-0000-1000-8000-00805f9b34fb") is None
        assert topology.find_characteristic(SERVICE, "0000ffff-0000-1000-8000-00805f9b34fb") is None

    def test_preserves_order(self):
        """Test that services and characteristics keep discovery order."""
        topology = GattTopology.build(
            [("1801", []), ("180a", [("2a29", ["read"]), ("2a24", ["read"])])]
        )
        assert [s.uuid[4:8] for s in topology.services] == ["1801", "180a"]
        assert [c.uuid[4:8] for c in topology.services[1].characteristics] == ["2a29", "2a24"]

    def test_immutable(self):
        """Test that a published snapshot cannot be modified."""
        topology = make_topology()
        with pytest.raises(dataclasses.FrozenInstanceError):
            topology.services = ()

    def test_to_list_shape(self):
        """Test the host-facing list of service dictionaries."""
        services = make_topology().to_list()
        assert services[0]["uuid"] == SERVICE
        notify = [c for c in services[0]["characteristics"] if c["uuid"] == NOTIFY_CHAR][0]
        assert notify["properties"]["notify"] is True
        assert notify["properties"]["read"] is False

    def test_invalid_uuid_rejected(self):
        """Test that building from a malformed UUID raises."""
        with pytest.raises(InvalidUUIDError):
            GattTopology.build([("zz", [])])


class TestDiscoveredDevice:
    """Test cases for DiscoveredDevice."""

    def test_update_from_merges(self):
        """Test that re-observation updates in place and keeps missing fields."""
        device = DiscoveredDevice("AA:BB:CC:DD:EE:FF", name="Sensor", rssi=-70)
        device.update_from(
            DiscoveredDevice(
                "AA:BB:CC:DD:EE:FF",
                rssi=-50,
                service_uuids=["180d"],
                manufacturer_data={0x004C: b"\x01"},
            )
        )
        assert device.name == "Sensor"
        assert device.rssi == -50
        assert device.service_uuids == ["180d"]
        assert device.manufacturer_data == {0x004C: b"\x01"}

    def test_snapshot_is_independent(self):
        """Test that snapshots do not share mutable state with the record."""
        device = DiscoveredDevice("AA:BB:CC:DD:EE:FF", service_uuids=["180d"])
        snapshot = device.snapshot()
        device.service_uuids.append("180f")
        assert snapshot.service_uuids == ["180d"]

    def test_to_dict(self):
        """Test the host-facing dictionary keys."""
        info = DiscoveredDevice("AA:BB:CC:DD:EE:FF", name="Tag", rssi=-60, tx_power=4).to_dict()
        assert info["address"] == "AA:BB:CC:DD:EE:FF"
        assert info["name"] == "Tag"
        assert info["rssi"] == -60
        assert info["tx_power_level"] == 4
        assert set(info) >= {"services", "manufacturer_data", "service_data", "last_seen"}

    def test_key(self):
        """Test that the registry key is the sanitized address."""
        assert DiscoveredDevice("AA:BB:CC:DD:EE:FF").key == "aabbccddeeff"
