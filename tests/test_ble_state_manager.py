"""Tests for adapter and connection state machines."""

import threading

from blebridge.ble.state import (
    AdapterState,
    AdapterStateManager,
    ConnectionState,
    ConnectionStateManager,
)


class TestConnectionStateManager:
    """Test cases for ConnectionStateManager."""

    def test_initial_state(self):
        """Test that a connection starts DISCONNECTED."""
        manager = ConnectionStateManager("AA:BB:CC:DD:EE:FF")
        assert manager.state == ConnectionState.DISCONNECTED
        assert not manager.is_connected
        assert not manager.is_live

    def test_full_lifecycle(self):
        """Test the nominal path through service discovery and teardown."""
        manager = ConnectionStateManager()
        for state in (
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCOVERING_SERVICES,
            ConnectionState.SERVICES_READY,
            ConnectionState.DISCOVERING_SERVICES,
            ConnectionState.SERVICES_READY,
            ConnectionState.DISCONNECTING,
            ConnectionState.DISCONNECTED,
        ):
            assert manager.transition_to(state), state
        assert manager.state == ConnectionState.DISCONNECTED

    def test_connect_failure_path(self):
        """Test that CONNECTING can fall straight back to DISCONNECTED."""
        manager = ConnectionStateManager()
        assert manager.transition_to(ConnectionState.CONNECTING)
        assert manager.transition_to(ConnectionState.DISCONNECTED)

    def test_invalid_transitions(self):
        """Test that transitions outside the table are rejected."""
        manager = ConnectionStateManager()
        assert not manager.transition_to(ConnectionState.CONNECTED)
        assert not manager.transition_to(ConnectionState.DISCOVERING_SERVICES)
        assert manager.state == ConnectionState.DISCONNECTED

        manager.transition_to(ConnectionState.CONNECTING)
        assert not manager.transition_to(ConnectionState.SERVICES_READY)
        manager.transition_to(ConnectionState.CONNECTED)
        assert not manager.transition_to(ConnectionState.DISCONNECTED)

    def test_disconnecting_reachable_from_live_states(self):
        """Test that teardown can start from every live state."""
        for path in (
            [ConnectionState.CONNECTING],
            [ConnectionState.CONNECTING, ConnectionState.CONNECTED],
            [
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
                ConnectionState.DISCOVERING_SERVICES,
            ],
            [
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
                ConnectionState.DISCOVERING_SERVICES,
                ConnectionState.SERVICES_READY,
            ],
        ):
            manager = ConnectionStateManager()
            for state in path:
                manager.transition_to(state)
            assert manager.transition_to(ConnectionState.DISCONNECTING), path[-1]
            assert manager.is_closing

    def test_is_connected_covers_discovery(self):
        """Test that the link counts as up while services are discovered."""
        manager = ConnectionStateManager()
        manager.transition_to(ConnectionState.CONNECTING)
        assert manager.is_live and not manager.is_connected
        manager.transition_to(ConnectionState.CONNECTED)
        manager.transition_to(ConnectionState.DISCOVERING_SERVICES)
        assert manager.is_connected

    def test_concurrent_transitions_single_winner(self):
        """Test that racing threads cannot both apply the same transition."""
        manager = ConnectionStateManager()
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(manager.transition_to(ConnectionState.CONNECTING))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert results.count(True) == 1


class TestAdapterStateManager:
    """Test cases for AdapterStateManager."""

    def test_success_and_failure(self):
        """Test Initializing resolving to Ready or Failed."""
        manager = AdapterStateManager()
        assert manager.state == AdapterState.UNINITIALIZED
        assert manager.transition_to(AdapterState.INITIALIZING)
        assert manager.transition_to(AdapterState.READY)
        assert manager.is_ready
        assert not manager.transition_to(AdapterState.INITIALIZING)

        failed = AdapterStateManager()
        failed.transition_to(AdapterState.INITIALIZING)
        assert failed.transition_to(AdapterState.FAILED)
        assert failed.transition_to(AdapterState.INITIALIZING)

    def test_reset(self):
        """Test that reset returns to UNINITIALIZED from any state."""
        manager = AdapterStateManager()
        manager.transition_to(AdapterState.INITIALIZING)
        manager.reset()
        assert manager.state == AdapterState.UNINITIALIZED

        manager.transition_to(AdapterState.INITIALIZING)
        manager.transition_to(AdapterState.READY)
        manager.reset()
        assert manager.state == AdapterState.UNINITIALIZED
