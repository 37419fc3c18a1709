"""Adapter and connection state machines."""

from enum import Enum
from threading import RLock
from typing import Dict, FrozenSet, Generic, TypeVar

from blebridge.ble.constants import logger

__all__ = [
    "AdapterState",
    "ConnectionState",
    "AdapterStateManager",
    "ConnectionStateManager",
]


class AdapterState(Enum):
    """Lifecycle of the single Bluetooth adapter handle."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class ConnectionState(Enum):
    """Lifecycle of one peripheral connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCOVERING_SERVICES = "discovering_services"
    SERVICES_READY = "services_ready"
    DISCONNECTING = "disconnecting"


S = TypeVar("S", bound=Enum)


class _StateManager(Generic[S]):
    """Thread-safe state holder that only applies transitions listed in `VALID_TRANSITIONS`."""

    VALID_TRANSITIONS: Dict[Enum, FrozenSet[Enum]] = {}

    def __init__(self, initial: S, label: str):
        self._state_lock = RLock()  # Single reentrant lock for all state changes
        self._state = initial
        self._label = label

    @property
    def lock(self) -> RLock:
        """Expose the reentrant lock controlling state transitions."""
        return self._state_lock

    @property
    def state(self) -> S:
        with self._state_lock:
            return self._state

    def transition_to(self, new_state: S) -> bool:
        """
        Apply a state transition if the lifecycle allows it.

        Returns:
            True if the transition was valid and applied, False otherwise.
        """
        with self._state_lock:
            if new_state in self.VALID_TRANSITIONS.get(self._state, frozenset()):
                old_state = self._state
                self._state = new_state
                logger.debug(
                    "%s state transition: %s → %s",
                    self._label,
                    old_state.value,
                    new_state.value,
                )
                return True
            logger.warning(
                "Invalid %s state transition: %s → %s",
                self._label,
                self._state.value,
                new_state.value,
            )
            return False


class AdapterStateManager(_StateManager[AdapterState]):
    """Tracks the adapter through Uninitialized → Initializing → Ready | Failed."""

    VALID_TRANSITIONS = {
        AdapterState.UNINITIALIZED: frozenset({AdapterState.INITIALIZING}),
        AdapterState.INITIALIZING: frozenset({AdapterState.READY, AdapterState.FAILED}),
        AdapterState.READY: frozenset({AdapterState.UNINITIALIZED}),
        AdapterState.FAILED: frozenset({AdapterState.INITIALIZING, AdapterState.UNINITIALIZED}),
    }

    def __init__(self):
        super().__init__(AdapterState.UNINITIALIZED, "adapter")

    @property
    def is_ready(self) -> bool:
        return self.state == AdapterState.READY

    def reset(self) -> None:
        """Return to UNINITIALIZED, used at teardown."""
        with self._state_lock:
            if self._state == AdapterState.INITIALIZING:
                self._state = AdapterState.UNINITIALIZED
                logger.debug("adapter state reset during initialization")
            elif self._state != AdapterState.UNINITIALIZED:
                self.transition_to(AdapterState.UNINITIALIZED)


class ConnectionStateManager(_StateManager[ConnectionState]):
    """
    Thread-safe state machine for one peripheral connection.

    Connecting → Connected → (DiscoveringServices → ServicesReady) →
    Disconnecting → Disconnected, with Disconnecting reachable from every
    live state so unsolicited drops are always legal.
    """

    VALID_TRANSITIONS = {
        ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
        ConnectionState.CONNECTING: frozenset(
            {
                ConnectionState.CONNECTED,
                ConnectionState.DISCONNECTING,
                ConnectionState.DISCONNECTED,
            }
        ),
        ConnectionState.CONNECTED: frozenset(
            {
                ConnectionState.DISCOVERING_SERVICES,
                ConnectionState.DISCONNECTING,
            }
        ),
        ConnectionState.DISCOVERING_SERVICES: frozenset(
            {
                ConnectionState.SERVICES_READY,
                ConnectionState.CONNECTED,
                ConnectionState.DISCONNECTING,
            }
        ),
        ConnectionState.SERVICES_READY: frozenset(
            {
                ConnectionState.DISCOVERING_SERVICES,
                ConnectionState.DISCONNECTING,
            }
        ),
        ConnectionState.DISCONNECTING: frozenset({ConnectionState.DISCONNECTED}),
    }

    def __init__(self, address: str = ""):
        super().__init__(ConnectionState.DISCONNECTED, f"connection {address}".strip())

    @property
    def is_connected(self) -> bool:
        """True once the link is up, including while services are being discovered."""
        return self.state in (
            ConnectionState.CONNECTED,
            ConnectionState.DISCOVERING_SERVICES,
            ConnectionState.SERVICES_READY,
        )

    @property
    def is_closing(self) -> bool:
        return self.state == ConnectionState.DISCONNECTING

    @property
    def is_live(self) -> bool:
        """True from CONNECTING until teardown begins."""
        return self.state not in (
            ConnectionState.DISCONNECTED,
            ConnectionState.DISCONNECTING,
        )
