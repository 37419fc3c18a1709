"""Process-scoped BLE context shared by every adapter-dependent component."""

from typing import Optional, Tuple

from blebridge.ble.adapter import AdapterController
from blebridge.ble.connection import DeviceConnection
from blebridge.ble.constants import BLEConfig, logger
from blebridge.ble.errors import BLEErrorHandler
from blebridge.ble.events import EventBridge
from blebridge.ble.registry import DeviceRegistry
from blebridge.ble.runtime import RuntimeManager
from blebridge.ble.transport import BLETransport

__all__ = ["BLEContext"]


class BLEContext:
    """
    Bundle of the runtime, event bridge, registry, adapter and transport.

    Exactly one context backs one host-facing manager. Components receive
    the context explicitly instead of reaching for module globals, so
    several independent contexts (tests, multiple adapters) can coexist.
    """

    def __init__(self, transport: BLETransport):
        self.transport = transport
        self.bridge = EventBridge()
        self.runtime = RuntimeManager()
        self.registry = DeviceRegistry()
        self.adapter = AdapterController(self)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self, address: str) -> Tuple[DeviceConnection, bool]:
        """
        Return the connection for `address`, starting a new attempt if none is live.

        When the registered connection is still tearing down, a fresh attempt
        is queued to start as soon as its terminal record has been emitted.

        Returns:
            Tuple[DeviceConnection, bool]: The connection and whether a new attempt was started or queued.
        """
        while True:
            connection, created = self.registry.get_or_create_connection(
                address, lambda addr: DeviceConnection(self, addr)
            )
            if created:
                connection.start()
                return connection, True
            if connection.is_live:
                return connection, False
            if connection.request_reconnect():
                return connection, True
            if not connection.terminated:
                # Reconnect already queued
                return connection, False

    def get_connection(self, address: str) -> Optional[DeviceConnection]:
        return self.registry.get_connection(address)

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Release the transport and stop the runtime. Safe to call more than once.

        Live connections and scans are expected to be stopped by the caller
        first. Any that did not finish before the runtime stopped are ended
        here, so their terminal records stay queued on the bridge.
        """
        if self._closed:
            return
        self._closed = True
        if timeout is None:
            timeout = BLEConfig.SHUTDOWN_TIMEOUT
        if self.runtime.is_running:
            BLEErrorHandler.safe_execute(
                lambda: self.runtime.async_await(self.transport.close(), timeout),
                error_msg="Error closing BLE transport",
            )
        self.runtime.shutdown(timeout)
        for connection in self.registry.connections():
            logger.debug("Ending %s after runtime shutdown", connection.address)
            connection.abort()
        self.adapter.reset()
        logger.debug("BLE context closed")
