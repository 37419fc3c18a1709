"""Connection state machine for one peripheral."""

from concurrent.futures import Future
from typing import TYPE_CHECKING, Optional

from blebridge.ble.constants import (
    ERROR_CAPABILITY_MISSING,
    ERROR_CHARACTERISTIC_NOT_FOUND,
    ERROR_NOT_CONNECTED,
    ERROR_SERVICE_NOT_FOUND,
    ERROR_SERVICES_NOT_DISCOVERED,
    logger,
)
from blebridge.ble.errors import (
    BLEError,
    FailureReason,
    UnsupportedOperationError,
)
from blebridge.ble.events import (
    CharacteristicRead,
    CharacteristicWritten,
    ConnectionChanged,
    ConnectionFailed,
    ConnectionStarted,
    Disconnected,
    EventRecord,
    NotificationData,
    OperationFailed,
    ServicesReady,
    SubscriptionChanged,
)
from blebridge.ble.gatt import Characteristic, GattTopology
from blebridge.ble.notifications import NotificationManager
from blebridge.ble.serializer import OperationKind, OperationSerializer, PendingOperation
from blebridge.ble.state import ConnectionState, ConnectionStateManager
from blebridge.ble.utils import normalize_uuid

if TYPE_CHECKING:
    from blebridge.ble.context import BLEContext

__all__ = ["DeviceConnection"]

REASON_REQUESTED = "disconnect requested"
REASON_CONNECTION_LOST = "connection lost"


class DeviceConnection:
    """
    Lifecycle of one peripheral link, from first contact to teardown.

    A connection is single-use: once its terminal record (``Disconnected`` or
    ``ConnectionFailed``) has been emitted it never emits again, and the
    registry drops it so a later connect creates a fresh instance.

    Public methods never block on transport I/O; they schedule work on the
    runtime and report outcomes through the event bridge.
    """

    def __init__(self, context: "BLEContext", address: str):
        self.address = address
        self._context = context
        self._state = ConnectionStateManager(address)
        self._lock = self._state.lock
        self._topology: Optional[GattTopology] = None
        self._notifications = NotificationManager()
        self._serializer = OperationSerializer(
            address, context.runtime, context.bridge, self._execute
        )
        self._connect_future: Optional[Future] = None
        self._disconnect_requested = False
        self._reconnect_requested = False
        self._terminated = False

    def __repr__(self) -> str:
        return f"DeviceConnection(address={self.address!r}, state={self.state.value})"

    @property
    def state(self) -> ConnectionState:
        return self._state.state

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def is_live(self) -> bool:
        """True until this connection has started tearing down."""
        return not self._terminated and self._state.is_live

    @property
    def terminated(self) -> bool:
        """True once the terminal record for this connection has been emitted."""
        return self._terminated

    @property
    def topology(self) -> Optional[GattTopology]:
        """Last published GATT snapshot; safe to read from any thread."""
        return self._topology

    @property
    def pending_operations(self) -> int:
        return len(self._serializer)

    def is_subscribed(self, service_uuid: str, char_uuid: str) -> bool:
        return self._notifications.is_subscribed(
            normalize_uuid(service_uuid), normalize_uuid(char_uuid)
        )

    # Lifecycle

    def start(self) -> bool:
        """
        Begin the asynchronous connection attempt.

        Returns:
            bool: False if the connection was not in its initial state.
        """
        with self._lock:
            if self._terminated or not self._state.transition_to(ConnectionState.CONNECTING):
                return False
            self._emit(ConnectionStarted(self.address))
            try:
                self._connect_future = self._context.runtime.spawn(self._connect())
            except BLEError as exc:
                logger.error("Unable to schedule connection to %s: %s", self.address, exc)
                self._finish(ConnectionFailed(self.address, str(exc)))
                return False
        logger.info("Connecting to %s", self.address)
        return True

    def disconnect(self) -> bool:
        """
        Request teardown. Idempotent.

        Every pending operation is failed with reason ``disconnected`` before
        the terminal ``Disconnected`` record is emitted.

        Returns:
            bool: False if the connection was already disconnected or disconnecting.
        """
        with self._lock:
            if self._terminated or not self._state.is_live:
                logger.debug("Disconnect ignored for %s in state %s", self.address, self.state.value)
                return False
            self._disconnect_requested = True
            self._state.transition_to(ConnectionState.DISCONNECTING)
            connect_future, self._connect_future = self._connect_future, None

        self._serializer.fail_all(FailureReason.DISCONNECTED)
        if connect_future is not None and not connect_future.done():
            connect_future.cancel()
        self._spawn_teardown(REASON_REQUESTED, requested=True)
        logger.info("Disconnecting from %s", self.address)
        return True

    def request_reconnect(self) -> bool:
        """
        Ask for a fresh connection to the same address once this one has torn down.

        The new attempt starts only after the transport released the old
        link, so the two never share a platform client.

        Returns:
            bool: True if the reconnect was newly scheduled; False if one is
            already pending or this connection has already terminated.
        """
        with self._lock:
            if self._terminated or self._reconnect_requested:
                return False
            self._reconnect_requested = True
        logger.debug("Reconnect to %s queued behind teardown", self.address)
        return True

    def abort(self) -> None:
        """Emit the terminal record without waiting for the transport; used when the runtime is gone."""
        with self._lock:
            requested = self._disconnect_requested
            self._reconnect_requested = False
            if self._state.is_connected:
                self._state.transition_to(ConnectionState.DISCONNECTING)
        self._serializer.fail_all(FailureReason.DISCONNECTED)
        reason = REASON_REQUESTED if requested else REASON_CONNECTION_LOST
        self._finish(Disconnected(self.address, reason, requested=requested))

    def _on_transport_disconnect(self, _address: str) -> None:
        """Handle a link loss reported by the transport, possibly from any thread."""
        with self._lock:
            if self._terminated or not self._state.is_connected:
                logger.debug(
                    "Ignoring link loss for %s in state %s", self.address, self.state.value
                )
                return
            self._state.transition_to(ConnectionState.DISCONNECTING)
        logger.warning("Connection to %s lost", self.address)
        self._serializer.fail_all(FailureReason.DISCONNECTED)
        self._spawn_teardown(REASON_CONNECTION_LOST, requested=False)

    def _spawn_teardown(self, reason: str, *, requested: bool) -> None:
        try:
            self._context.runtime.spawn(self._teardown(reason, requested))
        except BLEError as exc:
            logger.debug("Runtime unavailable for teardown of %s: %s", self.address, exc)
            self._finish(Disconnected(self.address, reason, requested=requested))

    async def _connect(self) -> None:
        transport = self._context.transport
        try:
            await transport.connect(self.address, self._on_transport_disconnect)
        except Exception as exc:  # noqa: BLE001 - every attempt ends in a terminal record
            if not isinstance(exc, BLEError):
                logger.exception("Unexpected error connecting to %s", self.address)
            with self._lock:
                if self._disconnect_requested:
                    # Teardown path emits the terminal record
                    return
            logger.warning("Connection to %s failed: %s", self.address, exc)
            self._serializer.fail_all(FailureReason.DISCONNECTED)
            self._finish(ConnectionFailed(self.address, str(exc)))
            return

        with self._lock:
            if self._state.state is ConnectionState.CONNECTING:
                self._state.transition_to(ConnectionState.CONNECTED)
                self._connect_future = None
                self._emit(ConnectionChanged(self.address, True))
                logger.info("Connected to %s", self.address)
                return
        # Disconnect was requested while the link came up
        await transport.disconnect(self.address)

    async def _teardown(self, reason: str, requested: bool) -> None:
        try:
            await self._context.transport.disconnect(self.address)
        except Exception as exc:  # noqa: BLE001 - teardown must complete
            logger.debug("Error disconnecting %s: %s", self.address, exc)
        finally:
            self._finish(Disconnected(self.address, reason, requested=requested))

    def _finish(self, record: EventRecord) -> None:
        with self._lock:
            if self._terminated:
                return
            if self._state.state is not ConnectionState.DISCONNECTED:
                self._state.transition_to(ConnectionState.DISCONNECTED)
            self._terminate(record)
            reconnect = self._reconnect_requested
        self._context.registry.remove_connection(self)
        if reconnect and not self._context.closed:
            logger.info("Reconnecting to %s after teardown", self.address)
            self._context.connect(self.address)

    def _terminate(self, record: EventRecord) -> None:
        # Caller holds self._lock.
        self._notifications.cleanup_all()
        self._context.bridge.push(record)
        self._terminated = True
        logger.debug("Connection %s terminated: %s", self.address, record.kind.value)

    def _emit(self, record: EventRecord) -> None:
        with self._lock:
            if self._terminated:
                logger.debug("Dropping %s for terminated connection %s", record.kind.value, self.address)
                return
            self._context.bridge.push(record)

    # Operations

    def discover_services(self) -> bool:
        return self._submit(PendingOperation(OperationKind.DISCOVER_SERVICES))

    def read_characteristic(self, service_uuid: str, char_uuid: str) -> bool:
        return self._submit(PendingOperation(OperationKind.READ, service_uuid, char_uuid))

    def write_characteristic(
        self,
        service_uuid: str,
        char_uuid: str,
        data: bytes,
        with_response: bool = True,
    ) -> bool:
        return self._submit(
            PendingOperation(
                OperationKind.WRITE,
                service_uuid,
                char_uuid,
                data=bytes(data),
                with_response=with_response,
            )
        )

    def subscribe_characteristic(self, service_uuid: str, char_uuid: str) -> bool:
        return self._submit(PendingOperation(OperationKind.SUBSCRIBE, service_uuid, char_uuid))

    def unsubscribe_characteristic(self, service_uuid: str, char_uuid: str) -> bool:
        return self._submit(PendingOperation(OperationKind.UNSUBSCRIBE, service_uuid, char_uuid))

    def _submit(self, op: PendingOperation) -> bool:
        """
        Queue an operation, or fail it immediately when the link is not up.

        Returns:
            bool: True if the operation was queued.
        """
        with self._lock:
            reason, error = FailureReason.NOT_CONNECTED, ERROR_NOT_CONNECTED
            try:
                if self._state.is_connected and self._serializer.submit(op):
                    return True
            except BLEError as exc:
                reason, error = exc.reason, str(exc)
            logger.debug("%s on %s rejected: %s", op.name, self.address, error)
            self._emit(
                OperationFailed(
                    address=self.address,
                    operation=op.name,
                    reason=reason,
                    error=error,
                    char_uuid=op.char_uuid,
                )
            )
            return False

    async def _execute(self, op: PendingOperation) -> EventRecord:
        if op.kind is OperationKind.DISCOVER_SERVICES:
            return await self._discover(op)

        op.service_uuid = normalize_uuid(op.service_uuid)
        op.char_uuid = normalize_uuid(op.char_uuid)
        self._check_capability(op, self._lookup(op))

        transport = self._context.transport
        if op.kind is OperationKind.READ:
            data = await transport.read(self.address, op.service_uuid, op.char_uuid)
            return CharacteristicRead(self.address, op.service_uuid, op.char_uuid, bytes(data))

        if op.kind is OperationKind.WRITE:
            await transport.write(
                self.address, op.service_uuid, op.char_uuid, op.data, op.with_response
            )
            return CharacteristicWritten(
                self.address, op.service_uuid, op.char_uuid, op.with_response
            )

        if op.kind is OperationKind.SUBSCRIBE:
            if self._notifications.is_subscribed(op.service_uuid, op.char_uuid):
                return SubscriptionChanged(
                    self.address, op.service_uuid, op.char_uuid, True, changed=False
                )
            await transport.subscribe(
                self.address, op.service_uuid, op.char_uuid, self._on_notification
            )
            self._notifications.add(op.service_uuid, op.char_uuid)
            return SubscriptionChanged(self.address, op.service_uuid, op.char_uuid, True)

        if not self._notifications.is_subscribed(op.service_uuid, op.char_uuid):
            return SubscriptionChanged(
                self.address, op.service_uuid, op.char_uuid, False, changed=False
            )
        await transport.unsubscribe(self.address, op.service_uuid, op.char_uuid)
        self._notifications.remove(op.service_uuid, op.char_uuid)
        return SubscriptionChanged(self.address, op.service_uuid, op.char_uuid, False)

    async def _discover(self, op: PendingOperation) -> EventRecord:
        with self._lock:
            if not self._state.transition_to(ConnectionState.DISCOVERING_SERVICES):
                raise UnsupportedOperationError(
                    f"Cannot discover services in state {self.state.value}"
                )
        try:
            topology = await self._context.transport.discover_services(self.address)
        except Exception:
            with self._lock:
                if self._state.state is ConnectionState.DISCOVERING_SERVICES:
                    self._state.transition_to(
                        ConnectionState.SERVICES_READY
                        if self._topology is not None
                        else ConnectionState.CONNECTED
                    )
            raise

        with self._lock:
            if self._state.state is ConnectionState.DISCOVERING_SERVICES:
                self._topology = topology
                self._state.transition_to(ConnectionState.SERVICES_READY)
        logger.debug("Discovered %d service(s) on %s", len(topology), self.address)
        return ServicesReady(self.address, topology)

    def _lookup(self, op: PendingOperation) -> Characteristic:
        topology = self._topology
        if topology is None:
            raise UnsupportedOperationError(ERROR_SERVICES_NOT_DISCOVERED)
        if topology.get_service(op.service_uuid) is None:
            raise UnsupportedOperationError(ERROR_SERVICE_NOT_FOUND.format(op.service_uuid))
        characteristic = topology.find_characteristic(op.service_uuid, op.char_uuid)
        if characteristic is None:
            raise UnsupportedOperationError(ERROR_CHARACTERISTIC_NOT_FOUND.format(op.char_uuid))
        return characteristic

    @staticmethod
    def _check_capability(op: PendingOperation, characteristic: Characteristic) -> None:
        props = characteristic.properties
        if op.kind is OperationKind.READ:
            allowed, needed = props.read, "read"
        elif op.kind is OperationKind.WRITE and op.with_response:
            allowed, needed = props.write, "write"
        elif op.kind is OperationKind.WRITE:
            allowed, needed = props.write_without_response, "write-without-response"
        else:
            allowed, needed = props.can_subscribe, "notify"
        if not allowed:
            raise UnsupportedOperationError(
                ERROR_CAPABILITY_MISSING.format(characteristic.uuid, needed)
            )

    def _on_notification(self, char_uuid: str, data: bytes) -> None:
        with self._lock:
            if not self._state.is_connected:
                logger.debug("Dropping notification from %s while %s", self.address, self.state.value)
                return
            self._emit(NotificationData(self.address, char_uuid, bytes(data)))
