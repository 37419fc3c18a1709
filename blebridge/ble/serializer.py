"""Per-connection GATT operation queue."""

import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
from typing import TYPE_CHECKING, Awaitable, Callable, Deque, List, Optional

from blebridge.ble.constants import ERROR_DEVICE_DISCONNECTED, logger
from blebridge.ble.errors import BLEError, FailureReason
from blebridge.ble.events import EventRecord, OperationFailed

if TYPE_CHECKING:
    from blebridge.ble.events import EventBridge
    from blebridge.ble.runtime import RuntimeManager

__all__ = ["OperationKind", "PendingOperation", "OperationSerializer"]


class OperationKind(Enum):
    """GATT requests that go through the serializer; values are the host-facing operation names."""

    DISCOVER_SERVICES = "discover_services"
    READ = "read_characteristic"
    WRITE = "write_characteristic"
    SUBSCRIBE = "subscribe_characteristic"
    UNSUBSCRIBE = "unsubscribe_characteristic"


@dataclass
class PendingOperation:
    """One queued or in-flight request against a connection."""

    kind: OperationKind
    service_uuid: str = ""
    char_uuid: str = ""
    data: bytes = b""
    with_response: bool = True
    issued_at: float = field(default_factory=time.monotonic)
    resolved: bool = False

    @property
    def name(self) -> str:
        return self.kind.value


Executor = Callable[[PendingOperation], Awaitable[EventRecord]]


class OperationSerializer:
    """
    Admit GATT operations for one connection strictly one at a time.

    Operations are executed in submission order by a single worker coroutine
    on the runtime loop. The worker is spawned when work arrives and exits
    when the queue is empty. Each operation resolves exactly once: either
    with the record returned by the executor, or with ``OperationFailed``.

    `fail_all()` resolves the in-flight operation and everything queued
    behind it synchronously, so the caller can emit a terminal event knowing
    no further completion for this connection can follow.
    """

    def __init__(
        self,
        address: str,
        runtime: "RuntimeManager",
        bridge: "EventBridge",
        executor: Executor,
    ):
        """
        Parameters:
            address (str): Peripheral address reported in emitted records.
            runtime (RuntimeManager): Runtime that hosts the worker coroutine.
            bridge (EventBridge): Destination for completion records.
            executor (Executor): Coroutine function that performs one operation and returns its success record; it raises BLEError on failure.
        """
        self.address = address
        self._runtime = runtime
        self._bridge = bridge
        self._execute = executor
        self._lock = RLock()
        self._queue: Deque[PendingOperation] = deque()
        self._current: Optional[PendingOperation] = None
        self._worker: Optional[Future] = None
        self._running = False
        self._closed = False

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def is_busy(self) -> bool:
        """True while an operation is in flight."""
        with self._lock:
            return self._current is not None

    def __len__(self) -> int:
        """Number of operations not yet resolved, including the in-flight one."""
        with self._lock:
            return len(self._queue) + (1 if self._current is not None else 0)

    def submit(self, op: PendingOperation) -> bool:
        """
        Queue an operation behind any outstanding work.

        Returns:
            bool: False if the serializer was already closed and the operation was not accepted.
        """
        with self._lock:
            if self._closed:
                logger.debug("Rejected %s on closed connection %s", op.name, self.address)
                return False
            self._queue.append(op)
            logger.debug(
                "Queued %s on %s (%d pending)", op.name, self.address, len(self._queue)
            )
            if not self._running:
                self._running = True
                try:
                    self._worker = self._runtime.spawn(self._drain())
                except BLEError:
                    self._running = False
                    self._queue.remove(op)
                    raise
        return True

    def fail_all(self, reason: FailureReason = FailureReason.DISCONNECTED) -> int:
        """
        Close the serializer and resolve every unresolved operation as failed.

        The in-flight operation is reported first, then the queued ones in
        submission order. The worker is cancelled; a transport call that
        completes afterwards is discarded.

        Returns:
            int: Number of operations that were failed.
        """
        with self._lock:
            if self._closed:
                return 0
            self._closed = True
            pending: List[PendingOperation] = []
            if self._current is not None:
                pending.append(self._current)
            pending.extend(self._queue)
            self._queue.clear()
            failed = 0
            for op in pending:
                if self._fail(op, reason, ERROR_DEVICE_DISCONNECTED):
                    failed += 1
            worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
        if failed:
            logger.debug("Failed %d pending operation(s) on %s", failed, self.address)
        return failed

    async def _drain(self) -> None:
        while True:
            with self._lock:
                if self._closed or not self._queue:
                    self._running = False
                    self._current = None
                    return
                op = self._queue.popleft()
                self._current = op

            try:
                record = await self._execute(op)
            except BLEError as exc:
                logger.debug("%s on %s failed: %s", op.name, self.address, exc)
                record = self._failure(op, exc.reason, str(exc))
            except Exception as exc:  # noqa: BLE001 - every operation must resolve
                logger.exception("Unexpected error during %s on %s", op.name, self.address)
                record = self._failure(op, FailureReason.TRANSPORT, str(exc))

            with self._lock:
                self._resolve(op, record)
                if self._current is op:
                    self._current = None

    def _resolve(self, op: PendingOperation, record: EventRecord) -> bool:
        # Caller holds self._lock.
        if op.resolved:
            logger.debug("Discarding late result of %s on %s", op.name, self.address)
            return False
        op.resolved = True
        self._bridge.push(record)
        return True

    def _fail(self, op: PendingOperation, reason: FailureReason, error: str) -> bool:
        return self._resolve(op, self._failure(op, reason, error))

    def _failure(
        self, op: PendingOperation, reason: FailureReason, error: str
    ) -> OperationFailed:
        return OperationFailed(
            address=self.address,
            operation=op.name,
            reason=reason,
            error=error,
            char_uuid=op.char_uuid,
        )
