"""Adapter lifecycle and scan sessions."""

import asyncio
from typing import TYPE_CHECKING, Dict, Optional

from blebridge.ble.constants import BLEConfig, ERROR_ADAPTER_NOT_READY, logger
from blebridge.ble.discovery import DiscoveredDevice
from blebridge.ble.errors import BLEError
from blebridge.ble.events import (
    AdapterErrorOccurred,
    AdapterInitialized,
    DeviceFound,
    DeviceUpdated,
    ScanEnded,
    ScanStarted,
)
from blebridge.ble.state import AdapterState, AdapterStateManager

if TYPE_CHECKING:
    from blebridge.ble.context import BLEContext

__all__ = ["AdapterController"]

SCAN_REASON_TIMEOUT = "timeout"
SCAN_REASON_STOPPED = "stopped"
SCAN_REASON_ERROR = "error"
SCAN_REASON_NOT_SCANNING = "not scanning"


class _ScanSession:
    """State of one discovery session; `stop_event` lives on the runtime loop."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self.stop_event: Optional[asyncio.Event] = None
        self.stop_requested = False
        self.ended = False

    def request_stop(self) -> None:
        # Runs on the runtime loop thread
        if self.stop_event is not None:
            self.stop_event.set()


class AdapterController:
    """
    Wraps the single Bluetooth adapter: initialization, capability query and scanning.

    Host-facing calls return immediately. Initialization results arrive as
    ``AdapterInitialized``; every scan session produces ``ScanStarted``
    followed by exactly one ``ScanEnded``.
    """

    def __init__(self, context: "BLEContext"):
        self._context = context
        self._state = AdapterStateManager()
        self._lock = self._state.lock
        self._session: Optional[_ScanSession] = None
        self._info: Dict[str, Optional[str]] = {}

    @property
    def state(self) -> AdapterState:
        return self._state.state

    @property
    def is_ready(self) -> bool:
        return self._state.is_ready

    @property
    def is_scanning(self) -> bool:
        with self._lock:
            return self._session is not None

    @property
    def info(self) -> Dict[str, Optional[str]]:
        """Name and address of the adapter in use; empty until initialized."""
        with self._lock:
            return dict(self._info) if self._state.is_ready else {}

    def initialize(self) -> bool:
        """
        Start adapter initialization on the runtime.

        Calling this while initialization is running or already succeeded is
        a no-op and does not produce another ``AdapterInitialized``.

        Returns:
            bool: True if a new initialization was started.
        """
        with self._lock:
            if self._state.state in (AdapterState.INITIALIZING, AdapterState.READY):
                logger.debug("Adapter initialize ignored in state %s", self.state.value)
                return False
            self._state.transition_to(AdapterState.INITIALIZING)
            try:
                self._context.runtime.spawn(self._initialize())
            except BLEError as exc:
                logger.error("Adapter initialization could not start: %s", exc)
                self._state.transition_to(AdapterState.FAILED)
                self._context.bridge.push(AdapterInitialized(False, str(exc)))
                return False
        return True

    async def _initialize(self) -> None:
        try:
            adapters = await self._context.transport.enumerate_adapters()
        except Exception as exc:  # noqa: BLE001 - result is reported as an event
            if not isinstance(exc, BLEError):
                logger.exception("Unexpected error initializing adapter")
            with self._lock:
                if self._state.transition_to(AdapterState.FAILED):
                    logger.warning("Bluetooth adapter initialization failed: %s", exc)
                    self._context.bridge.push(AdapterInitialized(False, str(exc)))
            return

        with self._lock:
            if not self._state.transition_to(AdapterState.READY):
                return
            self._info = dict(adapters[0]) if adapters else {}
            self._context.bridge.push(AdapterInitialized(True))
        logger.info("Bluetooth adapter ready: %s", self._info.get("name"))

    def start_scan(self, timeout: float = BLEConfig.DEFAULT_SCAN_TIMEOUT) -> bool:
        """
        Begin a discovery session.

        The previous session's device table is cleared. ``ScanStarted`` is
        queued before this call returns; the session ends on `stop_scan()`,
        on transport failure, or after `timeout` seconds when `timeout` > 0.

        Returns:
            bool: True if a new session was started.
        """
        with self._lock:
            if not self._state.is_ready:
                logger.warning("Cannot start scan: %s", ERROR_ADAPTER_NOT_READY)
                self._context.bridge.push(
                    AdapterErrorOccurred(ERROR_ADAPTER_NOT_READY, "ADAPTER_NOT_READY")
                )
                return False
            if self._session is not None:
                logger.warning("Scan already in progress; ignoring start_scan")
                return False
            session = _ScanSession(float(timeout))
            self._session = session
            self._context.registry.clear_devices()
            self._context.bridge.push(ScanStarted(session.timeout))
            try:
                self._context.runtime.spawn(self._run_scan(session))
            except BLEError as exc:
                self._context.bridge.push(AdapterErrorOccurred(str(exc), exc.error_code))
                self._finish_scan(session, SCAN_REASON_ERROR, str(exc))
                return False
        logger.info("Scanning for BLE devices (timeout %.1fs)", session.timeout)
        return True

    def stop_scan(self) -> bool:
        """
        End the active discovery session.

        With no session active, ``ScanEnded(was_scanning=False)`` is queued
        immediately. A session that is already stopping still ends with its
        own single ``ScanEnded``.

        Returns:
            bool: True if a running session was asked to stop.
        """
        with self._lock:
            session = self._session
            if session is None:
                self._context.bridge.push(
                    ScanEnded(
                        was_scanning=False,
                        reason=SCAN_REASON_NOT_SCANNING,
                        device_count=self._context.registry.device_count(),
                    )
                )
                return False
            if session.stop_requested:
                return True
            session.stop_requested = True
        self._context.runtime.call_soon(session.request_stop)
        return True

    async def _run_scan(self, session: _ScanSession) -> None:
        session.stop_event = asyncio.Event()
        if session.stop_requested:
            session.stop_event.set()

        transport = self._context.transport
        reason, error = SCAN_REASON_STOPPED, ""
        try:
            await transport.start_scan(lambda device: self._on_advertisement(session, device))
            if session.timeout > 0:
                try:
                    await asyncio.wait_for(session.stop_event.wait(), session.timeout)
                except asyncio.TimeoutError:
                    reason = SCAN_REASON_TIMEOUT
            else:
                await session.stop_event.wait()
        except Exception as exc:  # noqa: BLE001 - result is reported as an event
            if isinstance(exc, BLEError):
                logger.warning("Scan failed: %s", exc)
            else:
                logger.exception("Unexpected error during scan")
            reason, error = SCAN_REASON_ERROR, str(exc)
            self._context.bridge.push(
                AdapterErrorOccurred(str(exc), getattr(exc, "error_code", "SCAN_FAILED"))
            )
        finally:
            try:
                await transport.stop_scan()
            except Exception as exc:  # noqa: BLE001 - the session must still end
                logger.debug("Error stopping scan: %s", exc)
            finally:
                self._finish_scan(session, reason, error)

    def _finish_scan(self, session: _ScanSession, reason: str, error: str = "") -> None:
        with self._lock:
            if session.ended:
                return
            session.ended = True
            if self._session is session:
                self._session = None
            count = self._context.registry.device_count()
            self._context.bridge.push(
                ScanEnded(was_scanning=True, reason=reason, device_count=count, error=error)
            )
        logger.info("Scan ended (%s): %d device(s)", reason, count)

    def _on_advertisement(self, session: _ScanSession, device: DiscoveredDevice) -> None:
        with self._lock:
            if session.ended or self._session is not session:
                return
            result = self._context.registry.record_advertisement(device)
            if result is None:
                return
            snapshot, is_new = result
            if is_new:
                logger.debug("Discovered %s (%s)", snapshot.address, snapshot.name)
                self._context.bridge.push(DeviceFound(snapshot.address, snapshot))
            else:
                self._context.bridge.push(DeviceUpdated(snapshot.address, snapshot))

    def reset(self) -> None:
        """End the active session and forget adapter state; used at shutdown."""
        with self._lock:
            session = self._session
            if session is not None:
                self._finish_scan(session, SCAN_REASON_STOPPED)
            self._info = {}
            self._state.reset()
