"""Named host callbacks and process-wide pubsub topics."""

from typing import Any, Callable, Dict, List, Tuple

from pubsub import pub

from blebridge.ble.constants import logger
from blebridge.ble.errors import BLEErrorHandler

__all__ = ["SignalEmitter", "TOPICS", "publish"]

# topic -> message data names (every topic also carries ``manager``)
TOPICS: Dict[str, Tuple[str, ...]] = {
    "blebridge.adapter.initialized": ("success", "error"),
    "blebridge.scan.started": ("timeout",),
    "blebridge.scan.ended": ("info",),
    "blebridge.device.discovered": ("device",),
    "blebridge.device.updated": ("device",),
    "blebridge.connection.started": ("address",),
    "blebridge.connection.established": ("address",),
    "blebridge.connection.failed": ("address", "error"),
    "blebridge.connection.lost": ("address", "reason"),
    "blebridge.services.discovered": ("address", "services"),
    "blebridge.characteristic.read": ("address", "char_uuid", "data"),
    "blebridge.characteristic.written": ("address", "char_uuid"),
    "blebridge.characteristic.notified": ("address", "char_uuid", "data"),
    "blebridge.characteristic.subscription": (
        "address",
        "char_uuid",
        "subscribed",
        "changed",
    ),
    "blebridge.operation.failed": ("address", "operation", "reason", "error"),
    "blebridge.error": ("message",),
}


def publish(topic: str, manager: Any, **kwargs) -> None:
    """
    Send a pubsub message, isolating the caller from listener errors.

    Parameters:
        topic (str): One of the names in `TOPICS`.
        manager: The BluetoothManager that produced the message.
        **kwargs: Message data; must match the names registered for `topic`.
    """
    BLEErrorHandler.safe_execute(
        lambda: pub.sendMessage(topic, manager=manager, **kwargs),
        error_msg=f"Error publishing {topic}",
    )


class SignalEmitter:
    """
    Minimal named-signal registry for host objects.

    Subclasses list their signal names in `SIGNALS`. Callbacks are invoked in
    registration order, on whatever thread calls `emit()`; the bridge only
    emits from the host drain step. A raising callback is logged and does
    not prevent later callbacks from running.
    """

    SIGNALS: Tuple[str, ...] = ()

    def __init__(self):
        self._callbacks: Dict[str, List[Callable[..., Any]]] = {
            name: [] for name in self.SIGNALS
        }

    def _listeners(self, signal: str) -> List[Callable[..., Any]]:
        try:
            return self._callbacks[signal]
        except KeyError:
            raise ValueError(
                f"Unknown signal {signal!r} for {type(self).__name__}"
            ) from None

    def on(self, signal: str, callback: Callable[..., Any]) -> None:
        """Register `callback` for `signal`; registering the same callback twice has no effect."""
        listeners = self._listeners(signal)
        if callback not in listeners:
            listeners.append(callback)

    def off(self, signal: str, callback: Callable[..., Any]) -> bool:
        """Remove a callback. Returns False if it was not registered."""
        listeners = self._listeners(signal)
        if callback in listeners:
            listeners.remove(callback)
            return True
        return False

    def emit(self, signal: str, *args) -> None:
        for callback in list(self._listeners(signal)):
            BLEErrorHandler.safe_execute(
                lambda cb=callback: cb(*args),
                error_msg=f"Error in {signal} callback",
            )
        logger.debug("Emitted %s%r", signal, args)
