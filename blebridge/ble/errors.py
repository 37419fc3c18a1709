"""Error taxonomy and error handling helpers for BLE operations."""

from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Optional

from bleak.exc import BleakError

from blebridge.ble.constants import logger

__all__ = [
    "FailureReason",
    "BLEError",
    "RuntimeInitError",
    "AdapterError",
    "BLEConnectionError",
    "UnsupportedOperationError",
    "TransportOperationError",
    "NotConnectedError",
    "BLEErrorHandler",
]


class FailureReason(Enum):
    """Closed set of reasons reported with ``OperationFailed`` events."""

    UNSUPPORTED = "unsupported"
    DISCONNECTED = "disconnected"
    NOT_CONNECTED = "not_connected"
    TRANSPORT = "transport"
    INVALID_UUID = "invalid_uuid"


class BLEError(Exception):
    """Base class for every error raised by the BLE bridge."""

    error_code = "INTERNAL_ERROR"
    reason = FailureReason.TRANSPORT
    retryable = False

    def __init__(self, message: str = "", *, error_code: Optional[str] = None):
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code

    @property
    def is_retryable(self) -> bool:
        """Whether re-issuing the failed request can reasonably succeed."""
        return self.retryable

    def __str__(self) -> str:
        message = super().__str__()
        return message or self.error_code


class RuntimeInitError(BLEError):
    """The background execution context could not be created."""

    error_code = "RUNTIME_INIT_FAILED"


class AdapterError(BLEError):
    """The Bluetooth adapter is unavailable, disabled, or failed to scan."""

    error_code = "INITIALIZATION_FAILED"


class BLEConnectionError(BLEError):
    """Transport link failure or unsolicited drop; always ends the connection."""

    error_code = "CONNECTION_FAILED"
    reason = FailureReason.DISCONNECTED
    retryable = True


class UnsupportedOperationError(BLEError):
    """The target UUID is unknown or lacks the capability the operation needs."""

    error_code = "UNSUPPORTED_OPERATION"
    reason = FailureReason.UNSUPPORTED


class TransportOperationError(BLEError):
    """A read, write or subscription failed on the wire."""

    error_code = "OPERATION_FAILED"
    reason = FailureReason.TRANSPORT
    retryable = True


class NotConnectedError(BLEError):
    """An operation was issued against a connection that is not connected."""

    error_code = "NOT_CONNECTED"
    reason = FailureReason.NOT_CONNECTED


class BLEErrorHandler:
    """
    Helper class for consistent error handling in BLE operations.

    Provides static methods for the standard patterns used by the bridge:
    running host callbacks without letting them break the drain loop, and
    cleanup steps that never raise.
    """

    @staticmethod
    def safe_execute(
        func,
        default_return=None,
        log_error: bool = True,
        error_msg: str = "Error in operation",
        reraise: bool = False,
    ):
        """
        Execute a zero-argument callable and return its result, falling back to a provided default on failure.

        BLE-level failures (BLEError, BleakError, FutureTimeoutError) are logged at debug level; anything else is logged with a traceback.

        Parameters:
            func (callable): A zero-argument callable to execute.
            default_return: Value to return if execution fails.
            log_error (bool): If True, log caught exceptions.
            error_msg (str): Message prefix used when logging errors.
            reraise (bool): If True, re-raise any caught exception instead of returning default_return.

        Returns:
            The value returned by `func()` on success, or `default_return` if execution failed.
        """
        try:
            return func()
        except (BLEError, BleakError, FutureTimeoutError) as e:
            if log_error:
                logger.debug("%s: %s", error_msg, e)
            if reraise:
                raise
            return default_return
        except Exception:
            if log_error:
                logger.exception("%s", error_msg)
            if reraise:
                raise
            return default_return

    @staticmethod
    def safe_cleanup(func, cleanup_name: str = "cleanup operation"):
        """
        Execute a cleanup callable and suppress any exceptions raised during its execution.

        Parameters:
            func (Callable[[], Any]): Zero-argument cleanup function to execute.
            cleanup_name (str): Human-readable name for the cleanup operation used in the log message.
        """
        try:
            func()
        except Exception as e:  # noqa: BLE001 - cleanup paths must not raise
            logger.debug("Error during %s: %s", cleanup_name, e)
