"""Utility functions for BLE operations."""

import time
from typing import Optional

from bleak.uuids import normalize_uuid_str

from blebridge.ble.constants import ERROR_INVALID_UUID
from blebridge.ble.errors import BLEError, FailureReason


class InvalidUUIDError(BLEError):
    """A service or characteristic UUID could not be parsed."""

    error_code = "INVALID_UUID"
    reason = FailureReason.INVALID_UUID


def _sleep(delay: float) -> None:
    """
    Throttle execution for the given duration in seconds.

    Parameters:
        delay (float): Duration to sleep, in seconds.
    """
    time.sleep(delay)


def sanitize_address(address: Optional[str]) -> Optional[str]:
    """
    Normalize a BLE address or identifier by removing common separators and lowercasing.

    Parameters:
        address (Optional[str]): BLE address or identifier; may be None or only whitespace.

    Returns:
        Optional[str]: The address with "-", "_", ":", and spaces removed and converted to lowercase,
        or `None` if `address` is None or contains only whitespace.
    """
    if address is None or not address.strip():
        return None
    return (
        address.strip()
        .replace("-", "")
        .replace("_", "")
        .replace(":", "")
        .replace(" ", "")
        .lower()
    )


def normalize_uuid(uuid: str) -> str:
    """
    Return the canonical 128-bit lowercase form of a service or characteristic UUID.

    16- and 32-bit SIG UUIDs ("180d", "0000180d") are expanded against the Bluetooth base UUID.

    Raises:
        InvalidUUIDError: If `uuid` is empty or not a valid UUID string.
    """
    text = (uuid or "").strip()
    if not text:
        raise InvalidUUIDError(ERROR_INVALID_UUID.format(uuid))
    try:
        return normalize_uuid_str(text)
    except ValueError as exc:
        raise InvalidUUIDError(ERROR_INVALID_UUID.format(uuid)) from exc
