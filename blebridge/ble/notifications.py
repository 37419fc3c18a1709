"""BLE notification subscription tracking."""

from threading import RLock
from typing import Set, Tuple

__all__ = ["NotificationManager"]


class NotificationManager:
    """
    Track which characteristics of one connection currently deliver notifications.

    Keys are normalized ``(service_uuid, char_uuid)`` pairs. The set is only
    changed after the transport confirmed the toggle, so it always reflects
    what the peripheral was actually told.
    """

    def __init__(self):
        self._active_subscriptions: Set[Tuple[str, str]] = set()
        self._lock = RLock()

    def add(self, service_uuid: str, char_uuid: str) -> bool:
        """
        Record an active subscription.

        Returns:
            bool: True if the characteristic was not subscribed before.
        """
        with self._lock:
            key = (service_uuid, char_uuid)
            if key in self._active_subscriptions:
                return False
            self._active_subscriptions.add(key)
            return True

    def remove(self, service_uuid: str, char_uuid: str) -> bool:
        """
        Forget a subscription.

        Returns:
            bool: True if the characteristic had been subscribed.
        """
        with self._lock:
            key = (service_uuid, char_uuid)
            if key not in self._active_subscriptions:
                return False
            self._active_subscriptions.discard(key)
            return True

    def is_subscribed(self, service_uuid: str, char_uuid: str) -> bool:
        with self._lock:
            return (service_uuid, char_uuid) in self._active_subscriptions

    def cleanup_all(self) -> None:
        """Forget every subscription, used when the link goes away."""
        with self._lock:
            self._active_subscriptions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._active_subscriptions)
