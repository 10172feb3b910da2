"""Event delivery helpers: pubsub publishing and owned callback subscriptions."""

from threading import RLock
from typing import Callable, Optional

from pubsub import pub

from pulselink.ble.constants import logger
from pulselink.ble.errors import BLEErrorHandler

TOPIC_ADAPTER_STATE = "pulselink.adapter.state"
TOPIC_SCAN_STARTED = "pulselink.scan.started"
TOPIC_SCAN_DISCOVERED = "pulselink.scan.discovered"
TOPIC_SCAN_STOPPED = "pulselink.scan.stopped"
TOPIC_CONNECTION_ESTABLISHED = "pulselink.connection.established"
TOPIC_CONNECTION_LOST = "pulselink.connection.lost"
TOPIC_DEVICE_INFO = "pulselink.device.info"
TOPIC_HEART_RATE = "pulselink.heartrate"


def publish(topic: str, **kwargs) -> None:
    """
    Send a pubsub message, logging instead of propagating listener failures.

    Listeners run on whichever thread produced the event (caller, timer or
    BLE event loop), so a misbehaving listener must not unwind the producer.
    """
    BLEErrorHandler.safe_execute(
        lambda: pub.sendMessage(topic, **kwargs),
        error_msg=f"Error publishing {topic}",
    )


class EventSubscription:
    """
    A callback registration with a deterministic, idempotent ``remove()``.

    Events delivered after removal are dropped. An optional ``on_remove``
    hook releases whatever the producer holds for this registration (e.g. a
    GATT notification) and runs at most once.
    """

    def __init__(
        self,
        callback: Callable[..., None],
        on_remove: Optional[Callable[[], None]] = None,
        name: str = "subscription",
    ):
        self._callback = callback
        self._on_remove = on_remove
        self._lock = RLock()
        self._active = True
        self.name = name

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    def deliver(self, *args, **kwargs) -> bool:
        """
        Invoke the callback if still registered.

        Returns:
            bool: `True` if the callback ran, `False` if the event was dropped.
        """
        with self._lock:
            if not self._active:
                logger.debug("Dropping event for removed %s", self.name)
                return False
            callback = self._callback
        callback(*args, **kwargs)
        return True

    def remove(self) -> None:
        """Unregister the callback; safe to call any number of times."""
        with self._lock:
            if not self._active:
                return
            self._active = False
            on_remove = self._on_remove
            self._on_remove = None
        if on_remove is not None:
            BLEErrorHandler.safe_cleanup(on_remove, f"{self.name} removal")

    def __repr__(self):
        return f"EventSubscription(name={self.name!r}, active={self.active})"
