"""Heart-rate notification subscription management."""

import struct
from threading import RLock
from typing import Callable, Optional

from pulselink.ble.constants import BLEConfig, logger
from pulselink.ble.errors import BLEErrorHandler
from pulselink.ble.events import EventSubscription
from pulselink.ble.exceptions import NotificationDecodeError
from pulselink.ble.gateway import AdapterGateway
from pulselink.ble.models import Session

SampleCallback = Callable[[Session, int], None]

_HEART_RATE_HEADER = struct.Struct("<BB")


def decode_heart_rate(payload: bytes) -> int:
    """
    Decode the beats-per-minute value of a Heart Rate Measurement payload.

    Byte 0 carries the flags field and is not interpreted; byte 1 is the
    8-bit BPM value.

    Raises:
        NotificationDecodeError: If the payload is shorter than two bytes.
    """
    try:
        _flags, bpm = _HEART_RATE_HEADER.unpack_from(bytes(payload))
    except struct.error as e:
        raise NotificationDecodeError(
            f"Heart rate payload too short ({len(payload)} bytes)"
        ) from e
    return bpm


class SubscriptionHandle:
    """One live notification registration, owned by a Session."""

    def __init__(self, session: Session, characteristic_id: str):
        self.session = session
        self.characteristic_id = characteristic_id
        self._lock = RLock()
        self._released = False
        self._transport_subscription: Optional[EventSubscription] = None

    @property
    def active(self) -> bool:
        with self._lock:
            return not self._released

    def attach(self, transport_subscription: EventSubscription) -> None:
        with self._lock:
            released = self._released
            if not released:
                self._transport_subscription = transport_subscription
        if released:
            transport_subscription.remove()

    def release(self) -> None:
        """Stop delivering payloads and drop the transport registration. Idempotent."""
        with self._lock:
            if self._released:
                return
            self._released = True
            transport_subscription, self._transport_subscription = (
                self._transport_subscription,
                None,
            )
        if transport_subscription is not None:
            transport_subscription.remove()

    def __repr__(self):
        return (
            f"SubscriptionHandle(characteristic={self.characteristic_id!r}, "
            f"active={self.active})"
        )


class NotificationStream:
    """
    Manage the single heart-rate subscription and decode its payloads.

    Bad payloads are logged and skipped; the subscription stays up.
    """

    def __init__(self, gateway: AdapterGateway):
        self.gateway = gateway
        self.error_handler = BLEErrorHandler()
        self._lock = RLock()
        self._handle: Optional[SubscriptionHandle] = None
        self._malformed_notification_count = 0

    @property
    def handle(self) -> Optional[SubscriptionHandle]:
        with self._lock:
            return self._handle

    def subscribe(
        self,
        session: Session,
        service_id: str,
        characteristic_id: str,
        on_sample: SampleCallback,
    ) -> SubscriptionHandle:
        """
        Register the stream's one live subscription, releasing any previous one.

        Parameters:
            session (Session): Connected session whose transport carries the notifications.
            service_id (str): UUID of the service containing the characteristic.
            characteristic_id (str): UUID of the notifying characteristic.
            on_sample (Callable[[Session, int], None]): Receives each decoded BPM value.

        Returns:
            SubscriptionHandle: Handle to pass to `unsubscribe`.
        """
        with self._lock:
            previous, self._handle = self._handle, None
        if previous is not None:
            self.unsubscribe(previous)

        handle = SubscriptionHandle(session, characteristic_id)
        transport_subscription = self.gateway.subscribe_characteristic(
            session.transport,
            service_id,
            characteristic_id,
            lambda payload: self._on_payload(handle, payload, on_sample),
        )
        handle.attach(transport_subscription)
        with self._lock:
            self._handle = handle
            self._malformed_notification_count = 0
        logger.debug("Subscribed to %s on %s", characteristic_id, session.peripheral.label)
        return handle

    def unsubscribe(self, handle: Optional[SubscriptionHandle]) -> None:
        """Release `handle`; never raises and may be called repeatedly."""
        if handle is None:
            return
        self.error_handler.safe_cleanup(handle.release, "notification unsubscribe")
        with self._lock:
            if self._handle is handle:
                self._handle = None

    def _handle_malformed(self, reason: str, exc_info: bool = False) -> None:
        """
        Track malformed notifications and warn when a threshold is reached.

        The counter resets after the warning and on every well-formed payload.
        """
        with self._lock:
            self._malformed_notification_count += 1
            count = self._malformed_notification_count
            if count >= BLEConfig.MALFORMED_NOTIFICATION_THRESHOLD:
                self._malformed_notification_count = 0
        logger.debug("%s", reason, exc_info=exc_info)
        if count >= BLEConfig.MALFORMED_NOTIFICATION_THRESHOLD:
            logger.warning(
                "Received %d malformed heart rate notifications. Check BLE connection stability.",
                count,
            )

    def _on_payload(
        self, handle: SubscriptionHandle, payload: bytes, on_sample: SampleCallback
    ) -> None:
        if not handle.active:
            logger.debug("Dropping notification for released subscription")
            return
        try:
            bpm = decode_heart_rate(payload)
        except NotificationDecodeError as e:
            self._handle_malformed(f"Malformed heart rate notification; skipping: {e}")
            return
        with self._lock:
            self._malformed_notification_count = 0
        logger.debug("Heart rate: %d BPM", bpm)
        self.error_handler.safe_execute(
            lambda: on_sample(handle.session, bpm),
            error_msg="Error in heart rate sample handler",
        )
