"""Single-session connection lifecycle: connect, read, subscribe, tear down."""

from typing import Any, Optional, TYPE_CHECKING

from pulselink.ble.constants import (
    ERROR_CONNECTION_CANCELLED,
    HEART_RATE_MEASUREMENT_UUID,
    HEART_RATE_SERVICE_UUID,
    logger,
)
from pulselink.ble.coordination import ThreadCoordinator
from pulselink.ble.errors import BLEErrorHandler
from pulselink.ble.events import (
    TOPIC_CONNECTION_ESTABLISHED,
    TOPIC_CONNECTION_LOST,
    TOPIC_DEVICE_INFO,
    TOPIC_HEART_RATE,
    publish,
)
from pulselink.ble.exceptions import (
    AdapterNotReadyError,
    AlreadyConnectingError,
    ConnectionFailedError,
)
from pulselink.ble.gateway import AdapterGateway
from pulselink.ble.models import AdapterState, DeviceInfo, PeripheralHandle, Session
from pulselink.ble.notifications import NotificationStream, SubscriptionHandle
from pulselink.ble.reader import CharacteristicReader
from pulselink.ble.state import BLEStateManager, ConnectionState

if TYPE_CHECKING:
    from pulselink.ble.discovery import ScanCoordinator

REASON_REQUESTED = "requested"
REASON_TRANSPORT_LOST = "connection lost"


class SessionController:
    """
    Own the one active BLE session.

    Drives connect → service discovery → device info read → heart-rate
    subscribe, and the reverse on teardown. At most one session exists and at
    most one connect attempt is in flight; a concurrent attempt is rejected
    with AlreadyConnectingError rather than queued.

    Session state is only ever mutated here, under the state manager's lock.
    Gateway calls are always made with the lock released since transport
    callbacks (notifications, disconnects) take the same lock on the BLE
    event-loop thread.
    """

    def __init__(
        self,
        gateway: AdapterGateway,
        *,
        reader: Optional[CharacteristicReader] = None,
        stream: Optional[NotificationStream] = None,
        scanner: Optional["ScanCoordinator"] = None,
        thread_coordinator: Optional[ThreadCoordinator] = None,
    ):
        self.gateway = gateway
        self.reader = reader or CharacteristicReader(gateway)
        self.stream = stream or NotificationStream(gateway)
        self.scanner = scanner
        self.thread_coordinator = thread_coordinator or ThreadCoordinator()
        self.error_handler = BLEErrorHandler()
        self._state_manager = BLEStateManager()
        self._state_lock = self._state_manager.lock
        self._connect_in_flight = False
        self._adapter_subscription = gateway.on_adapter_state_change(
            self._on_adapter_state_change
        )

    # Observable state ------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state_manager.state

    @property
    def session(self) -> Optional[Session]:
        return self._state_manager.session

    @property
    def is_connecting(self) -> bool:
        """True while a connect attempt (including reads and subscribe) is running."""
        with self._state_lock:
            return self._connect_in_flight or self._state_manager.is_connecting

    @property
    def device_info(self) -> Optional[DeviceInfo]:
        session = self.session
        return session.device_info if session is not None else None

    @property
    def heart_rate(self) -> Optional[int]:
        session = self.session
        return session.heart_rate if session is not None else None

    # Commands --------------------------------------------------------------

    def connect(self, peripheral: PeripheralHandle) -> Session:
        """
        Connect to `peripheral` and bring the session fully up.

        Connecting to the already connected peripheral returns the existing
        session; connecting to a different one first tears the current
        session down.

        Raises:
            AlreadyConnectingError: If another connect attempt is in flight.
            AdapterNotReadyError: If the adapter is not powered on.
            ConnectionFailedError: If any step fails; the session is rolled back to idle.
        """
        with self._state_lock:
            if self._connect_in_flight or self._state_manager.is_connecting:
                raise AlreadyConnectingError()
            existing = self._state_manager.session
            if not self._state_manager.is_connected:
                existing = None
            elif existing is not None and existing.identity == peripheral.identity:
                logger.debug("Already connected to %s, skipping connect call.", peripheral.label)
                return existing
            self._connect_in_flight = True

        try:
            if existing is not None:
                logger.info(
                    "Switching from %s to %s", existing.peripheral.label, peripheral.label
                )
                self.disconnect()
            return self._establish(peripheral)
        finally:
            with self._state_lock:
                self._connect_in_flight = False

    def disconnect(self, reason: str = REASON_REQUESTED) -> None:
        """
        Tear the session down. No-op when idle; never raises.

        The heart-rate subscription is released before the transport
        disconnect so no notification lands on a torn-down session.
        """
        with self._state_lock:
            session = self._state_manager.session
            if session is None or self._state_manager.is_closing:
                return
            self._state_manager.transition_to(ConnectionState.DISCONNECTING)
            handle, transport = self._detach_resources(session)
        self._teardown(session, handle, transport, reason)

    def close(self) -> None:
        """Disconnect and stop listening for adapter changes."""
        self.disconnect()
        self._adapter_subscription.remove()
        self.thread_coordinator.cleanup()

    # Connection sequence ---------------------------------------------------

    def _establish(self, peripheral: PeripheralHandle) -> Session:
        adapter_state = self.gateway.get_adapter_state()
        if adapter_state != AdapterState.POWERED_ON:
            raise AdapterNotReadyError(adapter_state)

        session = Session(peripheral=peripheral)
        with self._state_lock:
            if not self._state_manager.transition_to(ConnectionState.CONNECTING, session):
                raise ConnectionFailedError(
                    peripheral, "previous session teardown still in progress"
                )

        logger.info("Connecting to %s (%s)", peripheral.label, peripheral.identity)
        if self.scanner is not None:
            self.error_handler.safe_cleanup(
                lambda: self.scanner.stop_scan("connecting"), "scan stop before connect"
            )

        transport: Any = None
        attached = False
        try:
            transport = self.gateway.connect(
                peripheral.identity,
                on_disconnect=lambda lost: self._on_transport_lost(session, lost),
            )
            with self._state_lock:
                self._ensure_current(session)
                session.transport = transport
                attached = True

            self.gateway.discover_services_and_characteristics(transport)
            with self._state_lock:
                self._ensure_current(session)
                self._state_manager.transition_to(ConnectionState.CONNECTED)

            info = self.reader.read_device_info(session)
            with self._state_lock:
                self._ensure_current(session)
                session.device_info = info
            publish(TOPIC_DEVICE_INFO, peripheral=peripheral, info=info)

            handle = self.stream.subscribe(
                session,
                HEART_RATE_SERVICE_UUID,
                HEART_RATE_MEASUREMENT_UUID,
                self._on_sample,
            )
            with self._state_lock:
                current = self._is_current(session)
                if current:
                    session.subscription = handle
            if not current:
                self.stream.unsubscribe(handle)
                raise ConnectionFailedError(peripheral, ERROR_CONNECTION_CANCELLED)
        except Exception as e:
            logger.warning("Failed to connect to %s: %s", peripheral.label, e)
            self._rollback(session, transport, attached)
            if isinstance(e, ConnectionFailedError):
                raise
            raise ConnectionFailedError(peripheral, e) from e

        logger.info("Connected to %s", peripheral.label)
        publish(TOPIC_CONNECTION_ESTABLISHED, session=session)
        return session

    def _is_current(self, session: Session) -> bool:
        return self._state_manager.session is session and self._state_manager.state in (
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        )

    def _ensure_current(self, session: Session) -> None:
        if not self._is_current(session):
            raise ConnectionFailedError(session.peripheral, ERROR_CONNECTION_CANCELLED)

    def _rollback(self, session: Session, transport: Any, attached: bool) -> None:
        """Undo a partial connect so no transport connection is left dangling."""
        handle: Optional[SubscriptionHandle] = None
        with self._state_lock:
            current = self._is_current(session)
            if current:
                self._state_manager.transition_to(ConnectionState.ERROR)
                handle, owned_transport = self._detach_resources(session)
            elif attached:
                # A concurrent disconnect already took (and closed) the transport
                owned_transport = None
            else:
                owned_transport = transport

        self.stream.unsubscribe(handle)
        if owned_transport is not None:
            self.error_handler.safe_cleanup(
                lambda: self.gateway.disconnect(owned_transport),
                "transport disconnect after failed connect",
            )
        if current:
            with self._state_lock:
                if self._state_manager.session is session:
                    self._state_manager.transition_to(ConnectionState.DISCONNECTED)

    # Teardown --------------------------------------------------------------

    def _detach_resources(self, session: Session):
        """Take ownership of the session's subscription and transport. Caller holds the lock."""
        handle, session.subscription = session.subscription, None
        transport, session.transport = session.transport, None
        return handle, transport

    def _teardown(
        self,
        session: Session,
        handle: Optional[SubscriptionHandle],
        transport: Any,
        reason: str,
    ) -> None:
        self.stream.unsubscribe(handle)
        if transport is not None:
            self.error_handler.safe_cleanup(
                lambda: self.gateway.disconnect(transport), "transport disconnect"
            )
        with self._state_lock:
            if self._state_manager.session is session:
                self._state_manager.transition_to(ConnectionState.DISCONNECTED)
            session.connection_state = ConnectionState.DISCONNECTED
            session.device_info = None
            session.heart_rate = None
        logger.info("Disconnected from %s (%s)", session.peripheral.label, reason)
        publish(TOPIC_CONNECTION_LOST, peripheral=session.peripheral, reason=reason)

    def _fail_session(self, session: Session, reason: str) -> None:
        """Tear down after an unrecoverable transport/adapter failure (ERROR → idle)."""
        with self._state_lock:
            if (
                self._state_manager.session is not session
                or not self._state_manager.is_connected
            ):
                return
            self._state_manager.transition_to(ConnectionState.ERROR)
            handle, transport = self._detach_resources(session)
        logger.warning("Session with %s failed: %s", session.peripheral.label, reason)
        self._teardown(session, handle, transport, reason)

    # Transport callbacks ---------------------------------------------------

    def _on_sample(self, session: Session, bpm: int) -> None:
        with self._state_lock:
            if (
                self._state_manager.session is not session
                or not self._state_manager.is_connected
            ):
                logger.debug("Ignoring heart rate sample for inactive session")
                return
            session.heart_rate = bpm
        publish(TOPIC_HEART_RATE, peripheral=session.peripheral, bpm=bpm)

    def _on_transport_lost(self, session: Session, _transport: Any) -> None:
        # Runs on the transport's event-loop thread; the teardown awaits that
        # loop, so hand it to a helper thread.
        with self._state_lock:
            if (
                self._state_manager.session is not session
                or not self._state_manager.is_connected
            ):
                logger.debug("Ignoring disconnect callback for inactive session")
                return
        self.thread_coordinator.run_in_thread(
            self._fail_session, "BLESessionTeardown", session, REASON_TRANSPORT_LOST
        )

    def _on_adapter_state_change(self, state: AdapterState) -> None:
        if state == AdapterState.POWERED_ON:
            return
        session = self.session
        if session is not None and self._state_manager.is_connected:
            self.thread_coordinator.run_in_thread(
                self._fail_session, "BLESessionTeardown", session, f"adapter {state.value}"
            )
