"""Time-bounded BLE discovery with identity de-duplication."""

import threading
from threading import RLock
from typing import Callable, Dict, List, Optional, Tuple

from pulselink.ble.constants import BLEConfig, logger
from pulselink.ble.errors import BLEErrorHandler
from pulselink.ble.events import (
    TOPIC_SCAN_DISCOVERED,
    TOPIC_SCAN_STARTED,
    TOPIC_SCAN_STOPPED,
    EventSubscription,
    publish,
)
from pulselink.ble.exceptions import AdapterNotReadyError
from pulselink.ble.gateway import AdapterGateway
from pulselink.ble.models import AdapterState, AdvertisementEvent, PeripheralHandle

DiscoveredCallback = Callable[[PeripheralHandle], None]
TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]

STOP_REASON_MANUAL = "stopped"
STOP_REASON_WINDOW = "window elapsed"


class DiscoverySet:
    """Insertion-ordered peripherals keyed by identity.

    Not thread-safe on its own; ScanCoordinator serialises access.
    """

    def __init__(self):
        self._by_identity: Dict[str, PeripheralHandle] = {}

    def add(self, peripheral: PeripheralHandle) -> bool:
        """Append `peripheral` unless its identity is already present."""
        if peripheral.identity in self._by_identity:
            return False
        self._by_identity[peripheral.identity] = peripheral
        return True

    def get(self, identity: str) -> Optional[PeripheralHandle]:
        return self._by_identity.get(identity)

    def clear(self) -> None:
        self._by_identity.clear()

    def snapshot(self) -> Tuple[PeripheralHandle, ...]:
        return tuple(self._by_identity.values())

    def __contains__(self, identity: object) -> bool:
        return identity in self._by_identity

    def __len__(self) -> int:
        return len(self._by_identity)


class ScanWindow:
    """
    Token for one scan: owns the expiry timer and the advertisement subscription.

    Closing the token is the single stop path for both manual stops and
    window expiry; once closed, late advertisements and a late timer firing
    are ignored.
    """

    def __init__(self, duration: float):
        self.duration = duration
        self.timer: Optional[threading.Timer] = None
        self.subscription: Optional[EventSubscription] = None
        self.started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True
        if self.timer is not None:
            self.timer.cancel()
        if self.subscription is not None:
            self.subscription.remove()


def _default_timer_factory(interval: float, function: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, function)
    timer.name = "BLEScanWindow"
    timer.daemon = True
    return timer


class ScanCoordinator:
    """Runs discovery windows against an AdapterGateway and keeps the DiscoverySet."""

    def __init__(
        self,
        gateway: AdapterGateway,
        *,
        window_seconds: float = BLEConfig.SCAN_WINDOW_SECONDS,
        timer_factory: Optional[TimerFactory] = None,
    ):
        """
        Initialize the ScanCoordinator.

        Parameters:
            gateway (AdapterGateway): Radio capability used to scan.
            window_seconds (float): Length of each discovery window.
            timer_factory (optional): Callable `(interval, function) -> Timer`; overridable for deterministic tests.
        """
        self.gateway = gateway
        self.window_seconds = window_seconds
        self.timer_factory: TimerFactory = timer_factory or _default_timer_factory
        self.error_handler = BLEErrorHandler()
        self._lock = RLock()
        self._devices = DiscoverySet()
        self._window: Optional[ScanWindow] = None
        self._listeners: List[DiscoveredCallback] = []
        self._adapter_subscription = gateway.on_adapter_state_change(
            self._on_adapter_state_change
        )

    @property
    def is_scanning(self) -> bool:
        with self._lock:
            return self._window is not None

    @property
    def devices(self) -> Tuple[PeripheralHandle, ...]:
        """Snapshot of discovered peripherals in first-seen order."""
        with self._lock:
            return self._devices.snapshot()

    def find(self, identity: str) -> Optional[PeripheralHandle]:
        with self._lock:
            return self._devices.get(identity)

    def start_scan(self, on_discovered: Optional[DiscoveredCallback] = None) -> bool:
        """
        Start a discovery window.

        Parameters:
            on_discovered (optional): Called with each newly discovered PeripheralHandle for this scan.

        Returns:
            bool: `True` if a new scan started, `False` if one was already running.

        Raises:
            AdapterNotReadyError: If the adapter is not powered on or discovery could not start.
        """
        if self.is_scanning:
            logger.debug("Scan already in progress; ignoring start request")
            return False

        state = self.gateway.get_adapter_state()
        if state != AdapterState.POWERED_ON:
            raise AdapterNotReadyError(state)

        with self._lock:
            if self._window is not None:
                logger.debug("Scan already in progress; ignoring start request")
                return False
            self._devices.clear()
            self._listeners = [on_discovered] if on_discovered else []
            window = ScanWindow(self.window_seconds)
            self._window = window

        # The gateway call stays outside the lock: advertisement callbacks may
        # fire on the scanner's event loop before start_discovery returns.
        try:
            subscription = self.gateway.start_discovery(
                lambda event: self._on_advertisement(window, event),
                scanning_mode=BLEConfig.SCANNING_MODE,
            )
        except Exception as e:
            with self._lock:
                if self._window is window:
                    self._window = None
                    self._listeners = []
                window.close()
            logger.warning("Failed to start discovery: %s", e)
            state = self.gateway.get_adapter_state()
            if state == AdapterState.POWERED_ON:
                state = AdapterState.UNKNOWN
            raise AdapterNotReadyError(state) from e

        with self._lock:
            window.subscription = subscription
            stopped_early = window.closed
            if not stopped_early:
                window.timer = self.timer_factory(
                    self.window_seconds,
                    lambda: self._finish(window, STOP_REASON_WINDOW),
                )
                window.timer.start()
                window.started = True
        if stopped_early:
            subscription.remove()
            self.error_handler.safe_cleanup(self.gateway.stop_discovery, "discovery stop")
            return True

        logger.info("Scanning for BLE peripherals (%.0f seconds)...", self.window_seconds)
        publish(TOPIC_SCAN_STARTED, window=self.window_seconds)
        return True

    def stop_scan(self, reason: str = STOP_REASON_MANUAL) -> None:
        """Stop the active scan; no-op when none is running."""
        with self._lock:
            window = self._window
        if window is not None:
            self._finish(window, reason)

    def reset_list(self) -> None:
        """Forget all discovered peripherals without touching the adapter."""
        with self._lock:
            self._devices.clear()
        logger.debug("Discovery list reset")

    def close(self) -> None:
        self.stop_scan("closed")
        self._adapter_subscription.remove()

    def _on_advertisement(self, window: ScanWindow, event: AdvertisementEvent) -> None:
        if not event.name:
            return
        with self._lock:
            if window is not self._window or window.closed:
                return
            peripheral = PeripheralHandle.from_advertisement(event)
            if not self._devices.add(peripheral):
                return
            listeners = list(self._listeners)
        logger.debug("Discovered %s (%s)", peripheral.name, peripheral.identity)
        for listener in listeners:
            self.error_handler.safe_execute(
                lambda listener=listener: listener(peripheral),
                error_msg="Error in discovery listener",
            )
        publish(TOPIC_SCAN_DISCOVERED, peripheral=peripheral)

    def _finish(self, window: ScanWindow, reason: str) -> None:
        with self._lock:
            if window is not self._window:
                return
            self._window = None
            self._listeners = []
            window.close()
            if not window.started:
                # Discovery never came up; start_scan owns the failure.
                return
            devices = self._devices.snapshot()
        self.error_handler.safe_cleanup(self.gateway.stop_discovery, "discovery stop")
        logger.info("Scan stopped (%s); %d peripheral(s) found", reason, len(devices))
        publish(TOPIC_SCAN_STOPPED, reason=reason, devices=devices)

    def _on_adapter_state_change(self, state: AdapterState) -> None:
        if state != AdapterState.POWERED_ON:
            self.stop_scan(f"adapter {state.value}")
