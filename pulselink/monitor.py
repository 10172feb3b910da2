"""The public API for the pulselink heart-rate monitor."""

import atexit
import contextlib
from threading import RLock
from typing import Callable, Optional, Tuple

from pulselink.ble.constants import BLEConfig, ERROR_UNKNOWN_PERIPHERAL, logger
from pulselink.ble.discovery import ScanCoordinator, TimerFactory
from pulselink.ble.events import TOPIC_ADAPTER_STATE, publish
from pulselink.ble.exceptions import ConnectionFailedError
from pulselink.ble.gateway import AdapterGateway, BleakAdapterGateway
from pulselink.ble.models import AdapterState, DeviceInfo, PeripheralHandle, Session
from pulselink.ble.session import SessionController
from pulselink.ble.state import ConnectionState
from pulselink.ble.utils import sanitize_address


class HeartRateMonitor:
    """
    Scan for heart-rate peripherals, connect to one and follow its readings.

    Everything observable here is also published over pubsub (see
    `pulselink.ble.events`), so a UI can either poll the properties or
    subscribe to the topics.

    Example:
        with HeartRateMonitor() as monitor:
            monitor.start_scan()
            ...
            monitor.connect("AA:BB:CC:DD:EE:FF")
            print(monitor.heart_rate)
    """

    def __init__(
        self,
        gateway: Optional[AdapterGateway] = None,
        *,
        window_seconds: float = BLEConfig.SCAN_WINDOW_SECONDS,
        timer_factory: Optional[TimerFactory] = None,
        register_exit_handler: bool = True,
    ) -> None:
        """
        Initialize the monitor.

        Parameters:
            gateway (Optional[AdapterGateway]): Radio capability; a BleakAdapterGateway is created (and owned) when omitted.
            window_seconds (float): Length of each scan window.
            timer_factory (optional): Scan window timer factory, mainly for tests.
            register_exit_handler (bool): If True, close the monitor at interpreter exit so BlueZ is not left holding the connection.
        """
        self._lock = RLock()
        self._closed = False
        self._owns_gateway = gateway is None
        self.gateway: AdapterGateway = gateway or BleakAdapterGateway()
        self.scanner = ScanCoordinator(
            self.gateway, window_seconds=window_seconds, timer_factory=timer_factory
        )
        self.session_controller = SessionController(self.gateway, scanner=self.scanner)
        self._adapter_subscription = self.gateway.on_adapter_state_change(
            self._on_adapter_state_change
        )
        self._exit_handler: Optional[Callable[[], None]] = None
        if register_exit_handler:
            self._exit_handler = atexit.register(self.close)

    def __repr__(self):
        return (
            f"HeartRateMonitor(state={self.connection_state.value!r}, "
            f"devices={len(self.devices)}, scanning={self.is_scanning})"
        )

    def __enter__(self) -> "HeartRateMonitor":
        return self

    def __exit__(self, _type, _value, _traceback):
        self.close()

    # Observable state ------------------------------------------------------

    @property
    def adapter_state(self) -> AdapterState:
        return self.gateway.get_adapter_state()

    @property
    def devices(self) -> Tuple[PeripheralHandle, ...]:
        return self.scanner.devices

    @property
    def is_scanning(self) -> bool:
        return self.scanner.is_scanning

    @property
    def session(self) -> Optional[Session]:
        return self.session_controller.session

    @property
    def connection_state(self) -> ConnectionState:
        return self.session_controller.state

    @property
    def is_connecting(self) -> bool:
        return self.session_controller.is_connecting

    @property
    def device_info(self) -> Optional[DeviceInfo]:
        return self.session_controller.device_info

    @property
    def heart_rate(self) -> Optional[int]:
        return self.session_controller.heart_rate

    # Commands --------------------------------------------------------------

    def start_scan(self) -> bool:
        """
        Start a scan window.

        Returns:
            bool: `True` if a scan started; `False` if one is already running or a connect attempt is in flight.

        Raises:
            AdapterNotReadyError: If the adapter is not powered on.
        """
        if self.session_controller.is_connecting:
            logger.debug("Connect attempt in flight; not starting a scan")
            return False
        return self.scanner.start_scan()

    def reset_list(self) -> None:
        """Drop the current session and forget all discovered peripherals."""
        self.session_controller.disconnect("reset")
        self.scanner.reset_list()

    def find_peripheral(self, peripheral_id: str) -> Optional[PeripheralHandle]:
        """
        Look up a discovered peripheral by identity.

        The comparison ignores case and common separators (':', '-', '_' and
        spaces), so "aa-bb-cc-dd-ee-ff" matches "AA:BB:CC:DD:EE:FF".
        """
        exact = self.scanner.find(peripheral_id)
        if exact is not None:
            return exact
        wanted = sanitize_address(peripheral_id)
        if wanted is None:
            return None
        for peripheral in self.scanner.devices:
            if sanitize_address(peripheral.identity) == wanted:
                return peripheral
        return None

    def connect(self, peripheral_id: str) -> Session:
        """
        Connect to a peripheral found by the last scan.

        Raises:
            ConnectionFailedError: If `peripheral_id` was not discovered, or the connection fails.
            AlreadyConnectingError: If another connect attempt is in flight.
            AdapterNotReadyError: If the adapter is not powered on.
        """
        peripheral = self.find_peripheral(peripheral_id)
        if peripheral is None:
            raise ConnectionFailedError(None, ERROR_UNKNOWN_PERIPHERAL.format(peripheral_id))
        return self.session_controller.connect(peripheral)

    def disconnect(self) -> None:
        self.session_controller.disconnect()

    def close(self) -> None:
        """Stop scanning, tear down the session and release the adapter. Idempotent."""
        with self._lock:
            if self._closed:
                logger.debug("HeartRateMonitor.close called on already closed monitor; ignoring")
                return
            self._closed = True

        self.scanner.close()
        self.session_controller.close()
        self._adapter_subscription.remove()
        if self._owns_gateway:
            self.gateway.close()

        if self._exit_handler is not None:
            with contextlib.suppress(ValueError):
                atexit.unregister(self._exit_handler)
            self._exit_handler = None

    def _on_adapter_state_change(self, state: AdapterState) -> None:
        publish(TOPIC_ADAPTER_STATE, state=state)
