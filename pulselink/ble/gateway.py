"""Adapter gateway: the radio capability surface consumed by the session core."""

from abc import ABC, abstractmethod
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple

from bleak.exc import BleakError

from pulselink.ble.client import BLEClient
from pulselink.ble.constants import (
    BLEAK_VERSION,
    BLEConfig,
    ERROR_CHARACTERISTIC_NOT_FOUND,
    logger,
)
from pulselink.ble.errors import BLEErrorHandler
from pulselink.ble.events import EventSubscription
from pulselink.ble.models import AdapterState, AdvertisementEvent

AdvertisementCallback = Callable[[AdvertisementEvent], None]
NotificationCallback = Callable[[bytes], None]
AdapterStateCallback = Callable[[AdapterState], None]
DisconnectCallback = Callable[[Any], None]

# Substrings of backend error text (or BlueZ D-Bus error names) mapped to the
# adapter state they imply. First match wins.
_ADAPTER_ERROR_PATTERNS: Tuple[Tuple[str, AdapterState], ...] = (
    ("resetting", AdapterState.RESETTING),
    ("org.bluez.error.notready", AdapterState.POWERED_OFF),
    ("powered off", AdapterState.POWERED_OFF),
    ("turned off", AdapterState.POWERED_OFF),
    ("not powered", AdapterState.POWERED_OFF),
    ("poweredoff", AdapterState.POWERED_OFF),
    ("not authorized", AdapterState.UNAUTHORIZED),
    ("unauthorized", AdapterState.UNAUTHORIZED),
    ("permission", AdapterState.UNAUTHORIZED),
    ("access denied", AdapterState.UNAUTHORIZED),
    ("accessdenied", AdapterState.UNAUTHORIZED),
    ("org.bluez.error.notpermitted", AdapterState.UNAUTHORIZED),
    ("no bluetooth adapters", AdapterState.UNSUPPORTED),
    ("adapter not found", AdapterState.UNSUPPORTED),
    ("not supported", AdapterState.UNSUPPORTED),
    ("unsupported", AdapterState.UNSUPPORTED),
)


def classify_adapter_error(error: BaseException) -> AdapterState:
    """
    Infer the adapter state implied by a backend failure.

    Parameters:
        error (BaseException): Exception raised while starting a scan or probing the adapter.

    Returns:
        AdapterState: The matching state, or `AdapterState.UNKNOWN` when the text is not recognised.
    """
    text = " ".join(
        str(part)
        for part in (error, getattr(error, "dbus_error", None))
        if part
    ).lower()
    for needle, state in _ADAPTER_ERROR_PATTERNS:
        if needle in text:
            return state
    return AdapterState.UNKNOWN


class AdapterGateway(ABC):
    """Capability surface of the BLE radio used by the scan and session components.

    Implementations own the process-wide adapter state and the transport; the
    core only holds the opaque transport handles and subscriptions returned.
    """

    @abstractmethod
    def get_adapter_state(self) -> AdapterState:
        """Return the current adapter power/authorization state."""

    @abstractmethod
    def on_adapter_state_change(self, callback: AdapterStateCallback) -> EventSubscription:
        """Register `callback(state)` for adapter state changes."""

    @abstractmethod
    def start_discovery(
        self,
        callback: AdvertisementCallback,
        *,
        scanning_mode: str = BLEConfig.SCANNING_MODE,
    ) -> EventSubscription:
        """Start scanning and deliver each advertisement to `callback`."""

    @abstractmethod
    def stop_discovery(self) -> None:
        """Stop scanning; no-op when no scan is running."""

    @abstractmethod
    def connect(self, identity: str, *, on_disconnect: Optional[DisconnectCallback] = None) -> Any:
        """Open a transport connection to `identity` and return its handle."""

    @abstractmethod
    def disconnect(self, transport: Any) -> None:
        """Close the transport connection and release its resources."""

    @abstractmethod
    def discover_services_and_characteristics(self, transport: Any) -> Any:
        """Resolve the full GATT table of the connected peripheral."""

    @abstractmethod
    def read_characteristic(
        self, transport: Any, service_id: str, characteristic_id: str
    ) -> bytes:
        """Read and return the raw payload of a characteristic."""

    @abstractmethod
    def subscribe_characteristic(
        self,
        transport: Any,
        service_id: str,
        characteristic_id: str,
        callback: NotificationCallback,
    ) -> EventSubscription:
        """Enable notifications and deliver each payload to `callback`."""

    def close(self) -> None:
        """Release gateway resources."""


class BleakAdapterGateway(AdapterGateway):
    """
    AdapterGateway backed by bleak.

    Scanning runs on a dedicated scan-only BLEClient; each connection gets its
    own BLEClient (and event-loop thread), which doubles as the transport
    handle handed to the session core.
    """

    def __init__(self, client_factory: Optional[Callable[..., BLEClient]] = None):
        """
        Initialize the gateway.

        Parameters:
            client_factory (optional): Callable used to construct BLEClient instances; primarily provided for testing.
        """
        self.client_factory: Callable[..., BLEClient] = client_factory or BLEClient
        self.error_handler = BLEErrorHandler()
        self._lock = RLock()
        self._adapter_state = AdapterState.UNKNOWN
        self._probed = False
        self._state_listeners: List[EventSubscription] = []
        self._scan_client: Optional[BLEClient] = None
        self._discovery: Optional[EventSubscription] = None
        # Last BLEDevice seen per address; connecting by device object is
        # required on some backends (CoreBluetooth).
        self._seen_devices: Dict[str, Any] = {}
        logger.debug("Using bleak %s", BLEAK_VERSION)

    # Adapter state ---------------------------------------------------------

    def get_adapter_state(self) -> AdapterState:
        """Return the adapter state, probing again unless it was last seen powered on."""
        with self._lock:
            probed = self._probed
            state = self._adapter_state
        if not probed or state != AdapterState.POWERED_ON:
            return self.refresh_adapter_state()
        return state

    def refresh_adapter_state(self) -> AdapterState:
        """
        Probe the adapter by briefly starting a scan and record the resulting state.

        Returns:
            AdapterState: `POWERED_ON` if a scanner could be started, otherwise the state inferred from the failure.
        """
        scan_client = self._get_scan_client()
        with self._lock:
            self._probed = True
            if scan_client.is_scanning:
                return self._adapter_state
        try:
            scan_client.start_scan(
                lambda _device, _adv: None,
                timeout=BLEConfig.ADAPTER_PROBE_TIMEOUT,
            )
            scan_client.stop_scan(timeout=BLEConfig.ADAPTER_PROBE_TIMEOUT)
            state = AdapterState.POWERED_ON
        except (BleakError, BLEClient.BLEError, OSError) as e:
            state = classify_adapter_error(e)
            logger.debug("Adapter probe failed (%s): %s", state.value, e)
        self._set_adapter_state(state)
        return state

    def on_adapter_state_change(self, callback: AdapterStateCallback) -> EventSubscription:
        subscription: EventSubscription

        def _detach():
            with self._lock:
                if subscription in self._state_listeners:
                    self._state_listeners.remove(subscription)

        subscription = EventSubscription(callback, on_remove=_detach, name="adapter state listener")
        with self._lock:
            self._state_listeners.append(subscription)
        return subscription

    def _set_adapter_state(self, state: AdapterState) -> None:
        with self._lock:
            if state == self._adapter_state:
                return
            old_state = self._adapter_state
            self._adapter_state = state
            listeners = list(self._state_listeners)
        logger.info("Adapter state changed: %s → %s", old_state.value, state.value)
        for listener in listeners:
            self.error_handler.safe_execute(
                lambda listener=listener: listener.deliver(state),
                error_msg="Error in adapter state listener",
            )

    # Discovery -------------------------------------------------------------

    def _get_scan_client(self) -> BLEClient:
        with self._lock:
            if self._scan_client is None:
                self._scan_client = self.client_factory(log_if_no_address=False)
            return self._scan_client

    def start_discovery(
        self,
        callback: AdvertisementCallback,
        *,
        scanning_mode: str = BLEConfig.SCANNING_MODE,
    ) -> EventSubscription:
        self.stop_discovery()
        with self._lock:
            self._seen_devices.clear()
        subscription = EventSubscription(callback, name="discovery")

        def _on_detection(device, adv) -> None:
            name = getattr(adv, "local_name", None) or getattr(device, "name", None)
            with self._lock:
                self._seen_devices[device.address] = device
            subscription.deliver(
                AdvertisementEvent(
                    identity=device.address,
                    name=name,
                    raw_data=adv,
                    rssi=getattr(adv, "rssi", None),
                )
            )

        scan_client = self._get_scan_client()
        with self._lock:
            self._probed = True
        try:
            scan_client.start_scan(
                _on_detection,
                timeout=BLEConfig.ADAPTER_PROBE_TIMEOUT,
                scanning_mode=scanning_mode,
            )
        except (BleakError, BLEClient.BLEError, OSError) as e:
            subscription.remove()
            self._set_adapter_state(classify_adapter_error(e))
            raise
        self._set_adapter_state(AdapterState.POWERED_ON)
        with self._lock:
            self._discovery = subscription
        logger.debug("Discovery started (scanning_mode=%s)", scanning_mode)
        return subscription

    def stop_discovery(self) -> None:
        with self._lock:
            subscription, self._discovery = self._discovery, None
            scan_client = self._scan_client
        if subscription is not None:
            subscription.remove()
        if scan_client is not None and scan_client.is_scanning:
            scan_client.stop_scan(timeout=BLEConfig.ADAPTER_PROBE_TIMEOUT)
            logger.debug("Discovery stopped")

    # Connection ------------------------------------------------------------

    def connect(self, identity: str, *, on_disconnect: Optional[DisconnectCallback] = None) -> BLEClient:
        with self._lock:
            target = self._seen_devices.get(identity, identity)
        holder: Dict[str, BLEClient] = {}

        def _on_bleak_disconnect(_bleak_client) -> None:
            client = holder.get("client")
            if on_disconnect is not None and client is not None:
                on_disconnect(client)

        client = self.client_factory(target, disconnected_callback=_on_bleak_disconnect)
        holder["client"] = client
        try:
            client.connect(
                await_timeout=BLEConfig.CONNECTION_TIMEOUT,
                timeout=BLEConfig.CONNECTION_TIMEOUT,
            )
        except Exception:
            self.error_handler.safe_cleanup(client.close, "client close after failed connect")
            raise
        return client

    def disconnect(self, transport: BLEClient) -> None:
        try:
            if transport.is_connected():
                transport.disconnect(await_timeout=BLEConfig.DISCONNECT_TIMEOUT_SECONDS)
        finally:
            transport.close()

    def discover_services_and_characteristics(self, transport: BLEClient):
        services = transport.get_services()
        for service in services:
            logger.debug("Service %s", service.uuid)
            for characteristic in service.characteristics:
                logger.debug(
                    "  Characteristic %s properties=%s",
                    characteristic.uuid,
                    ",".join(characteristic.properties),
                )
        return services

    def _resolve_characteristic(
        self, transport: BLEClient, service_id: str, characteristic_id: str
    ):
        services = transport.get_services()
        service = services.get_service(service_id)
        characteristic = (
            service.get_characteristic(characteristic_id) if service is not None else None
        )
        if characteristic is None:
            raise BLEClient.BLEError(
                ERROR_CHARACTERISTIC_NOT_FOUND.format(service_id, characteristic_id)
            )
        return characteristic

    def read_characteristic(
        self, transport: BLEClient, service_id: str, characteristic_id: str
    ) -> bytes:
        characteristic = self._resolve_characteristic(transport, service_id, characteristic_id)
        return bytes(
            transport.read_gatt_char(characteristic, timeout=BLEConfig.GATT_IO_TIMEOUT)
        )

    def subscribe_characteristic(
        self,
        transport: BLEClient,
        service_id: str,
        characteristic_id: str,
        callback: NotificationCallback,
    ) -> EventSubscription:
        characteristic = self._resolve_characteristic(transport, service_id, characteristic_id)

        def _stop_notify():
            if transport.is_connected():
                transport.stop_notify(
                    characteristic, timeout=BLEConfig.NOTIFICATION_START_TIMEOUT
                )

        subscription = EventSubscription(
            callback, on_remove=_stop_notify, name=f"notifications on {characteristic_id}"
        )
        transport.start_notify(
            characteristic,
            lambda _sender, data: subscription.deliver(bytes(data)),
            timeout=BLEConfig.NOTIFICATION_START_TIMEOUT,
        )
        return subscription

    def close(self) -> None:
        self.error_handler.safe_cleanup(self.stop_discovery, "discovery stop")
        with self._lock:
            scan_client, self._scan_client = self._scan_client, None
            listeners = list(self._state_listeners)
            self._seen_devices.clear()
        for listener in listeners:
            listener.remove()
        if scan_client is not None:
            self.error_handler.safe_cleanup(scan_client.close, "scan client close")
