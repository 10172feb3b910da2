"""
Shared pytest fixtures for the BLE session tests.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest  # type: ignore[import-untyped]  # pylint: disable=E0401

from pulselink.ble.constants import (
    BATTERY_LEVEL_UUID,
    MANUFACTURER_NAME_UUID,
)
from pulselink.ble.events import EventSubscription
from pulselink.ble.gateway import AdapterGateway
from pulselink.ble.models import AdapterState, AdvertisementEvent, PeripheralHandle


class FakeTransport:
    """Opaque transport handle returned by FakeGateway.connect."""

    def __init__(self, identity: str, on_disconnect=None):
        self.identity = identity
        self.on_disconnect = on_disconnect
        self.connected = True

    def drop(self):
        """Simulate the peripheral going out of range."""
        self.connected = False
        if self.on_disconnect is not None:
            self.on_disconnect(self)

    def __repr__(self):
        return f"FakeTransport({self.identity!r}, connected={self.connected})"


class FakeGateway(AdapterGateway):
    """
    Scripted AdapterGateway.

    Every call is appended to `calls` as a tuple so tests can assert ordering.
    Failures are injected through the `*_error` attributes and per
    characteristic entries in `reads`; `hooks` maps an operation name to a
    callable run inside that operation (to interleave concurrent calls).
    """

    def __init__(self, adapter_state: AdapterState = AdapterState.POWERED_ON):
        self.adapter_state = adapter_state
        self.calls: List[Tuple[Any, ...]] = []
        self.hooks: Dict[str, Callable[[], None]] = {}
        self.start_discovery_error: Optional[BaseException] = None
        self.connect_error: Optional[BaseException] = None
        self.discover_error: Optional[BaseException] = None
        self.subscribe_error: Optional[BaseException] = None
        self.reads: Dict[str, Union[bytes, BaseException]] = {
            MANUFACTURER_NAME_UUID: b"Polar Electro Oy",
            BATTERY_LEVEL_UUID: b"\x55",
        }
        self.state_listeners: List[EventSubscription] = []
        self.discovery_callback: Optional[Callable[[AdvertisementEvent], None]] = None
        self.discovery_subscription: Optional[EventSubscription] = None
        self.notification_subscription: Optional[EventSubscription] = None
        self.notification_callback: Optional[Callable[[bytes], None]] = None
        self.transports: List[FakeTransport] = []
        self.closed = False

    def _run_hook(self, name: str) -> None:
        hook = self.hooks.pop(name, None)
        if hook is not None:
            hook()

    # Adapter state ---------------------------------------------------------

    def get_adapter_state(self) -> AdapterState:
        return self.adapter_state

    def set_adapter_state(self, state: AdapterState) -> None:
        self.adapter_state = state
        for listener in list(self.state_listeners):
            listener.deliver(state)

    def on_adapter_state_change(self, callback) -> EventSubscription:
        subscription: EventSubscription

        def _detach():
            self.state_listeners.remove(subscription)

        subscription = EventSubscription(callback, on_remove=_detach, name="adapter state")
        self.state_listeners.append(subscription)
        return subscription

    # Discovery -------------------------------------------------------------

    def start_discovery(self, callback, *, scanning_mode: str = "active") -> EventSubscription:
        self.calls.append(("start_discovery", scanning_mode))
        if self.start_discovery_error is not None:
            raise self.start_discovery_error
        self.discovery_callback = callback
        self.discovery_subscription = EventSubscription(
            callback,
            on_remove=lambda: self.calls.append(("discovery_removed",)),
            name="discovery",
        )
        return self.discovery_subscription

    def stop_discovery(self) -> None:
        self.calls.append(("stop_discovery",))

    def emit(self, identity: str, name: Optional[str] = None, rssi: Optional[int] = None) -> None:
        """Deliver an advertisement straight to the last discovery callback, as a late radio event would."""
        assert self.discovery_callback is not None, "start_discovery was never called"
        self.discovery_callback(AdvertisementEvent(identity=identity, name=name, rssi=rssi))

    # Connection ------------------------------------------------------------

    def connect(self, identity: str, *, on_disconnect=None) -> FakeTransport:
        self.calls.append(("connect", identity))
        self._run_hook("connect")
        if self.connect_error is not None:
            raise self.connect_error
        transport = FakeTransport(identity, on_disconnect)
        self.transports.append(transport)
        return transport

    def disconnect(self, transport: FakeTransport) -> None:
        self.calls.append(("disconnect", transport.identity))
        transport.connected = False

    def discover_services_and_characteristics(self, transport: FakeTransport):
        self.calls.append(("discover", transport.identity))
        self._run_hook("discover")
        if self.discover_error is not None:
            raise self.discover_error
        return []

    def read_characteristic(self, transport, service_id, characteristic_id) -> bytes:
        self.calls.append(("read", characteristic_id))
        self._run_hook("read")
        result = self.reads.get(characteristic_id, b"")
        if isinstance(result, BaseException):
            raise result
        return result

    def subscribe_characteristic(self, transport, service_id, characteristic_id, callback):
        self.calls.append(("subscribe", characteristic_id))
        self._run_hook("subscribe")
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.notification_callback = callback
        self.notification_subscription = EventSubscription(
            callback,
            on_remove=lambda: self.calls.append(("unsubscribe", characteristic_id)),
            name="notifications",
        )
        return self.notification_subscription

    def notify(self, payload: bytes) -> bool:
        """Deliver a notification through the live subscription; False when it was dropped."""
        assert self.notification_subscription is not None, "subscribe was never called"
        return self.notification_subscription.deliver(payload)

    def close(self) -> None:
        self.closed = True

    def call_names(self) -> List[Any]:
        return [call[0] for call in self.calls]


class ManualTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval: float, function: Callable[[], None]):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        """Run the callback even if cancelled, as a timer racing its cancel would."""
        self.function()


class ManualTimerFactory:
    """Timer factory recording every ManualTimer it creates."""

    def __init__(self):
        self.timers: List[ManualTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.timers[-1]


class PubRecorder:
    """Replacement for `pubsub.pub` that records sent messages."""

    def __init__(self):
        self.messages: List[Tuple[str, Dict[str, Any]]] = []

    def sendMessage(self, topic: str, **kwargs):  # pylint: disable=C0103
        self.messages.append((topic, kwargs))

    def topics(self) -> List[str]:
        return [topic for topic, _kwargs in self.messages]

    def of(self, topic: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.messages if name == topic]


@pytest.fixture(autouse=True)
def pub_recorder(monkeypatch):
    """
    Capture pubsub traffic instead of delivering it.

    Returns:
        PubRecorder: The recorder patched in as `pulselink.ble.events.pub`.
    """
    recorder = PubRecorder()
    monkeypatch.setattr("pulselink.ble.events.pub", recorder)
    return recorder


@pytest.fixture
def gateway():
    """Return a FakeGateway with a powered-on adapter."""
    return FakeGateway()


@pytest.fixture
def timer_factory():
    """Return a ManualTimerFactory for deterministic scan windows."""
    return ManualTimerFactory()


@pytest.fixture
def peripheral():
    """Return a named heart-rate peripheral."""
    return PeripheralHandle(identity="AA:BB:CC:DD:EE:01", name="Polar H10 1234", rssi=-60)


@pytest.fixture
def other_peripheral():
    """Return a second named peripheral."""
    return PeripheralHandle(identity="AA:BB:CC:DD:EE:02", name="Wahoo TICKR", rssi=-70)

