"""BLE session components for pulselink."""

from pulselink.ble.client import BLEClient
from pulselink.ble.constants import (
    BATTERY_LEVEL_UUID,
    BATTERY_SERVICE_UUID,
    BLEAK_VERSION,
    BLEConfig,
    DEVICE_INFORMATION_SERVICE_UUID,
    HEART_RATE_MEASUREMENT_UUID,
    HEART_RATE_SERVICE_UUID,
    MANUFACTURER_NAME_UUID,
    NOT_AVAILABLE,
    logger,
)
from pulselink.ble.coordination import ThreadCoordinator
from pulselink.ble.discovery import DiscoverySet, ScanCoordinator, ScanWindow
from pulselink.ble.errors import BLEErrorHandler
from pulselink.ble.events import EventSubscription, publish
from pulselink.ble.exceptions import (
    AdapterNotReadyError,
    AlreadyConnectingError,
    BLESessionError,
    ConnectionFailedError,
    NotificationDecodeError,
    ReadFailedError,
)
from pulselink.ble.gateway import (
    AdapterGateway,
    BleakAdapterGateway,
    classify_adapter_error,
)
from pulselink.ble.models import (
    AdapterState,
    AdvertisementEvent,
    DeviceInfo,
    PeripheralHandle,
    Session,
)
from pulselink.ble.notifications import (
    NotificationStream,
    SubscriptionHandle,
    decode_heart_rate,
)
from pulselink.ble.reader import (
    CharacteristicReader,
    decode_battery_level,
    decode_manufacturer,
)
from pulselink.ble.session import SessionController
from pulselink.ble.state import BLEStateManager, ConnectionState
from pulselink.ble.utils import sanitize_address

__all__ = [
    # Core classes
    "AdapterGateway",
    "BleakAdapterGateway",
    "BLEClient",
    "BLEConfig",
    "BLEErrorHandler",
    "BLEStateManager",
    "CharacteristicReader",
    "ConnectionState",
    "DiscoverySet",
    "EventSubscription",
    "NotificationStream",
    "ScanCoordinator",
    "ScanWindow",
    "SessionController",
    "SubscriptionHandle",
    "ThreadCoordinator",
    # Data model
    "AdapterState",
    "AdvertisementEvent",
    "DeviceInfo",
    "PeripheralHandle",
    "Session",
    # Errors
    "AdapterNotReadyError",
    "AlreadyConnectingError",
    "BLESessionError",
    "ConnectionFailedError",
    "NotificationDecodeError",
    "ReadFailedError",
    # Constants/helpers
    "BATTERY_LEVEL_UUID",
    "BATTERY_SERVICE_UUID",
    "BLEAK_VERSION",
    "DEVICE_INFORMATION_SERVICE_UUID",
    "HEART_RATE_MEASUREMENT_UUID",
    "HEART_RATE_SERVICE_UUID",
    "MANUFACTURER_NAME_UUID",
    "NOT_AVAILABLE",
    "classify_adapter_error",
    "decode_battery_level",
    "decode_heart_rate",
    "decode_manufacturer",
    "logger",
    "publish",
    "sanitize_address",
]
