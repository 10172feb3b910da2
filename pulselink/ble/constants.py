"""BLE constants and configuration."""

import importlib.metadata
import logging

logger = logging.getLogger("pulselink.ble")

# Get bleak version using importlib.metadata (reliable method)
BLEAK_VERSION = importlib.metadata.version("bleak")

# Standard Bluetooth SIG assigned numbers expanded onto the base UUID
DEVICE_INFORMATION_SERVICE_UUID = "0000180a-0000-1000-8000-00805f9b34fb"
MANUFACTURER_NAME_UUID = "00002a29-0000-1000-8000-00805f9b34fb"
BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"
HEART_RATE_SERVICE_UUID = "0000180d-0000-1000-8000-00805f9b34fb"
HEART_RATE_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"

# Sentinel reported for a characteristic that could not be read
NOT_AVAILABLE = "N/A"


class BLEConfig:
    """Configuration constants for BLE operations."""

    SCAN_WINDOW_SECONDS = 5.0
    SCANNING_MODE = "active"
    CONNECTION_TIMEOUT = 20.0
    GATT_IO_TIMEOUT = 10.0
    NOTIFICATION_START_TIMEOUT = 10.0
    DISCONNECT_TIMEOUT_SECONDS = 5.0
    ADAPTER_PROBE_TIMEOUT = 5.0
    MALFORMED_NOTIFICATION_THRESHOLD = 10
    BLECLIENT_EVENT_THREAD_JOIN_TIMEOUT = 2.0
    EVENT_THREAD_JOIN_TIMEOUT = 2.0


# Error message constants
ERROR_TIMEOUT = "{0} timed out after {1:.1f} seconds"
ERROR_CONNECTION_FAILED = "Connection to {0} failed: {1}"
ERROR_ALREADY_CONNECTING = "A connection attempt is already in progress"
ERROR_CONNECTION_CANCELLED = "Connection attempt was cancelled by disconnect"
ERROR_UNKNOWN_PERIPHERAL = (
    "No discovered peripheral with identifier '{0}'. Run a scan first."
)
ERROR_CHARACTERISTIC_NOT_FOUND = (
    "Characteristic {1} not found in service {0} on the connected peripheral"
)
ERROR_ADAPTER_NOT_READY = "Bluetooth adapter is not ready (state: {0}). {1}"
BLECLIENT_ERROR_ASYNC_TIMEOUT = "Async operation timed out"

