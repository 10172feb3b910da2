# ruff: noqa: F401
"""
# A Python library for BLE heart-rate monitors

Scan for nearby Bluetooth LE peripherals, connect to one, read its
manufacturer name and battery level, and follow its Heart Rate Measurement
notifications.

Events are published with pypubsub:

- pulselink.adapter.state(state)
- pulselink.scan.started(window)
- pulselink.scan.discovered(peripheral)
- pulselink.scan.stopped(reason, devices)
- pulselink.connection.established(session)
- pulselink.connection.lost(peripheral, reason)
- pulselink.device.info(peripheral, info)
- pulselink.heartrate(peripheral, bpm)

Example:

    from pubsub import pub
    from pulselink import HeartRateMonitor

    def on_heart_rate(peripheral, bpm):
        print(f"{peripheral.label}: {bpm} BPM")

    pub.subscribe(on_heart_rate, "pulselink.heartrate")
    with HeartRateMonitor() as monitor:
        monitor.start_scan()
"""

from pulselink.ble import (
    AdapterNotReadyError,
    AdapterState,
    AlreadyConnectingError,
    BLESessionError,
    ConnectionFailedError,
    ConnectionState,
    DeviceInfo,
    PeripheralHandle,
    Session,
)
from pulselink.monitor import HeartRateMonitor

__version__ = "0.1.0"

__all__ = [
    "AdapterNotReadyError",
    "AdapterState",
    "AlreadyConnectingError",
    "BLESessionError",
    "ConnectionFailedError",
    "ConnectionState",
    "DeviceInfo",
    "HeartRateMonitor",
    "PeripheralHandle",
    "Session",
    "__version__",
]
