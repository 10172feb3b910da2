"""Exception types raised by the BLE session components."""

from typing import Dict, Optional

from pulselink.ble.constants import (
    ERROR_ADAPTER_NOT_READY,
    ERROR_ALREADY_CONNECTING,
    ERROR_CONNECTION_FAILED,
)
from pulselink.ble.models import AdapterState, PeripheralHandle

ADAPTER_REMEDIATION: Dict[AdapterState, str] = {
    AdapterState.UNKNOWN: "The adapter state could not be determined; retry shortly.",
    AdapterState.RESETTING: "The adapter is resetting; retry in a few seconds.",
    AdapterState.UNSUPPORTED: "No Bluetooth LE capable adapter was found on this system.",
    AdapterState.UNAUTHORIZED: (
        "Bluetooth access was denied. Grant Bluetooth permissions "
        "(e.g. join the 'bluetooth' group) and try again."
    ),
    AdapterState.POWERED_OFF: "Please turn on Bluetooth and try again.",
    AdapterState.POWERED_ON: "",
}


class BLESessionError(Exception):
    """Base class for all session controller errors."""


class AdapterNotReadyError(BLESessionError):
    """The adapter is not powered on, so scanning and connecting are refused."""

    def __init__(self, state: AdapterState):
        self.state = state
        self.remediation = ADAPTER_REMEDIATION.get(state, "")
        super().__init__(ERROR_ADAPTER_NOT_READY.format(state.value, self.remediation))


class AlreadyConnectingError(BLESessionError):
    """A connect attempt is already in flight."""

    def __init__(self, message: str = ERROR_ALREADY_CONNECTING):
        super().__init__(message)


class ConnectionFailedError(BLESessionError):
    """Connecting to a peripheral failed; the session was rolled back to idle."""

    def __init__(
        self,
        peripheral: Optional[PeripheralHandle],
        cause: object,
    ):
        self.peripheral = peripheral
        self.cause = cause
        label = peripheral.label if peripheral is not None else "unknown peripheral"
        super().__init__(ERROR_CONNECTION_FAILED.format(label, cause))


class ReadFailedError(BLESessionError):
    """A single characteristic read or decode failed."""

    def __init__(self, characteristic_id: str, reason: object):
        self.characteristic_id = characteristic_id
        self.reason = reason
        super().__init__(f"Read of {characteristic_id} failed: {reason}")


class NotificationDecodeError(BLESessionError):
    """A notification payload could not be decoded."""


__all__ = [
    "ADAPTER_REMEDIATION",
    "AdapterNotReadyError",
    "AlreadyConnectingError",
    "BLESessionError",
    "ConnectionFailedError",
    "NotificationDecodeError",
    "ReadFailedError",
]
