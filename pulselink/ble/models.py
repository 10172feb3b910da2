"""Data model shared by the BLE session components."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union, TYPE_CHECKING

from pulselink.ble.state import ConnectionState

if TYPE_CHECKING:
    from pulselink.ble.notifications import SubscriptionHandle


class AdapterState(Enum):
    """Power/authorization state of the local Bluetooth adapter."""

    UNKNOWN = "Unknown"
    RESETTING = "Resetting"
    UNSUPPORTED = "Unsupported"
    UNAUTHORIZED = "Unauthorized"
    POWERED_OFF = "PoweredOff"
    POWERED_ON = "PoweredOn"


@dataclass(frozen=True)
class AdvertisementEvent:
    """A single advertisement as reported by the adapter gateway."""

    identity: str
    name: Optional[str]
    raw_data: Any = None
    rssi: Optional[int] = None


@dataclass(frozen=True)
class PeripheralHandle:
    """A named peripheral seen during a scan."""

    identity: str
    name: Optional[str]
    raw_data: Any = field(default=None, compare=False, repr=False)
    rssi: Optional[int] = field(default=None, compare=False)

    @classmethod
    def from_advertisement(cls, event: AdvertisementEvent) -> "PeripheralHandle":
        return cls(
            identity=event.identity,
            name=event.name,
            raw_data=event.raw_data,
            rssi=event.rssi,
        )

    @property
    def label(self) -> str:
        """Human-readable label, falling back to the identity."""
        return self.name or self.identity


BatteryLevel = Union[int, str]


@dataclass(frozen=True)
class DeviceInfo:
    """Manufacturer and battery values read once after connecting.

    Either field holds the "N/A" sentinel when its read failed.
    """

    manufacturer: str
    battery_percent: BatteryLevel


@dataclass(eq=False)
class Session:
    """The single live connection to a peripheral.

    The transport handle and the notification subscription are owned here so
    that teardown releases exactly what this session acquired.
    """

    peripheral: PeripheralHandle
    connection_state: ConnectionState = ConnectionState.CONNECTING
    device_info: Optional[DeviceInfo] = None
    heart_rate: Optional[int] = None
    transport: Any = field(default=None, repr=False)
    subscription: Optional["SubscriptionHandle"] = field(default=None, repr=False)

    @property
    def identity(self) -> str:
        return self.peripheral.identity
