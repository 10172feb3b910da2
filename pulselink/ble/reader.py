"""Best-effort reads of the standard device information characteristics."""

from typing import Callable, TypeVar, Union

from pulselink.ble.constants import (
    BATTERY_LEVEL_UUID,
    BATTERY_SERVICE_UUID,
    DEVICE_INFORMATION_SERVICE_UUID,
    MANUFACTURER_NAME_UUID,
    NOT_AVAILABLE,
    logger,
)
from pulselink.ble.errors import BLEErrorHandler
from pulselink.ble.exceptions import ReadFailedError
from pulselink.ble.gateway import AdapterGateway
from pulselink.ble.models import DeviceInfo, Session

T = TypeVar("T")


def decode_manufacturer(payload: bytes) -> str:
    """Decode a Manufacturer Name String payload (UTF-8, optionally NUL padded)."""
    try:
        text = bytes(payload).decode("utf-8")
    except UnicodeDecodeError as e:
        raise ReadFailedError(MANUFACTURER_NAME_UUID, e) from e
    return text.rstrip("\x00")


def decode_battery_level(payload: bytes) -> int:
    """Decode a Battery Level payload: one unsigned byte holding 0-100 percent."""
    if len(payload) < 1:
        raise ReadFailedError(BATTERY_LEVEL_UUID, "empty payload")
    level = payload[0]
    if level > 100:
        raise ReadFailedError(BATTERY_LEVEL_UUID, f"out of range value {level}")
    return level


class CharacteristicReader:
    """
    Read manufacturer name and battery level with per-field failure isolation.

    Peripherals commonly expose the Battery service without Device
    Information (or the reverse), so each read falls back to "N/A" on its own.
    """

    def __init__(self, gateway: AdapterGateway):
        self.gateway = gateway
        self.error_handler = BLEErrorHandler()

    def read_device_info(self, session: Session) -> DeviceInfo:
        """
        Read the device information for a connected session.

        Never raises; a failed field is reported as "N/A".
        """
        manufacturer = self._read_field(
            session,
            DEVICE_INFORMATION_SERVICE_UUID,
            MANUFACTURER_NAME_UUID,
            decode_manufacturer,
        )
        battery = self._read_field(
            session,
            BATTERY_SERVICE_UUID,
            BATTERY_LEVEL_UUID,
            decode_battery_level,
        )
        info = DeviceInfo(manufacturer=manufacturer, battery_percent=battery)
        logger.debug(
            "Device info for %s: manufacturer=%s battery=%s",
            session.peripheral.label,
            info.manufacturer,
            info.battery_percent,
        )
        return info

    def _read_field(
        self,
        session: Session,
        service_id: str,
        characteristic_id: str,
        decode: Callable[[bytes], T],
    ) -> Union[T, str]:
        def _read() -> T:
            try:
                payload = self.gateway.read_characteristic(
                    session.transport, service_id, characteristic_id
                )
            except ReadFailedError:
                raise
            except Exception as e:
                raise ReadFailedError(characteristic_id, e) from e
            return decode(payload)

        return self.error_handler.safe_execute(
            _read,
            default_return=NOT_AVAILABLE,
            error_msg=f"Reading {characteristic_id} failed",
        )
