"""
Example showing the whole session lifecycle of a BLE heart-rate strap.

The script scans for one window, connects to the requested peripheral (or the
first one discovered), prints the device information once and then every
heart-rate sample until Ctrl+C.

All updates arrive through pubsub, so the same topics can drive a UI:
`pulselink.device.info`, `pulselink.heartrate` and `pulselink.connection.lost`.
"""

import argparse
import logging
import threading

from pubsub import pub

import pulselink
from pulselink.ble.constants import BLEConfig

logger = logging.getLogger(__name__)


def on_device_info(peripheral, info):
    """Print manufacturer and battery once after connecting."""
    print(f"{peripheral.label}: manufacturer={info.manufacturer} battery={info.battery_percent}%")


def on_heart_rate(peripheral, bpm):
    print(f"{peripheral.label}: {bpm} BPM")


def main():
    """
    Scan, connect and stream heart rate until interrupted.

    The optional `address` argument selects a peripheral from the scan
    results (separators and case are ignored); without it the first
    discovered peripheral is used.
    """
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="pulselink heart-rate monitor example.")
    parser.add_argument("address", nargs="?", help="BLE address of the heart-rate strap.")
    parser.add_argument(
        "--scan-seconds",
        type=float,
        default=BLEConfig.SCAN_WINDOW_SECONDS,
        help="Length of the discovery window.",
    )
    args = parser.parse_args()

    stopped = threading.Event()
    lost = threading.Event()

    def on_scan_stopped(reason, devices):
        logger.info("Scan finished (%s): %s", reason, ", ".join(d.label for d in devices) or "nothing")
        stopped.set()

    def on_connection_lost(peripheral, reason):
        logger.info("Lost %s (%s)", peripheral.label, reason)
        lost.set()

    pub.subscribe(on_scan_stopped, "pulselink.scan.stopped")
    pub.subscribe(on_device_info, "pulselink.device.info")
    pub.subscribe(on_heart_rate, "pulselink.heartrate")
    pub.subscribe(on_connection_lost, "pulselink.connection.lost")

    try:
        with pulselink.HeartRateMonitor(window_seconds=args.scan_seconds) as monitor:
            monitor.start_scan()
            stopped.wait()
            if not monitor.devices:
                logger.error("No named BLE peripherals found")
                return

            address = args.address or monitor.devices[0].identity
            monitor.connect(address)
            logger.info("Streaming heart rate; press Ctrl+C to stop")
            lost.wait()

    except KeyboardInterrupt:
        logger.info("Exiting...")
    except pulselink.AdapterNotReadyError as e:
        logger.error("%s", e)
    except pulselink.ConnectionFailedError:
        logger.exception("Connection failed")
    except Exception:
        logger.exception("An unexpected error occurred")


if __name__ == "__main__":
    main()
