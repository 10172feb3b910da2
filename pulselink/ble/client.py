"""BLE client management and async operations."""

import asyncio
from concurrent.futures import TimeoutError as FutureTimeoutError
from threading import Thread
from typing import Any, Callable, Optional, Type

from bleak import BleakClient as BleakRootClient
from bleak import BleakScanner

from pulselink.ble.constants import (
    BLECLIENT_ERROR_ASYNC_TIMEOUT,
    BLEConfig,
    ERROR_TIMEOUT,
    logger,
)
from pulselink.ble.errors import BLEErrorHandler


class BLEClient:
    """
    Client wrapper for managing BLE device connections with thread-safe async operations.

    This class provides a synchronous interface to Bleak's async operations by running
    an internal event loop in a dedicated thread. It handles the complexity of
    asyncio-to-thread synchronization while providing a simple API for BLE operations.

    Bleak callbacks (advertisements, notifications, disconnects) fire on that
    event-loop thread. They must never call back into the blocking methods of
    the same client.
    """

    class BLEError(Exception):
        """An exception class for BLE errors in the client."""

    @staticmethod
    async def _with_timeout(awaitable, timeout: Optional[float], label: str):
        """
        Await an awaitable, applying an optional timeout.

        Parameters:
            awaitable: An awaitable to execute.
            timeout (Optional[float]): Maximum seconds to wait; if None, wait indefinitely.
            label (str): Short description used in the timeout error message.

        Returns:
            The result returned by the awaitable.

        Raises:
            BLEClient.BLEError: If the awaitable does not complete before the timeout elapses.
        """
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise BLEClient.BLEError(ERROR_TIMEOUT.format(label, timeout)) from exc

    def __init__(self, address=None, *, log_if_no_address: bool = True, **kwargs) -> None:
        """
        Initialize the BLEClient, creating a dedicated asyncio event loop and background thread and optionally attaching a Bleak client for a specific device.

        Parameters:
            address (Optional[str | BLEDevice]): Device address (or bleak BLEDevice) to attach a Bleak client to. If None, no Bleak client is created and the instance operates in scan-only mode.
            log_if_no_address (bool): If True and `address` is None, emit a debug message indicating scan-only mode.
            **kwargs: Keyword arguments forwarded to the underlying Bleak client constructor when `address` is provided.
        """
        self.error_handler = BLEErrorHandler()
        self.BLEError: Type[BLEClient.BLEError] = BLEClient.BLEError  # type: ignore[misc]

        self.address = getattr(address, "address", address)
        self.bleak_client: Optional[BleakRootClient] = None
        self._scanner: Optional[BleakScanner] = None
        self._eventLoop = asyncio.new_event_loop()
        self._eventThread = Thread(
            target=self._run_event_loop, name="BLEClient", daemon=True
        )
        try:
            self._eventThread.start()
        except RuntimeError:
            self._eventLoop.close()
            raise

        if not address:
            if log_if_no_address:
                logger.debug("No address provided - only scanning will work.")
            return

        self.bleak_client = BleakRootClient(address, **kwargs)

    def start_scan(
        self,
        detection_callback: Callable[[Any, Any], None],
        *,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> None:
        """
        Start a continuous scan delivering every advertisement to `detection_callback`.

        Parameters:
            detection_callback (Callable[[BLEDevice, AdvertisementData], None]): Invoked on the event-loop thread for each advertisement.
            timeout (Optional[float]): Maximum seconds to wait for the scanner to start.
            **kwargs: Forwarded to the BleakScanner constructor (for example `scanning_mode`).
        """
        if self._scanner is not None:
            logger.debug("Scanner already running; ignoring start_scan")
            return

        async def _start():
            scanner = BleakScanner(detection_callback=detection_callback, **kwargs)
            await scanner.start()
            return scanner

        self._scanner = self.async_await(
            self._with_timeout(_start(), timeout, "scanner start")
        )

    def stop_scan(self, *, timeout: Optional[float] = None) -> None:
        """Stop the running scan, if any."""
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        self.async_await(self._with_timeout(scanner.stop(), timeout, "scanner stop"))

    @property
    def is_scanning(self) -> bool:
        return self._scanner is not None

    def connect(
        self, *, await_timeout: Optional[float] = None, **kwargs
    ):  # pylint: disable=C0116
        """
        Establish a connection to the remote BLE device using the underlying Bleak client.

        Parameters:
            await_timeout (float | None): Maximum seconds to wait for the connect operation to complete; `None` to wait indefinitely.
            **kwargs: Forwarded to the underlying Bleak client's `connect` call.
        """
        if self.bleak_client is None:
            raise self.BLEError("Cannot connect: BLE client not initialized")
        return self.async_await(
            self.bleak_client.connect(**kwargs), timeout=await_timeout
        )

    def is_connected(self) -> bool:
        """
        Determine whether the underlying Bleak client is currently connected.

        Returns:
            `True` if the underlying Bleak client reports it is connected; `False` otherwise (also `False` when no Bleak client exists or the connection state cannot be read).
        """
        bleak_client = getattr(self, "bleak_client", None)
        if bleak_client is None:
            return False

        def _check_connection():
            connected = getattr(bleak_client, "is_connected", False)
            if callable(connected):
                connected = connected()
            return bool(connected)

        return self.error_handler.safe_execute(
            _check_connection,
            default_return=False,
            error_msg="Unable to read bleak connection state",
        )

    def disconnect(
        self, *, await_timeout: Optional[float] = None, **kwargs
    ):  # pylint: disable=C0116
        """
        Disconnect from the remote BLE device and wait for completion.

        Parameters:
            await_timeout (float | None): Maximum seconds to wait for disconnect to complete; if None, wait indefinitely.
            **kwargs: Additional keyword arguments forwarded to the underlying Bleak client's `disconnect` method.
        """
        if self.bleak_client is None:
            raise self.BLEError("Cannot disconnect: BLE client not initialized")
        self.async_await(self.bleak_client.disconnect(**kwargs), timeout=await_timeout)

    def get_services(self):
        """
        Return the services collection resolved by the underlying Bleak client.

        Bleak resolves the full GATT table as part of `connect`; this raises if
        that has not happened.
        """
        if self.bleak_client is None:
            raise self.BLEError("Cannot get services: BLE client not initialized")
        services = getattr(self.bleak_client, "services", None)
        if services is None:
            raise self.BLEError("Service discovery has not been performed")
        return services

    def read_gatt_char(
        self, *args, timeout: Optional[float] = None, **kwargs
    ):  # pylint: disable=C0116
        """
        Read a GATT characteristic from the connected BLE device.

        Parameters:
            *args: Positional arguments identifying the characteristic (a UUID string, handle or BleakGATTCharacteristic).
            timeout (float | None): Maximum seconds to wait for the read to complete; if None, no timeout is applied.

        Returns:
            bytearray: Raw bytes read from the characteristic.
        """
        if self.bleak_client is None:
            raise self.BLEError("Cannot read: BLE client not initialized")
        return self.async_await(
            self.bleak_client.read_gatt_char(*args, **kwargs), timeout=timeout
        )

    def start_notify(
        self, *args, timeout: Optional[float] = None, **kwargs
    ):  # pylint: disable=C0116
        """
        Subscribe to notifications for a BLE characteristic on the connected device.

        Parameters:
            *args: Forwarded to the Bleak `start_notify` call (characteristic and callback).
            timeout (Optional[float]): Maximum seconds to wait for the operation; if None, no timeout is applied.
        """
        if self.bleak_client is None:
            raise self.BLEError("Cannot start notify: BLE client not initialized")
        self.async_await(
            self.bleak_client.start_notify(*args, **kwargs), timeout=timeout
        )

    def stop_notify(
        self, *args, timeout: Optional[float] = None, **kwargs
    ):  # pylint: disable=C0116
        """Cancel notifications for a BLE characteristic on the connected device."""
        if self.bleak_client is None:
            raise self.BLEError("Cannot stop notify: BLE client not initialized")
        self.async_await(
            self.bleak_client.stop_notify(*args, **kwargs), timeout=timeout
        )

    def close(self):  # pylint: disable=C0116
        """
        Shuts down the client's asyncio event loop and its background thread.

        Signals the internal event loop to stop, waits up to BLECLIENT_EVENT_THREAD_JOIN_TIMEOUT for the thread to exit,
        and logs a warning if the thread does not terminate within that timeout.
        """
        if self._eventLoop.is_closed():
            return
        self.async_run(self._stop_event_loop())
        self._eventThread.join(timeout=BLEConfig.BLECLIENT_EVENT_THREAD_JOIN_TIMEOUT)
        if self._eventThread.is_alive():
            logger.warning(
                "BLE event thread did not exit within %.1fs",
                BLEConfig.BLECLIENT_EVENT_THREAD_JOIN_TIMEOUT,
            )

    def __enter__(self):
        return self

    def __exit__(self, _type, _value, _traceback):
        self.close()

    def async_await(self, coro, timeout=None):  # pylint: disable=C0116
        """
        Wait for the given coroutine to complete on the client's event loop and return its result.

        If the coroutine does not finish within `timeout` seconds the pending task is cancelled and a BLEClient.BLEError is raised.

        Args:
        ----
            coro: The coroutine to run on the client's internal event loop.
            timeout (float | None): Maximum seconds to wait for completion; `None` means wait indefinitely.

        Returns:
        -------
            The value produced by the completed coroutine.

        Raises:
        ------
            BLEClient.BLEError: If the wait times out.

        """
        # Bleak* exceptions propagate so callers can convert them consistently.
        future = self.async_run(coro)
        try:
            return future.result(timeout)
        except (FutureTimeoutError, RuntimeError) as e:
            try:
                future.cancel()
            except Exception:  # pragma: no cover - best effort
                logger.debug("Failed to cancel BLE future after timeout/loop-close", exc_info=True)
            # Consume any late exceptions to avoid "Task exception was never retrieved"
            future.add_done_callback(
                lambda f: f.exception() if not f.cancelled() else None
            )
            raise self.BLEError(BLECLIENT_ERROR_ASYNC_TIMEOUT) from e

    def async_run(self, coro):  # pylint: disable=C0116
        """
        Schedule a coroutine on the client's internal asyncio event loop.

        Returns:
        -------
            concurrent.futures.Future: Future representing the scheduled coroutine's eventual result.

        """
        return asyncio.run_coroutine_threadsafe(coro, self._eventLoop)

    def _run_event_loop(self):
        """Run the client's asyncio event loop in the background thread until it is stopped."""
        self.error_handler.safe_execute(
            self._eventLoop.run_forever, error_msg="Error in event loop"
        )
        self._eventLoop.close()

    async def _stop_event_loop(self):
        """Request the internal event loop to stop."""
        self._eventLoop.stop()
