"""Thread coordination utilities for BLE operations."""

from threading import RLock, Thread, current_thread
from typing import List, Optional

from pulselink.ble.constants import BLEConfig


class ThreadCoordinator:
    """
    Track helper threads spawned by the session components.

    Teardown work triggered from a BLE event-loop thread (transport loss,
    adapter power-off) cannot await that same loop, so it is handed to a
    short-lived helper thread created here. ``cleanup`` joins whatever is
    still running on shutdown.
    """

    def __init__(self):
        """
        Create a ThreadCoordinator used to track and manage threads.

        Initializes:
            _lock (RLock): reentrant lock protecting internal state.
            _threads (List[Thread]): list of tracked Thread objects.
        """
        self._lock = RLock()
        self._threads: List[Thread] = []

    def create_thread(
        self, target, name: str, *, daemon: bool = True, args=(), kwargs=None
    ) -> Thread:
        """
        Create and register a Thread tracked by this coordinator without starting it.

        Parameters:
            target (callable): Callable to be executed by the thread.
            name (str): Name assigned to the thread.
            daemon (bool): Whether the thread should run as a daemon.
            args (tuple): Positional arguments to pass to `target`.
            kwargs (dict | None): Keyword arguments to pass to `target`.

        Returns:
            Thread: The created Thread instance (added to the coordinator's tracked threads, not started).
        """
        with self._lock:
            # Forget finished helpers so long sessions don't accumulate them
            self._threads = [t for t in self._threads if t.is_alive()]
            thread = Thread(
                target=target, name=name, daemon=daemon, args=args, kwargs=kwargs
            )
            self._threads.append(thread)
            return thread

    def start_thread(self, thread: Thread):
        """
        Start the given thread if it is tracked by this coordinator.

        Only threads previously added to the coordinator's tracking list will be started; otherwise the call has no effect.
        """
        with self._lock:
            if thread in self._threads:
                thread.start()

    def run_in_thread(self, target, name: str, *args) -> Thread:
        """Create, start and return a tracked daemon thread running `target(*args)`."""
        thread = self.create_thread(target, name, args=args)
        self.start_thread(thread)
        return thread

    def join_all(self, timeout: Optional[float] = None):
        """
        Wait for all tracked threads with the specified timeout.

        Args:
        ----
            timeout (Optional[float]): Maximum number of seconds to wait for each thread to join.
                If `None`, wait indefinitely for each thread.

        """
        with self._lock:
            current = current_thread()
            threads_to_join = [
                thread
                for thread in self._threads
                if thread.is_alive() and thread is not current
            ]
        for thread in threads_to_join:
            thread.join(timeout=timeout)

    def cleanup(self):
        """
        Join live tracked threads (excluding the current thread) and clear the registry.

        Threads are joined outside the lock using a short timeout so a thread
        touching the coordinator during shutdown cannot deadlock.
        """
        with self._lock:
            current = current_thread()
            threads_to_join = [
                thread
                for thread in self._threads
                if thread.is_alive() and thread is not current
            ]
            self._threads.clear()

        for thread in threads_to_join:
            thread.join(timeout=BLEConfig.EVENT_THREAD_JOIN_TIMEOUT)
