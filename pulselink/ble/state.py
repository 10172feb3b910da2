"""BLE session state management."""

from enum import Enum
from threading import RLock
from typing import Optional, TYPE_CHECKING

from pulselink.ble.constants import logger

if TYPE_CHECKING:
    from pulselink.ble.models import Session


class ConnectionState(Enum):
    """Enum for managing BLE connection states.

    DISCONNECTED doubles as the controller's Idle state.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


_VALID_TRANSITIONS = {
    ConnectionState.DISCONNECTED: {
        ConnectionState.CONNECTING,
        ConnectionState.ERROR,
    },
    ConnectionState.CONNECTING: {
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTING,
        ConnectionState.ERROR,
    },
    ConnectionState.CONNECTED: {
        ConnectionState.DISCONNECTING,
        ConnectionState.ERROR,
    },
    ConnectionState.DISCONNECTING: {
        ConnectionState.DISCONNECTED,
        ConnectionState.ERROR,
    },
    ConnectionState.ERROR: {
        ConnectionState.DISCONNECTED,
    },
}


class BLEStateManager:
    """Thread-safe state management for the single BLE session.

    One reentrant lock guards both the connection state and the session it
    belongs to, so a reader never observes a state paired with a stale
    session.
    """

    def __init__(self):
        """Initialize state manager with disconnected state."""
        self._state_lock = RLock()
        self._state = ConnectionState.DISCONNECTED
        self._session: Optional["Session"] = None

    @property
    def lock(self) -> RLock:
        """Expose the reentrant lock controlling state transitions."""
        return self._state_lock

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        with self._state_lock:
            return self._state

    @property
    def is_connecting(self) -> bool:
        return self.state == ConnectionState.CONNECTING

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def is_closing(self) -> bool:
        """Check if a teardown is in progress."""
        return self.state in (ConnectionState.DISCONNECTING, ConnectionState.ERROR)

    @property
    def session(self) -> Optional["Session"]:
        """Get current session."""
        with self._state_lock:
            return self._session

    def transition_to(
        self, new_state: ConnectionState, session: Optional["Session"] = None
    ) -> bool:
        """Thread-safe state transition with validation.

        Args:
        ----
            new_state: Target state to transition to
            session: Session associated with this transition (optional)

        Returns:
        -------
            True if transition was valid and applied, False otherwise

        """
        with self._state_lock:
            if new_state not in _VALID_TRANSITIONS.get(self._state, set()):
                logger.warning(
                    "Invalid state transition: %s → %s",
                    self._state.value,
                    new_state.value,
                )
                return False

            old_state = self._state
            self._state = new_state
            if session is not None:
                self._session = session
            elif new_state == ConnectionState.DISCONNECTED:
                self._session = None

            if self._session is not None:
                self._session.connection_state = new_state
            logger.debug("State transition: %s → %s", old_state.value, new_state.value)
            return True
