"""
Connection state management.

Defines the connection state machine shared by the sender client and the
receiver server, with validated transitions.
"""

from enum import Enum, auto
from typing import Optional, Set
from dataclasses import dataclass
import threading


class ConnectionState(Enum):
    """
    Transport connection states.

    State transitions:
        IDLE -> LISTENING -> CONNECTED -> LISTENING   (receiver)
        IDLE -> CONNECTED -> IDLE                     (sender)
        Any -> FAILED -> IDLE
    """

    IDLE = auto()        # Nothing open
    LISTENING = auto()   # Receiver is accepting connections
    CONNECTED = auto()   # At least one live peer
    FAILED = auto()      # Last operation failed, owner must restart


_VALID_TRANSITIONS: dict[ConnectionState, Set[ConnectionState]] = {
    ConnectionState.IDLE: {
        ConnectionState.LISTENING,
        ConnectionState.CONNECTED,
        ConnectionState.FAILED,
    },
    ConnectionState.LISTENING: {
        ConnectionState.CONNECTED,
        ConnectionState.IDLE,
        ConnectionState.FAILED,
    },
    ConnectionState.CONNECTED: {
        ConnectionState.LISTENING,
        ConnectionState.IDLE,
        ConnectionState.FAILED,
    },
    ConnectionState.FAILED: {
        ConnectionState.IDLE,
    },
}


def is_valid_transition(from_state: ConnectionState, to_state: ConnectionState) -> bool:
    """
    Check if a state transition is valid.

    Same-state transitions are allowed so that CONNECTED can move between peers.
    """
    if from_state == to_state:
        return True

    return to_state in _VALID_TRANSITIONS.get(from_state, set())


@dataclass(frozen=True)
class ConnectionStatus:
    """A connection state together with its payload."""

    state: ConnectionState
    peer_id: Optional[str] = None
    error: Optional[Exception] = None

    def __str__(self) -> str:
        if self.state == ConnectionState.CONNECTED:
            return f"Connected({self.peer_id})"
        if self.state == ConnectionState.FAILED:
            return f"Failed({self.error})"
        return self.state.name.capitalize()


class ConnectionStateMachine:
    """
    Thread-safe connection state holder.

    Transport read threads and the owner's thread both touch it, so every
    access goes through a lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._status = ConnectionStatus(ConnectionState.IDLE)

    @property
    def status(self) -> ConnectionStatus:
        with self._lock:
            return self._status

    @property
    def state(self) -> ConnectionState:
        return self.status.state

    def transition_to(
        self,
        new_state: ConnectionState,
        peer_id: Optional[str] = None,
        error: Optional[Exception] = None,
    ) -> bool:
        """
        Transition to a new state.

        Returns:
            True if transition succeeded, False if invalid
        """
        with self._lock:
            if not is_valid_transition(self._status.state, new_state):
                return False
            self._status = ConnectionStatus(new_state, peer_id=peer_id, error=error)
            return True

    def fail(self, error: Exception) -> bool:
        """Enter FAILED with the error that caused it."""
        return self.transition_to(ConnectionState.FAILED, error=error)

    def reset(self):
        """Return to IDLE from any state."""
        with self._lock:
            self._status = ConnectionStatus(ConnectionState.IDLE)
