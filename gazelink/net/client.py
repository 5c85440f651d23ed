"""
Sender side of the gaze stream.

Holds one persistent TCP connection to a receiver. Messages are written as
single lines with no acknowledgement; a failed write tears the connection
down and is reported once. Reconnecting is left to the owner.
"""

import socket
import threading
from typing import Callable, Optional, Tuple

from gazelink.core.config import NetworkConfig
from gazelink.core.events import ConnectionEvent, ConnectionEventKind, ignore
from gazelink.core.state import ConnectionState, ConnectionStateMachine
from gazelink.net.discovery import discover_receiver
from gazelink.net.errors import ConnectTimeout, DiscoveryError, TransportError, WriteTimeout
from gazelink.net.protocol import GazeMessage, encode_line
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


class GazeClient:
    """TCP client for newline-delimited gaze messages."""

    def __init__(
        self,
        config: NetworkConfig,
        on_connection_event: Callable[[ConnectionEvent], None] = ignore,
    ):
        """
        Initialize client.

        Args:
            config: Network configuration
            on_connection_event: Called on connect, disconnect and error
        """
        self._config = config
        self._on_connection_event = on_connection_event

        self._sock: Optional[socket.socket] = None
        self._peer_id: Optional[str] = None
        self._lock = threading.Lock()
        self._state = ConnectionStateMachine()

        self._sent = 0

    def discover(self) -> Tuple[str, int]:
        """
        Browse the local network for a receiver.

        Raises:
            DiscoveryError: If none is found within the discovery timeout
        """
        return discover_receiver(self._config.service_type, self._config.discovery_timeout_s)

    def connect(self, host: str, port: int):
        """
        Open the connection.

        A failed attempt is reported as an ERROR event before it is raised.

        Raises:
            ConnectTimeout: If the connection is not established in time
            TransportError: On any other connection failure
        """
        peer_id = f"{host}:{port}"
        error: Optional[TransportError] = None
        cause: Optional[OSError] = None

        with self._lock:
            if self._sock is not None:
                raise TransportError(f"Already connected to {self._peer_id}")

            try:
                sock = socket.create_connection((host, port), timeout=self._config.connect_timeout_s)
            except socket.timeout as e:
                error = ConnectTimeout(f"Connecting to {peer_id} timed out")
                cause = e
                self._state.fail(error)
            except OSError as e:
                error = TransportError(f"Cannot connect to {peer_id}: {e}")
                cause = e
                self._state.fail(error)
            else:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                sock.settimeout(self._config.write_timeout_s)

                self._sock = sock
                self._peer_id = peer_id
                self._state.reset()
                self._state.transition_to(ConnectionState.CONNECTED, peer_id=peer_id)

        if error is not None:
            logger.warning(f"Connect failed: {error}")
            self._on_connection_event(ConnectionEvent(ConnectionEventKind.ERROR, peer_id, error))
            raise error from cause

        logger.info(f"Connected to receiver {peer_id}")
        self._on_connection_event(ConnectionEvent(ConnectionEventKind.CONNECTED, peer_id))

    def connect_discovered(self):
        """Discover a receiver and connect to it."""
        try:
            host, port = self.discover()
        except DiscoveryError as e:
            self._state.fail(e)
            self._on_connection_event(ConnectionEvent(ConnectionEventKind.ERROR, self._config.service_type, e))
            raise
        self.connect(host, port)

    def send(self, message: GazeMessage) -> bool:
        """
        Write one message.

        Returns:
            True if written, False when not connected or the write failed
        """
        payload = encode_line(message)

        with self._lock:
            sock = self._sock
            if sock is None:
                return False

            try:
                sock.sendall(payload)
            except socket.timeout:
                error: Exception = WriteTimeout(
                    f"Write to {self._peer_id} exceeded {self._config.write_timeout_s:.3f}s"
                )
            except OSError as e:
                error = TransportError(f"Write to {self._peer_id} failed: {e}")
            else:
                self._sent += 1
                return True

            peer_id = self._teardown()
            self._state.fail(error)

        logger.warning(f"Connection lost: {error}")
        self._on_connection_event(ConnectionEvent(ConnectionEventKind.ERROR, peer_id, error))
        return False

    def close(self):
        """Close the connection. Reports DISCONNECTED if one was open."""
        with self._lock:
            if self._sock is None:
                return
            peer_id = self._teardown()
            self._state.reset()

        logger.info(f"Disconnected from {peer_id}")
        self._on_connection_event(ConnectionEvent(ConnectionEventKind.DISCONNECTED, peer_id))

    def _teardown(self) -> str:
        """Release the socket. Caller holds the lock."""
        sock, peer_id = self._sock, self._peer_id or ""
        self._sock = None
        self._peer_id = None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()
        return peer_id

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._sock is not None

    @property
    def state(self) -> ConnectionState:
        return self._state.state

    @property
    def messages_sent(self) -> int:
        return self._sent
