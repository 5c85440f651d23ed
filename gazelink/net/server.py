"""
Receiver side of the gaze stream.

Listens on TCP, accepts any number of senders and reads each one on its own
daemon thread. Complete lines are decoded and handed to the owner; malformed
lines are logged and dropped without closing the connection.
"""

import socket
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from gazelink.core.config import NetworkConfig
from gazelink.core.events import ConnectionEvent, ConnectionEventKind, ignore
from gazelink.core.state import ConnectionState, ConnectionStateMachine, ConnectionStatus
from gazelink.net.discovery import ServiceAdvertiser
from gazelink.net.errors import ReadTimeout, TransportError
from gazelink.net.protocol import GazeMessage, LineFramer, MessageDecodeError, decode_line
from gazelink.utils.logger import get_logger, ThrottledLogger

logger = get_logger(__name__)
_decode_logger = ThrottledLogger(logger)

ACCEPT_POLL_SECONDS = 0.5


@dataclass
class _Connection:
    peer_id: str
    sock: socket.socket
    thread: Optional[threading.Thread] = None
    finished: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class GazeServer:
    """
    Threaded TCP server for newline-delimited gaze messages.

    Every accepted connection produces CONNECTED followed by exactly one
    terminal event, DISCONNECTED or ERROR.
    """

    def __init__(
        self,
        config: NetworkConfig,
        on_message: Callable[[GazeMessage], None] = ignore,
        on_connection_event: Callable[[ConnectionEvent], None] = ignore,
    ):
        """
        Initialize server.

        Args:
            config: Network configuration (port 0 binds an ephemeral port)
            on_message: Called from reader threads for each decoded message
            on_connection_event: Called on connect, disconnect and error
        """
        self._config = config
        self._on_message = on_message
        self._on_connection_event = on_connection_event

        self._sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._connections: Dict[str, _Connection] = {}
        self._lock = threading.Lock()
        self._running = False

        self._state = ConnectionStateMachine()
        self._advertiser: Optional[ServiceAdvertiser] = None

    def start(self):
        """
        Bind, listen and start accepting.

        Raises:
            TransportError: If the port cannot be bound
        """
        if self._running:
            return

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._config.host, self._config.port))
            sock.listen(4)
            sock.settimeout(ACCEPT_POLL_SECONDS)
        except OSError as e:
            error = TransportError(f"Cannot listen on {self._config.host}:{self._config.port}: {e}")
            self._state.fail(error)
            raise error from e

        self._sock = sock
        self._running = True
        self._state.reset()
        self._state.transition_to(ConnectionState.LISTENING)

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="gaze-accept", daemon=True
        )
        self._accept_thread.start()
        logger.info(f"GazeServer listening on tcp://{self._config.host}:{self.port}")

        if self._config.advertise:
            self._advertiser = ServiceAdvertiser(
                self._config.service_type, self._config.service_name, self.port
            )
            try:
                self._advertiser.start()
            except Exception as e:
                # Direct connections still work without discovery
                logger.warning(f"Service advertisement failed: {e}")
                self._advertiser = None

    def _accept_loop(self):
        listener = self._sock
        assert listener is not None
        while self._running:
            try:
                conn, addr = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                if not self._running:
                    break
                continue

            peer_id = f"{addr[0]}:{addr[1]}/{uuid.uuid4().hex[:8]}"
            conn.settimeout(self._config.read_timeout_s)

            connection = _Connection(peer_id=peer_id, sock=conn)
            with self._lock:
                if not self._running:
                    conn.close()
                    break
                self._connections[peer_id] = connection

            logger.info(f"Sender connected: {peer_id}")
            self._state.transition_to(ConnectionState.CONNECTED, peer_id=peer_id)
            self._on_connection_event(ConnectionEvent(ConnectionEventKind.CONNECTED, peer_id))

            connection.thread = threading.Thread(
                target=self._read_loop, args=(connection,), name=f"gaze-read-{peer_id}", daemon=True
            )
            connection.thread.start()

    def _read_loop(self, connection: _Connection):
        framer = LineFramer(self._config.max_line_bytes)

        while True:
            try:
                chunk = connection.sock.recv(self._config.recv_chunk_bytes)
            except socket.timeout:
                self._finish(
                    connection,
                    ConnectionEventKind.ERROR,
                    ReadTimeout(f"No data for {self._config.read_timeout_s:.1f}s"),
                )
                return
            except OSError as e:
                if self._running:
                    self._finish(connection, ConnectionEventKind.ERROR, TransportError(str(e)))
                else:
                    self._finish(connection, ConnectionEventKind.DISCONNECTED)
                return

            if not chunk:
                self._finish(connection, ConnectionEventKind.DISCONNECTED)
                return

            for line in framer.feed(chunk):
                try:
                    message = decode_line(line)
                except MessageDecodeError as e:
                    _decode_logger.warning("Dropping malformed line from %s: %s", connection.peer_id, e)
                    continue

                try:
                    self._on_message(message)
                except Exception:
                    logger.exception(f"Message handler failed for {connection.peer_id}")

    def _finish(
        self,
        connection: _Connection,
        kind: ConnectionEventKind,
        error: Optional[Exception] = None,
    ):
        """Close a connection and report its single terminal event."""
        with connection.lock:
            if connection.finished:
                return
            connection.finished = True

        try:
            connection.sock.close()
        except OSError:
            pass

        with self._lock:
            self._connections.pop(connection.peer_id, None)
            remaining = list(self._connections)

        if error is not None:
            logger.warning(f"Connection {connection.peer_id} failed: {error}")
        else:
            logger.info(f"Sender disconnected: {connection.peer_id}")

        if self._running:
            if not remaining:
                self._state.transition_to(ConnectionState.LISTENING)
            elif self._state.status.peer_id == connection.peer_id:
                # Report a sender that is still connected
                self._state.transition_to(ConnectionState.CONNECTED, peer_id=remaining[-1])

        self._on_connection_event(ConnectionEvent(kind, connection.peer_id, error))

    def stop(self):
        """Stop accepting, close every connection and withdraw the advertisement."""
        if not self._running:
            return
        self._running = False

        if self._advertiser is not None:
            try:
                self._advertiser.stop()
            except Exception as e:
                logger.warning(f"Failed to withdraw advertisement: {e}")
            self._advertiser = None

        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None

        with self._lock:
            connections = list(self._connections.values())

        for connection in connections:
            try:
                # Unblocks the reader thread's recv()
                connection.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._finish(connection, ConnectionEventKind.DISCONNECTED)

        for connection in connections:
            if connection.thread is not None and connection.thread is not threading.current_thread():
                connection.thread.join(timeout=1.0)

        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join(timeout=ACCEPT_POLL_SECONDS * 2)
        self._accept_thread = None

        self._state.reset()
        logger.info("GazeServer stopped")

    @property
    def port(self) -> int:
        """Bound port (the configured one, or the ephemeral one for port 0)."""
        if self._sock is not None:
            return self._sock.getsockname()[1]
        return self._config.port

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    @property
    def state(self) -> ConnectionState:
        return self._state.state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_running(self) -> bool:
        return self._running
