"""
Qt glue for the receiver.

Server reader threads post messages and connection events through queued
signals, so the ReceiverSession only ever runs on the Qt main thread,
together with the dwell tick timer.
"""

from PyQt6.QtCore import QObject, Qt, QTimer, pyqtSignal

from gazelink.core.events import ConnectionEvent, DwellEvent
from gazelink.core.receiver import ReceiverSession
from gazelink.net.protocol import GazeMessage
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


class ReceiverBridge(QObject):
    """
    Marshal transport callbacks onto the main thread and tick dwell.

    Signals:
        message_received: GazeMessage from any thread
        connection_changed: ConnectionEvent from any thread
        dwell_event: DwellEvent, emitted on the main thread
    """

    message_received = pyqtSignal(object)
    connection_changed = pyqtSignal(object)
    dwell_event = pyqtSignal(object)

    def __init__(self, session: ReceiverSession, tick_interval_ms: int = 50, parent=None):
        super().__init__(parent)
        self._session = session

        queued = Qt.ConnectionType.QueuedConnection
        self.message_received.connect(self._on_message, queued)
        self.connection_changed.connect(self._on_connection_event, queued)

        self._tick_timer = QTimer(self)
        self._tick_timer.setInterval(tick_interval_ms)
        self._tick_timer.timeout.connect(self._session.tick)

    def start(self):
        self._tick_timer.start()
        logger.info(f"Dwell tick started ({self._tick_timer.interval()} ms)")

    def stop(self):
        self._tick_timer.stop()

    # Thread-safe entry points for GazeServer callbacks

    def post_message(self, message: GazeMessage):
        self.message_received.emit(message)

    def post_connection_event(self, event: ConnectionEvent):
        self.connection_changed.emit(event)

    def post_dwell_event(self, event: DwellEvent):
        self.dwell_event.emit(event)

    # Main-thread slots

    def _on_message(self, message: GazeMessage):
        self._session.handle_message(message)

    def _on_connection_event(self, event: ConnectionEvent):
        self._session.handle_connection_event(event)
