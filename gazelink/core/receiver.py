"""
Receiver session: gaze messages in, pointer moves and dwell events out.

Message handling, dwell ticks and connection events may arrive on
different threads; all of them are serialized by one lock.
"""

import threading
from typing import Callable, Hashable, Optional

from gazelink.core.config import AppConfig
from gazelink.core.dwell import DwellDetector
from gazelink.core.events import (
    ConnectionEvent,
    ConnectionEventKind,
    DwellEvent,
    DwellEventKind,
    ignore,
)
from gazelink.net.protocol import GazeMessage
from gazelink.os_control.screen_mapper import DisplayRect, LegacyGazeMapper, RemoteScreenMapper
from gazelink.vision.geometry import GazePoint
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


class ReceiverSession:
    """
    Drive the receiver display from a stream of gaze messages.

    - Messages with a screen position are remapped from the sender's screen
    - Messages without one fall back to gaze-vector mapping
    - Closed eyes cancel the dwell and release the pointer gate
    - A disconnect resets all mapping, dwell and pointer state
    """

    def __init__(
        self,
        config: AppConfig,
        display: DisplayRect,
        hit_test: Callable[[GazePoint], Optional[Hashable]],
        cursor: Optional[object] = None,
        on_dwell_event: Callable[[DwellEvent], None] = ignore,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize receiver session.

        Args:
            config: Application configuration
            display: Usable receiver rectangle
            hit_test: Resolves a display point to a selectable region id
            cursor: Pointer actuator with ``move_to``, ``click`` and ``reset``
            on_dwell_event: Listener for dwell events
            clock: Monotonic time source for dwell timing
        """
        self._config = config
        self._cursor = cursor
        self._on_dwell_event = on_dwell_event
        self._lock = threading.RLock()

        self._mapper = RemoteScreenMapper(display, config.mapper.smoothing_factor)
        self._legacy_mapper = LegacyGazeMapper(display, config.mapper.smoothing_factor)

        dwell_kwargs = {} if clock is None else {"clock": clock}
        self._dwell = DwellDetector(
            hit_test,
            threshold_seconds=config.dwell.threshold_seconds,
            on_event=self._handle_dwell_event,
            **dwell_kwargs,
        )

        self._last_point: Optional[GazePoint] = None
        self._messages = 0

        logger.info("ReceiverSession initialized")

    def handle_message(self, message: GazeMessage) -> Optional[GazePoint]:
        """
        Apply one gaze message.

        Returns:
            Mapped display point, or None when the eyes were closed
        """
        with self._lock:
            self._messages += 1

            if not message.eyes_open:
                self._release_gaze()
                return None

            if message.screen_position is not None and message.phone_screen_size is not None:
                point = self._mapper.map(message.screen_position, message.phone_screen_size)
            else:
                point = self._legacy_mapper.map(message.gaze_vector)

            self._last_point = point
            if self._cursor is not None:
                self._cursor.move_to(point)
            self._dwell.update(point)
            return point

    def tick(self):
        """Advance dwell progress (called at the dwell tick rate)."""
        with self._lock:
            self._dwell.tick()

    def handle_connection_event(self, event: ConnectionEvent):
        """React to transport events; a terminal event resets everything."""
        with self._lock:
            if event.kind == ConnectionEventKind.CONNECTED:
                logger.info(f"Sender connected: {event.peer_id}")
                return

            if event.kind == ConnectionEventKind.ERROR:
                logger.warning(f"Sender {event.peer_id} failed: {event.error}")
            else:
                logger.info(f"Sender {event.peer_id} disconnected")
            self.reset()

    def reset(self):
        """Clear mapping, dwell and pointer state."""
        with self._lock:
            self._mapper.reset()
            self._legacy_mapper.reset()
            self._release_gaze()
            self._last_point = None

    def update_display(self, display: DisplayRect):
        with self._lock:
            self._mapper.update_display(display)
            self._legacy_mapper.update_display(display)
            if self._cursor is not None and hasattr(self._cursor, "update_display"):
                self._cursor.update_display(display)

    def _release_gaze(self):
        self._dwell.reset()
        if self._cursor is not None:
            self._cursor.reset()

    def _handle_dwell_event(self, event: DwellEvent):
        if (
            event.kind == DwellEventKind.COMPLETED
            and self._config.dwell.click_on_select
            and self._cursor is not None
        ):
            self._cursor.click()
        self._on_dwell_event(event)

    @property
    def last_point(self) -> Optional[GazePoint]:
        return self._last_point

    @property
    def dwell(self) -> DwellDetector:
        return self._dwell

    @property
    def messages_handled(self) -> int:
        return self._messages
