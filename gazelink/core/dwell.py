"""
Dwell selection state machine.

States:
    Idle -> Dwelling(region, start) -> Idle

A dwell completes when the gaze stays on one region for the threshold
time. Moving to another region, leaving every region or losing the gaze
cancels it.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Hashable, List, Optional

from gazelink.core.events import DwellEvent, DwellEventKind, ignore
from gazelink.vision.geometry import GazePoint
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)

MIN_THRESHOLD_SECONDS = 0.1


@dataclass(frozen=True)
class DwellSession:
    """The active dwell: which region, and since when."""

    region_id: Hashable
    start_time: float


class DwellDetector:
    """
    Per-region dwell timer.

    ``update()`` is called with each mapped gaze point and ``tick()`` at a
    fixed rate (about 20 Hz) so progress advances while the gaze is still.
    Session changes happen under a lock; events are delivered after the
    lock is released, in the order they occurred.
    """

    def __init__(
        self,
        hit_test: Callable[[GazePoint], Optional[Hashable]],
        threshold_seconds: float = 1.5,
        on_event: Callable[[DwellEvent], None] = ignore,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize dwell detector.

        Args:
            hit_test: Resolves a point to the selectable region under it
            threshold_seconds: Dwell time to select (clamped to >= 0.1)
            on_event: Listener for dwell events
            clock: Monotonic time source in seconds
        """
        self._hit_test = hit_test
        self._threshold = max(MIN_THRESHOLD_SECONDS, threshold_seconds)
        self._on_event = on_event
        self._clock = clock

        self._lock = threading.Lock()
        self._session: Optional[DwellSession] = None

        logger.info(f"DwellDetector initialized: threshold={self._threshold:.2f}s")

    def update(self, point: Optional[GazePoint]):
        """
        Feed a gaze point in receiver screen coordinates.

        None means the gaze is unavailable and cancels any active dwell.
        """
        region_id = self._hit_test(point) if point is not None else None
        events: List[DwellEvent] = []

        with self._lock:
            now = self._clock()
            session = self._session

            if session is not None and region_id is not None and session.region_id == region_id:
                self._advance(now, events)
            else:
                if session is not None:
                    self._cancel(events)
                if region_id is not None:
                    self._start(region_id, now, events)

        self._dispatch(events)

    def tick(self):
        """Advance the active dwell without a new point."""
        events: List[DwellEvent] = []

        with self._lock:
            if self._session is not None:
                self._advance(self._clock(), events)

        self._dispatch(events)

    def reset(self):
        """Cancel any active dwell. Emits nothing when idle."""
        events: List[DwellEvent] = []

        with self._lock:
            if self._session is not None:
                self._cancel(events)

        self._dispatch(events)

    def _start(self, region_id: Hashable, now: float, events: List[DwellEvent]):
        self._session = DwellSession(region_id, now)
        events.append(DwellEvent(DwellEventKind.STARTED, region_id, 0.0))
        logger.debug(f"Dwell started on {region_id!r}")

    def _advance(self, now: float, events: List[DwellEvent]):
        session = self._session
        assert session is not None

        progress = min(1.0, max(0.0, (now - session.start_time) / self._threshold))
        events.append(DwellEvent(DwellEventKind.PROGRESS, session.region_id, progress))

        if progress >= 1.0:
            self._session = None
            events.append(DwellEvent(DwellEventKind.COMPLETED, session.region_id, 1.0))
            logger.info(f"Dwell completed on {session.region_id!r}")

    def _cancel(self, events: List[DwellEvent]):
        session = self._session
        assert session is not None

        self._session = None
        events.append(DwellEvent(DwellEventKind.CANCELLED, session.region_id, 0.0))
        logger.debug(f"Dwell cancelled on {session.region_id!r}")

    def _dispatch(self, events: List[DwellEvent]):
        for event in events:
            self._on_event(event)

    @property
    def session(self) -> Optional[DwellSession]:
        with self._lock:
            return self._session

    @property
    def threshold_seconds(self) -> float:
        return self._threshold

    @threshold_seconds.setter
    def threshold_seconds(self, value: float):
        with self._lock:
            self._threshold = max(MIN_THRESHOLD_SECONDS, value)
