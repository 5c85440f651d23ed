"""
Timing helpers driven by sensor sample timestamps.

The sender measures its rate on the timestamps the sensor stamped on each
frame, and the replay tool paces recorded frames by the same timestamps.
"""

import time
from collections import deque
from typing import Callable, Optional


class SampleRateMeter:
    """
    Frames per second over the last ``window_size`` sample timestamps.

    A timestamp that goes backwards (a replay looping, a new sensor
    session) starts a fresh window.
    """

    def __init__(self, window_size: int = 30):
        self._timestamps: deque = deque(maxlen=window_size)

    def tick(self, timestamp: float) -> float:
        if self._timestamps and timestamp < self._timestamps[-1]:
            self._timestamps.clear()
        self._timestamps.append(timestamp)
        return self.fps

    @property
    def fps(self) -> float:
        """Current rate, or 0.0 until two distinct timestamps were seen."""
        if len(self._timestamps) < 2:
            return 0.0

        span = self._timestamps[-1] - self._timestamps[0]
        if span <= 0:
            return 0.0

        return (len(self._timestamps) - 1) / span

    def reset(self):
        self._timestamps.clear()


class ReplayPacer:
    """
    Release recorded samples at the pace they were captured.

    The first sample anchors recording time to wall time; each later sample
    is held until its offset from the anchor has elapsed. With ``fixed_fps``
    the recorded timestamps are ignored and samples are spaced evenly.
    A timestamp earlier than the previous one re-anchors, so a looping
    replay starts over without a stall.
    """

    def __init__(
        self,
        fixed_fps: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if fixed_fps is not None and fixed_fps <= 0:
            raise ValueError("fixed_fps must be positive")
        self._interval = 1.0 / fixed_fps if fixed_fps else None
        self._clock = clock
        self._sleep = sleep
        self._wall_anchor: Optional[float] = None
        self._sample_anchor: Optional[float] = None
        self._last_timestamp: Optional[float] = None
        self._count = 0

    def wait(self, timestamp: float) -> float:
        """
        Block until the sample recorded at ``timestamp`` is due.

        Returns:
            Seconds slept (0.0 when the replay is behind schedule)
        """
        now = self._clock()

        previous, self._last_timestamp = self._last_timestamp, timestamp
        if self._wall_anchor is None or (previous is not None and timestamp < previous):
            self._anchor(now, timestamp)
            return 0.0

        self._count += 1
        if self._interval is not None:
            offset = self._count * self._interval
        else:
            offset = timestamp - self._sample_anchor

        delay = self._wall_anchor + offset - now
        if delay <= 0:
            return 0.0

        self._sleep(delay)
        return delay

    def reset(self):
        self._wall_anchor = None
        self._sample_anchor = None
        self._last_timestamp = None
        self._count = 0

    def _anchor(self, now: float, timestamp: float):
        self._wall_anchor = now
        self._sample_anchor = timestamp
        self._count = 0
