"""
Map sender gaze positions onto the receiver's display.

Receiver coordinates have a top-left origin with Y growing downward. The
usable rectangle excludes menu bars and docks.
"""

from typing import NamedTuple, Sequence

import numpy as np

from gazelink.vision.geometry import GazePoint, Size
from gazelink.vision.smoothing import ExponentialFilter
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


class DisplayRect(NamedTuple):
    """Usable display rectangle in receiver points (top-left origin)."""

    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def clamp(self, point: GazePoint) -> GazePoint:
        return GazePoint(
            float(np.clip(point.x, self.left, self.right)),
            float(np.clip(point.y, self.top, self.bottom)),
        )


class RemoteScreenMapper:
    """
    Map a calibrated sender point (centered, Y up) to the receiver display.

        nx = (x + w/2) / w
        ny = (h/2 - y) / h
        X = left + nx * W
        Y = top + ny * H

    The result is clamped to the display and then exponentially smoothed.
    """

    def __init__(self, display: DisplayRect, smoothing_factor: float = 0.7):
        """
        Initialize mapper.

        Args:
            display: Usable receiver rectangle
            smoothing_factor: alpha in alpha * previous + (1 - alpha) * new
        """
        self._display = display
        self._filter = ExponentialFilter(smoothing_factor)
        logger.info(
            f"RemoteScreenMapper initialized: display=({display.left:.0f}, {display.top:.0f}, "
            f"{display.width:.0f}x{display.height:.0f}), smoothing={smoothing_factor:.2f}"
        )

    def map(self, point: GazePoint, sender_size: Size) -> GazePoint:
        """
        Map one point.

        Args:
            point: Calibrated sender point
            sender_size: Sender screen size in points

        Returns:
            Smoothed receiver point
        """
        w, h = sender_size
        if w <= 0 or h <= 0:
            raise ValueError(f"Invalid sender screen size: {w}x{h}")

        nx = (point.x + w / 2) / w
        ny = (h / 2 - point.y) / h

        d = self._display
        mapped = d.clamp(GazePoint(d.left + nx * d.width, d.top + ny * d.height))
        return self._filter.update(mapped)

    def update_display(self, display: DisplayRect):
        self._display = display
        self._filter.reset()
        logger.info(f"Display updated: {display.width:.0f}x{display.height:.0f}")

    @property
    def display(self) -> DisplayRect:
        return self._display

    def reset(self):
        """Drop smoothing history."""
        self._filter.reset()


class LegacyGazeMapper:
    """
    Map a bare gaze direction to the receiver display.

    Used for messages without a screen position. Gaze x and y in [-1, 1]
    span the display; positive y is up.
    """

    def __init__(self, display: DisplayRect, smoothing_factor: float = 0.7):
        self._display = display
        self._filter = ExponentialFilter(smoothing_factor)

    def map(self, gaze_vector: Sequence[float]) -> GazePoint:
        x, y = float(gaze_vector[0]), float(gaze_vector[1])

        nx = float(np.clip((x + 1.0) / 2.0, 0.0, 1.0))
        ny = float(np.clip(1.0 - (y + 1.0) / 2.0, 0.0, 1.0))

        d = self._display
        return self._filter.update(GazePoint(d.left + nx * d.width, d.top + ny * d.height))

    def update_display(self, display: DisplayRect):
        self._display = display
        self._filter.reset()

    def reset(self):
        self._filter.reset()
