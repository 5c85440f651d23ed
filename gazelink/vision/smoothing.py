"""
Gaze smoothing and jitter control.

The sliding-window mean is always on. Outlier rejection, exponential
smoothing, velocity limiting and a dead zone are optional stages, each
disabled by default and enabled through SmoothingConfig.
"""

import math
from collections import deque
from typing import Optional

import numpy as np

from gazelink.core.config import SmoothingConfig
from gazelink.vision.geometry import GazePoint
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


def _distance(a: GazePoint, b: GazePoint) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


class SlidingWindowMean:
    """Mean of the last N points, emitted from the first point on."""

    def __init__(self, window_size: int = 15):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self._xs: deque = deque(maxlen=window_size)
        self._ys: deque = deque(maxlen=window_size)

    def update(self, point: GazePoint) -> GazePoint:
        self._xs.append(point.x)
        self._ys.append(point.y)
        return self.mean

    @property
    def mean(self) -> Optional[GazePoint]:
        if not self._xs:
            return None
        return GazePoint(float(np.mean(self._xs)), float(np.mean(self._ys)))

    def reset(self):
        self._xs.clear()
        self._ys.clear()

    def __len__(self) -> int:
        return len(self._xs)


class OutlierRejector:
    """
    Reject points farther than ``threshold`` from a reference point.

    After ``patience`` consecutive rejections the gaze is treated as having
    moved: the point is accepted and ``relocated`` reports True until the
    next call.
    """

    def __init__(self, threshold: float, patience: int = 3):
        self._threshold = threshold
        self._patience = patience
        self._rejections = 0
        self.relocated = False

    def accept(self, point: GazePoint, reference: Optional[GazePoint]) -> bool:
        self.relocated = False
        if reference is None or _distance(point, reference) <= self._threshold:
            self._rejections = 0
            return True

        self._rejections += 1
        if self._rejections >= self._patience:
            self._rejections = 0
            self.relocated = True
            return True
        return False

    def reset(self):
        self._rejections = 0
        self.relocated = False


class ExponentialFilter:
    """
    Exponential moving average: alpha * previous + (1 - alpha) * new.

    The first point passes through unchanged.
    """

    def __init__(self, alpha: float = 0.7):
        self._alpha = alpha
        self._previous: Optional[GazePoint] = None

    def update(self, point: GazePoint) -> GazePoint:
        if self._previous is None:
            self._previous = point
            return point

        a = self._alpha
        smoothed = GazePoint(
            a * self._previous.x + (1 - a) * point.x,
            a * self._previous.y + (1 - a) * point.y,
        )
        self._previous = smoothed
        return smoothed

    def reset(self):
        self._previous = None


class VelocityLimiter:
    """Clamp movement to ``max_speed`` units per second of sample time."""

    def __init__(self, max_speed: float):
        self._max_speed = max_speed
        self._previous: Optional[GazePoint] = None
        self._previous_time: Optional[float] = None

    def update(self, point: GazePoint, timestamp: float) -> GazePoint:
        previous, previous_time = self._previous, self._previous_time
        result = point

        if previous is not None and previous_time is not None:
            dt = timestamp - previous_time
            distance = _distance(point, previous)
            max_step = self._max_speed * max(dt, 0.0)

            if distance > max_step:
                scale = max_step / distance
                result = GazePoint(
                    previous.x + (point.x - previous.x) * scale,
                    previous.y + (point.y - previous.y) * scale,
                )

        self._previous = result
        self._previous_time = timestamp
        return result

    def reset(self):
        self._previous = None
        self._previous_time = None


class DeadZoneFilter:
    """Hold the last output until a point moves at least ``radius`` away."""

    def __init__(self, radius: float):
        self._radius = radius
        self._held: Optional[GazePoint] = None

    def update(self, point: GazePoint) -> GazePoint:
        if self._held is not None and _distance(point, self._held) < self._radius:
            return self._held
        self._held = point
        return point

    def reset(self):
        self._held = None


class GazeSmoother:
    """
    Smooth raw gaze points to reduce jitter.

    Pipeline:
    1. Outlier rejection against the window mean (optional)
    2. Sliding-window mean
    3. Exponential moving average (optional)
    4. Velocity limiting (optional)
    5. Dead zone (optional)

    Distance thresholds are configured as fractions of the screen width.
    """

    def __init__(self, config: SmoothingConfig, screen_width: float):
        """
        Initialize smoother.

        Args:
            config: Smoothing configuration
            screen_width: Sender screen width in points
        """
        self._config = config
        self._screen_width = screen_width

        self._window = SlidingWindowMean(config.window_size)
        self._outliers = (
            OutlierRejector(config.outlier_threshold * screen_width, config.outlier_patience)
            if config.enable_outlier_rejection else None
        )
        self._exponential = (
            ExponentialFilter(config.exponential_alpha) if config.enable_exponential else None
        )
        self._velocity = (
            VelocityLimiter(config.max_velocity * screen_width)
            if config.enable_velocity_limit else None
        )
        self._dead_zone = (
            DeadZoneFilter(config.dead_zone * screen_width) if config.enable_dead_zone else None
        )

        self._last_output: Optional[GazePoint] = None

        logger.info(
            f"GazeSmoother initialized: window={config.window_size}, "
            f"outliers={config.enable_outlier_rejection}, "
            f"exponential={config.enable_exponential}, "
            f"velocity={config.enable_velocity_limit}, "
            f"dead_zone={config.enable_dead_zone}"
        )

    def smooth(self, point: GazePoint, timestamp: float = 0.0) -> GazePoint:
        """
        Apply smoothing to one raw point.

        Args:
            point: Raw gaze point
            timestamp: Sample time in seconds (used by the velocity limiter)

        Returns:
            Smoothed gaze point. A rejected outlier returns the previous output.
        """
        if self._outliers is not None:
            if not self._outliers.accept(point, self._window.mean):
                logger.debug(f"Outlier rejected: ({point.x:.1f}, {point.y:.1f})")
                if self._last_output is not None:
                    return self._last_output
            elif self._outliers.relocated:
                # Sustained jump: restart from the new position
                logger.debug(f"Gaze relocated to ({point.x:.1f}, {point.y:.1f})")
                self._reset_stages()

        result = self._window.update(point)

        if self._exponential is not None:
            result = self._exponential.update(result)
        if self._velocity is not None:
            result = self._velocity.update(result, timestamp)
        if self._dead_zone is not None:
            result = self._dead_zone.update(result)

        self._last_output = result
        return result

    def reset(self):
        """Reset smoother state (e.g., after tracking is lost)."""
        self._reset_stages()
        if self._outliers is not None:
            self._outliers.reset()
        self._last_output = None
        logger.debug("Smoother reset")

    def _reset_stages(self):
        self._window.reset()
        for stage in (self._exponential, self._velocity, self._dead_zone):
            if stage is not None:
                stage.reset()

    @property
    def window_length(self) -> int:
        return len(self._window)

    @property
    def current_position(self) -> Optional[GazePoint]:
        """Get current smoothed position."""
        return self._last_output
