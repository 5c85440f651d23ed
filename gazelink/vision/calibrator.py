"""
Calibration system for mapping raw gaze to screen coordinates.

Provides the per-axis least-squares fit and the guided capture procedure
that collects the points it is fitted on.
"""

import numpy as np
from typing import Callable, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field
from enum import Enum, auto
from scipy import stats  # For trimmed mean (robust averaging)

from gazelink.core.config import CalibrationConfig
from gazelink.core.events import CalibrationFinished, ignore
from gazelink.vision.geometry import GazePoint, Size
from gazelink.storage.schema import CalibrationModel, CalibrationSample
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)

# Below this the per-axis normal equations are treated as singular
DEGENERATE_DENOMINATOR = 1e-4


def _fit_axis(raw: np.ndarray, screen: np.ndarray) -> Tuple[float, float, bool]:
    """
    Ordinary least squares for screen = raw * scale + offset.

    Returns:
        (scale, offset, degenerate)
    """
    n = len(raw)
    sum_raw = float(np.sum(raw))
    sum_screen = float(np.sum(screen))
    sum_raw_sq = float(np.sum(raw * raw))
    sum_cross = float(np.sum(raw * screen))

    denominator = n * sum_raw_sq - sum_raw * sum_raw
    if abs(denominator) <= DEGENERATE_DENOMINATOR:
        return 1.0, (sum_screen - sum_raw) / n, True

    scale = (n * sum_cross - sum_raw * sum_screen) / denominator
    offset = (sum_screen - scale * sum_raw) / n
    return scale, offset, False


def fit_calibration(
    raw_points: Sequence[GazePoint],
    screen_points: Sequence[GazePoint],
) -> Optional[CalibrationModel]:
    """
    Fit an independent linear mapping per axis.

    An axis whose raw values have (almost) no spread keeps a scale of 1 and
    only corrects the mean offset.

    Args:
        raw_points: Averaged raw gaze point per target
        screen_points: Known target position per target

    Returns:
        Fitted CalibrationModel, or None with fewer than two pairs or
        mismatched inputs
    """
    if len(raw_points) != len(screen_points) or len(raw_points) < 2:
        logger.warning(
            f"Cannot fit calibration: {len(raw_points)} raw / {len(screen_points)} screen points"
        )
        return None

    raw = np.asarray(raw_points, dtype=np.float64)
    screen = np.asarray(screen_points, dtype=np.float64)

    scale_x, offset_x, degenerate_x = _fit_axis(raw[:, 0], screen[:, 0])
    scale_y, offset_y, degenerate_y = _fit_axis(raw[:, 1], screen[:, 1])

    if degenerate_x or degenerate_y:
        logger.warning(
            f"Degenerate calibration axis (x={degenerate_x}, y={degenerate_y}), "
            f"using offset-only correction"
        )

    model = CalibrationModel.from_fit(scale_x, scale_y, offset_x, offset_y)
    logger.info(
        f"Calibration fitted on {len(raw)} points: "
        f"scale=({scale_x:.3f}, {scale_y:.3f}) offset=({offset_x:.1f}, {offset_y:.1f})"
    )
    return model


def calibration_targets(screen_size: Size, margin_fraction: float = 0.1) -> List[GazePoint]:
    """
    Nine calibration targets in centered, Y-up screen points.

    Order: center, top-left, top-right, bottom-left, bottom-right,
    top-center, bottom-center, left-center, right-center.
    """
    w, h = screen_size
    mx = w * margin_fraction
    my = h * margin_fraction

    # Laid out with a top-left origin, then converted
    top_left_points = [
        (w / 2, h / 2),
        (mx, my),
        (w - mx, my),
        (mx, h - my),
        (w - mx, h - my),
        (w / 2, my),
        (w / 2, h - my),
        (mx, h / 2),
        (w - mx, h / 2),
    ]
    return [GazePoint(px - w / 2, h / 2 - py) for px, py in top_left_points]


class CalibrationState(Enum):
    """Calibration procedure states."""

    IDLE = auto()
    SETTLING = auto()  # Target shown, waiting before collecting samples
    COLLECTING = auto()  # Collecting samples for current target
    COMPLETED = auto()  # Model fitted
    FAILED = auto()  # Fit impossible, nothing installed
    ABORTED = auto()  # Cancelled by the user


_FINISHED_STATES = (CalibrationState.COMPLETED, CalibrationState.FAILED, CalibrationState.ABORTED)


@dataclass
class CalibrationTarget:
    """Single calibration target information."""

    index: int
    screen: GazePoint  # Known position (centered points, Y up)
    samples: List[GazePoint] = field(default_factory=list)

    def add_sample(self, raw: GazePoint):
        """Add a raw gaze sample for this target."""
        self.samples.append(raw)

    def compute_average(self, trim_percent: float = 0.0) -> Optional[GazePoint]:
        """
        Compute robust average gaze for this target.

        Args:
            trim_percent: Proportion to trim from each end (0-0.5)

        Returns:
            Averaged raw point, or None without samples
        """
        if not self.samples:
            return None

        xs = np.array([s.x for s in self.samples])
        ys = np.array([s.y for s in self.samples])

        return GazePoint(
            float(stats.trim_mean(xs, trim_percent)),
            float(stats.trim_mean(ys, trim_percent)),
        )


class CalibrationSequence:
    """
    Guided calibration capture driven by sensor frames.

    Process:
    1. Show target, wait for the settle delay
    2. Collect raw gaze samples (samples_per_point frames)
    3. Average them into one CalibrationSample
    4. Repeat for all 9 targets
    5. Fit the model

    A target that has not filled up when its timeout expires is closed with
    the samples it has, or skipped when it has none. The owner is told the
    outcome exactly once through ``on_finished``; installing and persisting
    the model is left to the owner.
    """

    def __init__(
        self,
        config: CalibrationConfig,
        screen_size: Size,
        on_finished: Callable[[CalibrationFinished], None] = ignore,
    ):
        """
        Initialize calibration sequence.

        Args:
            config: Calibration configuration
            screen_size: Sender screen size in points
            on_finished: Listener for the outcome
        """
        self._config = config
        self._screen_size = screen_size
        self._on_finished = on_finished

        self._state = CalibrationState.IDLE
        self._targets = [
            CalibrationTarget(index=i, screen=p)
            for i, p in enumerate(calibration_targets(screen_size, config.margin_fraction))
        ]
        self._current_index = 0
        self._shown_at = 0.0

        self._samples: List[CalibrationSample] = []
        self._model: Optional[CalibrationModel] = None

        logger.info(
            f"CalibrationSequence initialized: {len(self._targets)} targets, "
            f"{config.samples_per_point} samples per point"
        )

    def start(self, now: float):
        """Show the first target."""
        if self._state != CalibrationState.IDLE:
            raise RuntimeError(f"Calibration already started ({self._state.name})")

        self._current_index = 0
        self._show_target(now)
        logger.info("Calibration started")

    def add_sample(self, raw: GazePoint, now: float) -> bool:
        """
        Offer one raw gaze point.

        Args:
            raw: Raw (uncalibrated, unsmoothed) gaze point
            now: Sample time in seconds

        Returns:
            True if the sample was recorded for the current target
        """
        self.tick(now)

        if self._state != CalibrationState.COLLECTING:
            return False

        target = self._targets[self._current_index]
        target.add_sample(raw)

        if len(target.samples) >= self._config.samples_per_point:
            self._complete_current_target(now)

        return True

    def tick(self, now: float):
        """Advance time-based transitions without a sample."""
        if self._state == CalibrationState.SETTLING:
            if now - self._shown_at >= self._config.settle_seconds:
                self._state = CalibrationState.COLLECTING
                logger.debug(f"Target {self._current_index}: collecting")

        if self._state in (CalibrationState.SETTLING, CalibrationState.COLLECTING):
            if now - self._shown_at >= self._config.target_timeout_seconds:
                logger.warning(
                    f"Target {self._current_index} timed out with "
                    f"{len(self._targets[self._current_index].samples)} samples"
                )
                self._complete_current_target(now)

    def abort(self):
        """Cancel the run. Nothing is fitted or reported as success."""
        if self._state in _FINISHED_STATES:
            return

        self._state = CalibrationState.ABORTED
        logger.info("Calibration aborted")
        self._on_finished(CalibrationFinished(success=False, reason="aborted"))

    def _show_target(self, now: float):
        self._shown_at = now
        self._state = CalibrationState.SETTLING
        target = self._targets[self._current_index]
        logger.debug(
            f"Target {target.index}: ({target.screen.x:.1f}, {target.screen.y:.1f})"
        )

    def _complete_current_target(self, now: float):
        """Complete current target and move to next."""
        target = self._targets[self._current_index]
        average = target.compute_average(self._config.outlier_trim_percent)

        if average is None:
            logger.warning(f"Target {target.index} skipped: no samples")
        else:
            self._samples.append(
                CalibrationSample(
                    raw_x=average.x,
                    raw_y=average.y,
                    screen_x=target.screen.x,
                    screen_y=target.screen.y,
                    sample_count=len(target.samples),
                )
            )
            logger.info(f"Target {target.index} completed: {len(target.samples)} samples")

        self._current_index += 1

        if self._current_index >= len(self._targets):
            self._finalize_calibration()
        else:
            self._show_target(now)

    def _finalize_calibration(self):
        """Fit the model from all collected targets."""
        model = fit_calibration(
            [s.raw for s in self._samples],
            [s.screen for s in self._samples],
        )

        if model is None:
            self._state = CalibrationState.FAILED
            logger.error(f"Calibration failed: only {len(self._samples)} usable targets")
            self._on_finished(
                CalibrationFinished(success=False, reason="insufficient calibration points")
            )
            return

        self._model = model
        self._state = CalibrationState.COMPLETED
        logger.info("Calibration finalized successfully")
        self._on_finished(CalibrationFinished(success=True, model=model))

    def get_current_target(self) -> Optional[CalibrationTarget]:
        """Get current calibration target."""
        if self._state in _FINISHED_STATES:
            return None
        if 0 <= self._current_index < len(self._targets):
            return self._targets[self._current_index]
        return None

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def is_finished(self) -> bool:
        return self._state in _FINISHED_STATES

    @property
    def samples(self) -> List[CalibrationSample]:
        """Averaged samples of completed targets."""
        return list(self._samples)

    @property
    def model(self) -> Optional[CalibrationModel]:
        """Fitted model, set only on success."""
        return self._model

    @property
    def progress(self) -> Tuple[int, int]:
        """Get progress (current_target, total_targets)."""
        return (min(self._current_index, len(self._targets)), len(self._targets))
