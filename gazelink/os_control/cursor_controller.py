"""
Cursor control with safety mechanisms.

Uses pynput for cross-platform cursor control.
Includes rate limiting and bounds checking for safety.

On macOS a synthetic pointer warp normally freezes local mouse input for a
short suppression interval; the interval is set to zero around each move
so the physical mouse stays usable.
"""

import sys
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

from gazelink.core.config import CursorConfig
from gazelink.os_control.screen_mapper import DisplayRect
from gazelink.vision.geometry import GazePoint
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


class CursorControlError(Exception):
    """Cursor control errors."""

    pass


@contextmanager
def _suppression_window():
    """Zero the local-events suppression interval for the duration of a warp."""
    if sys.platform != "darwin":
        yield
        return

    import Quartz

    source = Quartz.CGEventSourceCreate(Quartz.kCGEventSourceStateCombinedSessionState)
    if source is None:
        yield
        return

    original = Quartz.CGEventSourceGetLocalEventsSuppressionInterval(source)
    Quartz.CGEventSourceSetLocalEventsSuppressionInterval(source, 0.0)
    try:
        yield
    finally:
        Quartz.CGEventSourceSetLocalEventsSuppressionInterval(source, original)


class CursorController:
    """
    Safe cursor control with rate limiting and bounds checking.

    Safety features:
    - Display bounds clamping
    - Rate limiting (one move per min_update_interval)
    - Sub-point moves skipped
    - Failures logged, never raised
    """

    def __init__(
        self,
        display: DisplayRect,
        config: CursorConfig,
        mouse: Optional[Any] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize cursor controller.

        Args:
            display: Display rectangle the pointer is kept inside
            config: Cursor configuration
            mouse: Object with a settable ``position`` and a ``click`` method
                (default: pynput mouse controller)
            clock: Monotonic time source in seconds

        Raises:
            CursorControlError: If no pointer backend is available
        """
        self._display = display
        self._config = config
        self._clock = clock

        if mouse is None:
            try:
                from pynput.mouse import Controller as MouseController
                mouse = MouseController()
            except Exception as e:
                raise CursorControlError(f"No pointer backend available: {e}") from e
        self._mouse = mouse

        # Rate limiting
        self._last_update_time: Optional[float] = None
        self._last_position: Optional[GazePoint] = None

        # Emergency stop flag
        self._enabled = True

        # Statistics
        self._total_moves = 0
        self._skipped_moves = 0
        self._failed_moves = 0

        logger.info(
            f"CursorController initialized: {display.width:.0f}x{display.height:.0f}, "
            f"min_interval={config.min_update_interval*1000:.1f}ms"
        )

    def move_to(self, point: GazePoint) -> bool:
        """
        Move cursor to absolute screen position.

        Args:
            point: Target position in display points

        Returns:
            True if cursor moved, False if skipped (rate limited, too small,
            disabled or failed)
        """
        if not self._enabled:
            return False

        # Rate limiting
        current_time = self._clock()
        if (
            self._last_update_time is not None
            and current_time - self._last_update_time < self._config.min_update_interval
        ):
            self._skipped_moves += 1
            return False

        # Bounds checking
        target = self._display.clamp(point)
        if target != point:
            logger.debug(
                f"Cursor position clamped: ({point.x:.1f},{point.y:.1f}) -> "
                f"({target.x:.1f},{target.y:.1f})"
            )

        last = self._last_position
        if (
            last is not None
            and abs(target.x - last.x) < self._config.min_move_distance
            and abs(target.y - last.y) < self._config.min_move_distance
        ):
            self._skipped_moves += 1
            return False

        try:
            with _suppression_window():
                self._mouse.position = (target.x, target.y)
        except Exception as e:
            self._failed_moves += 1
            logger.error(f"Failed to move cursor: {e}")
            return False

        self._last_update_time = current_time
        self._last_position = target
        self._total_moves += 1
        return True

    def click(self, button: Optional[Any] = None) -> bool:
        """
        Click at the current pointer position.

        Args:
            button: Backend button (default: pynput left button)

        Returns:
            True if the click was sent
        """
        if not self._enabled:
            return False

        try:
            if button is None:
                from pynput.mouse import Button
                button = Button.left
            self._mouse.click(button, 1)
        except Exception as e:
            logger.error(f"Failed to click: {e}")
            return False

        logger.info("Pointer clicked")
        return True

    def enable(self):
        """Enable cursor control."""
        self._enabled = True
        logger.info("Cursor control enabled")

    def disable(self):
        """Disable cursor control (emergency stop)."""
        self._enabled = False
        logger.info("Cursor control disabled")

    def is_enabled(self) -> bool:
        """Check if cursor control is enabled."""
        return self._enabled

    def update_display(self, display: DisplayRect):
        self._display = display
        logger.info(f"Display updated: {display.width:.0f}x{display.height:.0f}")

    def reset(self):
        """Forget the last move so the next one is not gated."""
        self._last_update_time = None
        self._last_position = None

    @property
    def statistics(self) -> dict:
        """Get cursor control statistics."""
        attempted = self._total_moves + self._skipped_moves + self._failed_moves
        return {
            "total_moves": self._total_moves,
            "skipped_moves": self._skipped_moves,
            "failed_moves": self._failed_moves,
            "effective_rate": self._total_moves / attempted if attempted > 0 else 0.0,
        }

    @property
    def last_position(self) -> Optional[GazePoint]:
        return self._last_position
