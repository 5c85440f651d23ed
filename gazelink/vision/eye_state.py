"""
Eye openness and intentional blink detection from blink weights.
"""

from typing import Optional

from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


def eyes_open(blink_left: float, blink_right: float, threshold: float = 0.5) -> bool:
    """Eyes count as open only when both blink weights are below threshold."""
    return blink_left < threshold and blink_right < threshold


class BlinkDetector:
    """
    Detect deliberate blinks.

    A blink starts when both weights rise above ``closed_threshold`` in a
    frame where both were below ``open_threshold`` in the previous frame.
    It ends on the first frame where the eyes count as open again, i.e.
    both weights are below ``reopen_threshold``.
    """

    def __init__(
        self,
        closed_threshold: float = 0.7,
        open_threshold: float = 0.3,
        reopen_threshold: float = 0.5,
    ):
        self._closed_threshold = closed_threshold
        self._open_threshold = open_threshold
        self._reopen_threshold = reopen_threshold
        self._previous: Optional[tuple] = None
        self._blinking = False

    def update(self, blink_left: float, blink_right: float) -> Optional[bool]:
        """
        Feed one frame.

        Returns:
            True when a blink starts, False when it ends, None otherwise
        """
        previous = self._previous
        self._previous = (blink_left, blink_right)

        if not self._blinking:
            closed = blink_left > self._closed_threshold and blink_right > self._closed_threshold
            if closed and previous is not None and all(w < self._open_threshold for w in previous):
                self._blinking = True
                logger.debug("Blink started")
                return True
            return None

        if eyes_open(blink_left, blink_right, self._reopen_threshold):
            self._blinking = False
            logger.debug("Blink ended")
            return False
        return None

    @property
    def is_blinking(self) -> bool:
        return self._blinking

    def reset(self):
        self._previous = None
        self._blinking = False
