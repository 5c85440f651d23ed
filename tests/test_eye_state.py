"""
Tests for eye openness and blink detection.
"""

from gazelink.vision.eye_state import BlinkDetector, eyes_open


class TestEyesOpen:
    """Tests for eyes_open()."""

    def test_both_open(self):
        assert eyes_open(0.1, 0.2) is True

    def test_one_closed(self):
        assert eyes_open(0.1, 0.6) is False

    def test_threshold_is_exclusive(self):
        assert eyes_open(0.5, 0.0) is False


class TestBlinkDetector:
    """Tests for BlinkDetector."""

    def test_blink_start_and_end(self):
        detector = BlinkDetector()

        assert detector.update(0.1, 0.1) is None
        assert detector.update(0.9, 0.8) is True
        assert detector.is_blinking is True
        assert detector.update(0.9, 0.9) is None
        assert detector.update(0.5, 0.5) is None
        assert detector.update(0.1, 0.2) is False
        assert detector.is_blinking is False

    def test_blink_ends_when_eyes_count_open(self):
        """Weights back below 0.5 end the blink, the same frame gaze resumes."""
        detector = BlinkDetector()

        detector.update(0.0, 0.0)
        assert detector.update(0.9, 0.9) is True
        assert detector.update(0.4, 0.4) is False
        assert detector.is_blinking is False

    def test_one_eye_still_closed_keeps_blinking(self):
        detector = BlinkDetector()
        detector.update(0.0, 0.0)
        detector.update(0.9, 0.9)

        assert detector.update(0.4, 0.6) is None
        assert detector.is_blinking is True

    def test_slow_close_is_not_a_blink(self):
        """Passing through the middle band does not count."""
        detector = BlinkDetector()

        detector.update(0.1, 0.1)
        detector.update(0.5, 0.5)

        assert detector.update(0.9, 0.9) is None

    def test_one_eye_is_not_a_blink(self):
        detector = BlinkDetector()

        detector.update(0.1, 0.1)

        assert detector.update(0.9, 0.1) is None

    def test_first_frame_closed(self):
        """Without a previous frame there is no transition."""
        assert BlinkDetector().update(0.9, 0.9) is None

    def test_reset(self):
        detector = BlinkDetector()
        detector.update(0.1, 0.1)
        detector.update(0.9, 0.9)

        detector.reset()

        assert detector.is_blinking is False
