"""
Tests for gaze smoothing stages.
"""

import pytest

from gazelink.core.config import SmoothingConfig
from gazelink.vision.geometry import GazePoint
from gazelink.vision.smoothing import (
    DeadZoneFilter,
    ExponentialFilter,
    GazeSmoother,
    OutlierRejector,
    SlidingWindowMean,
    VelocityLimiter,
)

WIDTH = 400.0


class TestSlidingWindowMean:
    """Tests for SlidingWindowMean."""

    def test_first_point_passes_through(self):
        window = SlidingWindowMean(15)

        assert window.update(GazePoint(3.0, -4.0)) == GazePoint(3.0, -4.0)

    def test_mean_of_last_n(self):
        window = SlidingWindowMean(3)
        for x in [0.0, 10.0, 20.0, 30.0]:
            result = window.update(GazePoint(x, -x))

        assert result.x == pytest.approx(20.0)
        assert result.y == pytest.approx(-20.0)
        assert len(window) == 3

    def test_reset(self):
        window = SlidingWindowMean(3)
        window.update(GazePoint(1.0, 1.0))

        window.reset()

        assert window.mean is None
        assert len(window) == 0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            SlidingWindowMean(0)


class TestStages:
    """Tests for the optional smoothing stages."""

    def test_exponential_formula(self):
        """alpha * previous + (1 - alpha) * new."""
        ema = ExponentialFilter(0.7)
        ema.update(GazePoint(0.0, 0.0))

        result = ema.update(GazePoint(10.0, 20.0))

        assert result.x == pytest.approx(3.0)
        assert result.y == pytest.approx(6.0)

    def test_velocity_limiter_clamps_step(self):
        limiter = VelocityLimiter(max_speed=100.0)
        limiter.update(GazePoint(0.0, 0.0), 0.0)

        result = limiter.update(GazePoint(50.0, 0.0), 0.1)

        assert result.x == pytest.approx(10.0)
        assert result.y == pytest.approx(0.0)

    def test_velocity_limiter_allows_slow_moves(self):
        limiter = VelocityLimiter(max_speed=100.0)
        limiter.update(GazePoint(0.0, 0.0), 0.0)

        assert limiter.update(GazePoint(5.0, 0.0), 0.1) == GazePoint(5.0, 0.0)

    def test_dead_zone_holds(self):
        dead_zone = DeadZoneFilter(radius=5.0)
        dead_zone.update(GazePoint(0.0, 0.0))

        assert dead_zone.update(GazePoint(3.0, 0.0)) == GazePoint(0.0, 0.0)
        assert dead_zone.update(GazePoint(6.0, 0.0)) == GazePoint(6.0, 0.0)

    def test_outlier_rejector(self):
        rejector = OutlierRejector(threshold=10.0)

        assert rejector.accept(GazePoint(100.0, 0.0), None) is True
        assert rejector.accept(GazePoint(5.0, 0.0), GazePoint(0.0, 0.0)) is True
        assert rejector.accept(GazePoint(50.0, 0.0), GazePoint(0.0, 0.0)) is False

    def test_outlier_rejector_patience(self):
        rejector = OutlierRejector(threshold=10.0, patience=2)
        origin = GazePoint(0.0, 0.0)

        assert rejector.accept(GazePoint(50.0, 0.0), origin) is False
        assert rejector.accept(GazePoint(50.0, 0.0), origin) is True
        assert rejector.relocated is True
        assert rejector.accept(GazePoint(1.0, 0.0), origin) is True
        assert rejector.relocated is False


class TestGazeSmoother:
    """Tests for the combined smoother."""

    def test_constant_input_is_constant(self):
        smoother = GazeSmoother(SmoothingConfig(), WIDTH)

        for i in range(40):
            result = smoother.smooth(GazePoint(12.0, -8.0), i / 30.0)
            assert result.x == pytest.approx(12.0)
            assert result.y == pytest.approx(-8.0)

    def test_constant_input_constant_with_all_stages(self):
        config = SmoothingConfig(
            enable_outlier_rejection=True,
            enable_exponential=True,
            enable_velocity_limit=True,
            enable_dead_zone=True,
        )
        smoother = GazeSmoother(config, WIDTH)

        for i in range(40):
            result = smoother.smooth(GazePoint(12.0, -8.0), i / 30.0)
            assert result.x == pytest.approx(12.0)
            assert result.y == pytest.approx(-8.0)

    def test_default_is_window_mean(self):
        smoother = GazeSmoother(SmoothingConfig(window_size=2), WIDTH)
        smoother.smooth(GazePoint(0.0, 0.0))

        assert smoother.smooth(GazePoint(10.0, 4.0)) == GazePoint(5.0, 2.0)

    def test_outlier_returns_previous_output(self):
        """A jump beyond 0.3 screen widths is dropped."""
        smoother = GazeSmoother(SmoothingConfig(enable_outlier_rejection=True), WIDTH)
        smoother.smooth(GazePoint(0.0, 0.0))

        result = smoother.smooth(GazePoint(0.5 * WIDTH, 0.0))

        assert result == GazePoint(0.0, 0.0)
        assert smoother.window_length == 1

    def test_sustained_jump_is_followed(self):
        """A move that persists past the patience is taken, not held forever."""
        smoother = GazeSmoother(SmoothingConfig(enable_outlier_rejection=True), WIDTH)
        for i in range(15):
            smoother.smooth(GazePoint(0.0, 0.0), i / 30.0)

        target = GazePoint(0.75 * WIDTH, 0.0)
        assert smoother.smooth(target, 0.5) == GazePoint(0.0, 0.0)
        assert smoother.smooth(target, 0.6) == GazePoint(0.0, 0.0)
        assert smoother.smooth(target, 0.7) == target
        assert smoother.window_length == 1

        for i in range(20):
            assert smoother.smooth(target, 1.0 + i / 30.0) == target

    def test_isolated_outliers_do_not_relocate(self):
        smoother = GazeSmoother(SmoothingConfig(enable_outlier_rejection=True), WIDTH)
        previous = smoother.smooth(GazePoint(0.0, 0.0))

        for _ in range(5):
            assert smoother.smooth(GazePoint(0.75 * WIDTH, 0.0)) == previous
            previous = smoother.smooth(GazePoint(1.0, 0.0))

        assert previous.x < 1.0

    def test_reset_clears_window(self):
        smoother = GazeSmoother(SmoothingConfig(), WIDTH)
        smoother.smooth(GazePoint(100.0, 100.0))

        smoother.reset()

        assert smoother.current_position is None
        assert smoother.smooth(GazePoint(0.0, 0.0)) == GazePoint(0.0, 0.0)
