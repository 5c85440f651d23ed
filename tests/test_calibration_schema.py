"""
Tests for calibration schema and validation.
"""

import math

import pytest
from datetime import datetime

from gazelink.storage.schema import CalibrationModel, CalibrationSample
from gazelink.vision.geometry import GazePoint


class TestCalibrationSample:
    """Tests for CalibrationSample."""

    def test_valid_sample(self):
        """Test creating a valid calibration sample."""
        sample = CalibrationSample(raw_x=10.0, raw_y=-20.0, screen_x=15.0, screen_y=-30.0, sample_count=60)

        assert sample.validate() is True
        assert sample.raw == GazePoint(10.0, -20.0)
        assert sample.screen == GazePoint(15.0, -30.0)

    def test_negative_coordinates_are_valid(self):
        """Centered coordinates are negative left of and below the center."""
        sample = CalibrationSample(raw_x=-150.0, raw_y=-300.0, screen_x=-157.2, screen_y=-340.8)

        assert sample.validate() is True

    def test_non_finite_coordinates(self):
        """Test that NaN coordinates are invalid."""
        sample = CalibrationSample(raw_x=math.nan, raw_y=0.0, screen_x=0.0, screen_y=0.0)

        with pytest.raises(ValueError, match="finite"):
            sample.validate()

    def test_zero_samples(self):
        """Test that zero samples is invalid."""
        sample = CalibrationSample(raw_x=0.0, raw_y=0.0, screen_x=0.0, screen_y=0.0, sample_count=0)

        with pytest.raises(ValueError, match="Sample count must be positive"):
            sample.validate()

    def test_to_dict_and_back(self):
        """Test serialization roundtrip."""
        sample = CalibrationSample(raw_x=1.5, raw_y=2.5, screen_x=3.5, screen_y=4.5, sample_count=42)

        restored = CalibrationSample.from_dict(sample.to_dict())

        assert restored == sample


class TestCalibrationModel:
    """Tests for CalibrationModel."""

    def test_identity_is_unfitted(self):
        """Test the default model."""
        model = CalibrationModel.identity()

        assert model.fitted is False
        assert model.fitted_at == ""
        assert model.validate() is True

    def test_identity_apply_is_noop(self):
        """An unfitted model leaves points unchanged."""
        model = CalibrationModel.identity()

        assert model.apply(GazePoint(12.5, -7.0)) == GazePoint(12.5, -7.0)

    def test_apply(self):
        """Test per-axis linear mapping."""
        model = CalibrationModel.from_fit(scale_x=2.0, scale_y=0.5, offset_x=10.0, offset_y=-4.0)

        result = model.apply(GazePoint(3.0, 8.0))

        assert result.x == pytest.approx(16.0)
        assert result.y == pytest.approx(0.0)

    def test_from_fit_sets_timestamp(self):
        """Test that a fitted model carries a parseable fit time."""
        model = CalibrationModel.from_fit(1.1, 0.9, 3.0, -2.0)

        assert model.fitted is True
        datetime.fromisoformat(model.fitted_at)
        assert model.validate() is True

    def test_unfitted_non_identity_is_invalid(self):
        """Test that the unfitted flag requires identity parameters."""
        model = CalibrationModel(scale_x=2.0)

        with pytest.raises(ValueError, match="identity"):
            model.validate()

    def test_non_finite_parameters(self):
        """Test that infinite parameters are invalid."""
        model = CalibrationModel(scale_x=math.inf, fitted=True, fitted_at=datetime.now().isoformat())

        with pytest.raises(ValueError, match="finite"):
            model.validate()

    def test_bad_timestamp(self):
        """Test that a fitted model needs an ISO timestamp."""
        model = CalibrationModel(scale_x=1.2, fitted=True, fitted_at="yesterday")

        with pytest.raises(ValueError, match="Invalid timestamp format"):
            model.validate()

    def test_model_is_frozen(self):
        """Models are replaced, never mutated."""
        model = CalibrationModel.identity()

        with pytest.raises(AttributeError):
            model.scale_x = 3.0

    def test_to_dict_and_back(self):
        """Test serialization roundtrip."""
        model = CalibrationModel.from_fit(1.25, 0.8, -5.0, 12.0)

        data = model.to_dict()
        assert data["version"] == "1.0"

        restored = CalibrationModel.from_dict(data)
        assert restored == model
