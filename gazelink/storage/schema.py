"""
Calibration data schema and validation.

Only numeric mapping parameters are stored: four floats, a fitted flag and
the time of the fit.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any
import math
from datetime import datetime

from gazelink.vision.geometry import GazePoint
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = "1.0"


@dataclass(frozen=True)
class CalibrationSample:
    """
    One calibration target: the averaged raw gaze measured while the target
    was displayed, and the target's known screen position.
    """

    raw_x: float
    raw_y: float
    screen_x: float
    screen_y: float

    # Number of raw frames averaged into this sample
    sample_count: int = 1

    @property
    def raw(self) -> GazePoint:
        return GazePoint(self.raw_x, self.raw_y)

    @property
    def screen(self) -> GazePoint:
        return GazePoint(self.screen_x, self.screen_y)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalibrationSample":
        """Create from dictionary."""
        return cls(**data)

    def validate(self) -> bool:
        """
        Validate calibration sample data.

        Returns:
            True if valid, raises ValueError if invalid
        """
        values = (self.raw_x, self.raw_y, self.screen_x, self.screen_y)
        if not all(math.isfinite(v) for v in values):
            raise ValueError("Sample coordinates must be finite")

        if self.sample_count <= 0:
            raise ValueError("Sample count must be positive")

        return True


@dataclass(frozen=True)
class CalibrationModel:
    """
    Per-axis linear mapping from raw gaze points to screen points.

        screen_x = raw_x * scale_x + offset_x
        screen_y = raw_y * scale_y + offset_y

    An unfitted model is always the identity transform. Instances are frozen;
    a new fit replaces the whole model.
    """

    scale_x: float = 1.0
    scale_y: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0

    fitted: bool = False

    # ISO-8601 time of the fit, empty when unfitted
    fitted_at: str = ""

    @classmethod
    def identity(cls) -> "CalibrationModel":
        """Default model used until a calibration has been fitted."""
        return cls()

    @classmethod
    def from_fit(
        cls, scale_x: float, scale_y: float, offset_x: float, offset_y: float
    ) -> "CalibrationModel":
        """Create a fitted model stamped with the current time."""
        return cls(
            scale_x=float(scale_x),
            scale_y=float(scale_y),
            offset_x=float(offset_x),
            offset_y=float(offset_y),
            fitted=True,
            fitted_at=datetime.now().isoformat(),
        )

    def apply(self, raw: GazePoint) -> GazePoint:
        """Map a raw gaze point to a calibrated screen point."""
        return GazePoint(
            raw.x * self.scale_x + self.offset_x,
            raw.y * self.scale_y + self.offset_y,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["version"] = SCHEMA_VERSION
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalibrationModel":
        """Create from dictionary."""
        return cls(
            scale_x=float(data.get("scale_x", 1.0)),
            scale_y=float(data.get("scale_y", 1.0)),
            offset_x=float(data.get("offset_x", 0.0)),
            offset_y=float(data.get("offset_y", 0.0)),
            fitted=bool(data.get("fitted", False)),
            fitted_at=data.get("fitted_at") or "",
        )

    def validate(self) -> bool:
        """
        Validate calibration model.

        Returns:
            True if valid, raises ValueError if invalid
        """
        values = (self.scale_x, self.scale_y, self.offset_x, self.offset_y)
        if not all(math.isfinite(v) for v in values):
            raise ValueError("Calibration parameters must be finite")

        if not self.fitted:
            if values != (1.0, 1.0, 0.0, 0.0):
                raise ValueError("Unfitted calibration must be the identity")
            return True

        try:
            datetime.fromisoformat(self.fitted_at)
        except (TypeError, ValueError):
            raise ValueError("Invalid timestamp format")

        logger.debug(
            f"Calibration model validated: scale=({self.scale_x:.3f}, {self.scale_y:.3f}) "
            f"offset=({self.offset_x:.1f}, {self.offset_y:.1f})"
        )
        return True
