"""
Geometric gaze estimation from face-tracking samples.

Each eye's view ray is cast from a fixed look-at target back to the eye and
intersected with a virtual plane standing in for the device screen. The
hit points of both eyes are converted to screen points and averaged.

Coordinates produced here are centered at the screen center with positive X
to the right and positive Y up.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, NamedTuple, Optional, Sequence

import numpy as np

from gazelink.core.config import ScreenGeometryConfig
from gazelink.utils.logger import get_logger, ThrottledLogger

logger = get_logger(__name__)
_miss_logger = ThrottledLogger(logger)

_EPSILON = 1e-9


class GazePoint(NamedTuple):
    """2D point in sender screen points (centered, Y up)."""

    x: float
    y: float


class Size(NamedTuple):
    width: float
    height: float


def _as_matrix(value: Any) -> np.ndarray:
    """
    Accept a 4x4 nested sequence or 16 floats in column-major order.
    """
    arr = np.asarray(value, dtype=np.float64)
    if arr.shape == (16,):
        return arr.reshape((4, 4), order="F")
    if arr.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 transform, got shape {arr.shape}")
    return arr


@dataclass(frozen=True)
class FaceSample:
    """
    One sensor frame for a tracked face.

    Attributes:
        face_transform: Face anchor pose in world space (4x4)
        left_eye_transform: Left eye pose relative to the face (4x4)
        right_eye_transform: Right eye pose relative to the face (4x4)
        look_at_point: Point the eyes converge on, face-local (3,)
        blink_left: Left eye blink weight (0 open, 1 closed)
        blink_right: Right eye blink weight
        timestamp: Monotonic capture time in seconds
    """

    face_transform: np.ndarray
    left_eye_transform: np.ndarray
    right_eye_transform: np.ndarray
    look_at_point: np.ndarray
    blink_left: float
    blink_right: float
    timestamp: float

    @property
    def face_transform_flat(self) -> list:
        """Face transform as 16 floats, column-major."""
        return [float(v) for v in self.face_transform.flatten(order="F")]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FaceSample":
        """
        Create from a recorded sample.

        Transforms may be 4x4 nested lists or 16 column-major floats.
        """
        look_at = np.asarray(data.get("look_at_point", (0.0, 0.0, 1.0)), dtype=np.float64)
        if look_at.shape != (3,):
            raise ValueError("look_at_point must have 3 components")

        return cls(
            face_transform=_as_matrix(data["face_transform"]),
            left_eye_transform=_as_matrix(data["left_eye_transform"]),
            right_eye_transform=_as_matrix(data["right_eye_transform"]),
            look_at_point=look_at,
            blink_left=float(data.get("blink_left", 0.0)),
            blink_right=float(data.get("blink_right", 0.0)),
            timestamp=float(data.get("timestamp", 0.0)),
        )


def intersect_segment_with_plane(
    start: np.ndarray,
    end: np.ndarray,
    plane_pose: np.ndarray,
    plane_size: Size,
) -> Optional[np.ndarray]:
    """
    Intersect a world-space segment with a finite rectangular plane.

    The plane is the z = 0 plane of ``plane_pose``, centered on its origin.

    Args:
        start: Segment start (3,)
        end: Segment end (3,)
        plane_pose: Plane pose in world space (4x4)
        plane_size: Plane extent in meters

    Returns:
        Hit point in plane-local coordinates (3,), or None if the segment
        does not cross the plane inside its bounds
    """
    to_local = np.linalg.inv(plane_pose)
    a = (to_local @ np.append(start, 1.0))[:3]
    b = (to_local @ np.append(end, 1.0))[:3]

    dz = b[2] - a[2]
    if abs(dz) < _EPSILON:
        return None

    t = -a[2] / dz
    if t < 0.0 or t > 1.0:
        return None

    hit = a + t * (b - a)
    if abs(hit[0]) > plane_size.width / 2 or abs(hit[1]) > plane_size.height / 2:
        return None

    return hit


def gaze_vector_from_look_at(look_at_point: Sequence[float]) -> np.ndarray:
    """Normalized gaze direction; zero when the look-at point is degenerate."""
    v = np.asarray(look_at_point, dtype=np.float64)
    norm = float(np.linalg.norm(v))
    if norm < _EPSILON or not math.isfinite(norm):
        return np.zeros(3)
    return v / norm


def combined_eye_direction(sample: FaceSample) -> np.ndarray:
    """Average world-space forward axis of both eyes, normalized."""
    directions = []
    for eye in (sample.left_eye_transform, sample.right_eye_transform):
        world = sample.face_transform @ eye
        directions.append(world[:3, 2])
    return gaze_vector_from_look_at(np.mean(directions, axis=0))


class GazeEstimator:
    """
    Ray-cast gaze estimator.

    For each eye:
    1. World transform = face transform x eye transform
    2. Look-at target = world transform x (0, 0, d, 1)
    3. Intersect the target-to-eye segment with the screen plane
    4. Scale plane-local meters to screen points

    Both eyes must hit the plane or the frame yields no estimate.
    """

    def __init__(self, config: ScreenGeometryConfig, screen_pose: Optional[np.ndarray] = None):
        """
        Initialize gaze estimator.

        Args:
            config: Screen geometry constants
            screen_pose: Virtual screen plane pose in world space (default identity)
        """
        self._config = config
        self._plane_size = Size(config.physical_width_m, config.physical_height_m)
        self._screen_pose = np.eye(4) if screen_pose is None else _as_matrix(screen_pose)
        self._last_point: Optional[GazePoint] = None

        logger.info(
            f"GazeEstimator initialized: plane={config.physical_width_m}x"
            f"{config.physical_height_m}m, screen={config.width_pt:.0f}x{config.height_pt:.0f}pt"
        )

    def update_screen_pose(self, pose: np.ndarray):
        """Replace the virtual screen plane pose (world space)."""
        self._screen_pose = _as_matrix(pose)

    def estimate(self, sample: FaceSample) -> Optional[GazePoint]:
        """
        Estimate the raw on-screen gaze point for one frame.

        Args:
            sample: Sensor frame

        Returns:
            GazePoint in centered screen points, or None if either eye's ray
            misses the screen plane
        """
        left = self._eye_hit(sample.face_transform, sample.left_eye_transform)
        right = self._eye_hit(sample.face_transform, sample.right_eye_transform)

        if left is None or right is None:
            _miss_logger.debug("Gaze ray missed the screen plane")
            return None

        point = GazePoint((left.x + right.x) / 2.0, (left.y + right.y) / 2.0)
        self._last_point = point
        return point

    def _eye_hit(self, face_transform: np.ndarray, eye_transform: np.ndarray) -> Optional[GazePoint]:
        world = face_transform @ eye_transform
        eye_position = world[:3, 3]
        target = (world @ np.array([0.0, 0.0, self._config.look_at_distance_m, 1.0]))[:3]

        hit = intersect_segment_with_plane(target, eye_position, self._screen_pose, self._plane_size)
        if hit is None:
            return None

        return self._to_screen_points(hit[0], hit[1])

    def _to_screen_points(self, local_x: float, local_y: float) -> GazePoint:
        cfg = self._config
        x = local_x / (cfg.physical_width_m / 2) * cfg.width_pt
        y = local_y / (cfg.physical_height_m / 2) * cfg.height_pt + cfg.height_compensation_pt
        return GazePoint(float(x), float(y))

    @property
    def screen_pose(self) -> np.ndarray:
        return self._screen_pose

    @property
    def last_point(self) -> Optional[GazePoint]:
        """Last successful estimate."""
        return self._last_point

    def reset(self):
        """Reset estimator state."""
        self._last_point = None
