"""
Shared fixtures and builders for the test suite.
"""

import numpy as np
import pytest

from gazelink.core.config import AppConfig, StorageConfig
from gazelink.vision.geometry import FaceSample


def translation(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    m = np.eye(4)
    m[:3, 3] = (x, y, z)
    return m


def rotation_y(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    m = np.eye(4)
    m[0, 0], m[0, 2] = c, s
    m[2, 0], m[2, 2] = -s, c
    return m


def make_sample(
    face_x: float = 0.0,
    face_y: float = 0.0,
    face_z: float = -0.3,
    eye_offset: float = 0.005,
    eye_rotation: np.ndarray = None,
    blink_left: float = 0.0,
    blink_right: float = 0.0,
    timestamp: float = 0.0,
) -> FaceSample:
    """A face in front of the screen plane with both eyes looking along +z."""
    rotation = np.eye(4) if eye_rotation is None else eye_rotation
    return FaceSample(
        face_transform=translation(face_x, face_y, face_z),
        left_eye_transform=translation(-eye_offset) @ rotation,
        right_eye_transform=translation(eye_offset) @ rotation,
        look_at_point=np.array([0.0, 0.0, 2.0]),
        blink_left=blink_left,
        blink_right=blink_right,
        timestamp=timestamp,
    )


def face_offset_for_point(config: AppConfig, x_pt: float, y_pt: float):
    """Face translation whose straight-ahead gaze lands on a given point."""
    screen = config.screen
    return (
        x_pt * (screen.physical_width_m / 2) / screen.width_pt,
        y_pt * (screen.physical_height_m / 2) / screen.height_pt,
    )


class FakeClient:
    """Records sent messages instead of writing to a socket."""

    def __init__(self):
        self.messages = []

    def send(self, message) -> bool:
        self.messages.append(message)
        return True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def config(tmp_path):
    """Default configuration with storage under a temporary directory."""
    return AppConfig(storage=StorageConfig(data_dir=tmp_path))


@pytest.fixture
def clock():
    return FakeClock()
