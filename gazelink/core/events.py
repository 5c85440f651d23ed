"""
Typed events delivered from the pipeline components to their single owner.

Each component takes one listener callable; there is no fan-out.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Hashable, Optional

from gazelink.storage.schema import CalibrationModel
from gazelink.vision.geometry import GazePoint


# --- Sender side ---

@dataclass(frozen=True)
class GazeUpdated:
    """A smoothed, calibrated gaze position (sender points, centered, Y up)."""

    point: GazePoint
    raw: GazePoint
    timestamp: float


@dataclass(frozen=True)
class BlinkDetected:
    """An intentional blink started (True) or ended (False)."""

    is_blinking: bool


@dataclass(frozen=True)
class TrackingLost:
    """The face anchor was removed; smoothing state has been cleared."""

    timestamp: Optional[float] = None


@dataclass(frozen=True)
class CalibrationFinished:
    """Outcome of a calibration capture run."""

    success: bool
    model: Optional[CalibrationModel] = None
    reason: str = ""


# --- Dwell ---

class DwellEventKind(Enum):
    STARTED = auto()
    PROGRESS = auto()
    COMPLETED = auto()
    CANCELLED = auto()


@dataclass(frozen=True)
class DwellEvent:
    kind: DwellEventKind
    region_id: Hashable
    progress: float = 0.0


# --- Transport ---

class ConnectionEventKind(Enum):
    CONNECTED = auto()
    DISCONNECTED = auto()
    ERROR = auto()


@dataclass(frozen=True)
class ConnectionEvent:
    kind: ConnectionEventKind
    peer_id: str
    error: Optional[Exception] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in (ConnectionEventKind.DISCONNECTED, ConnectionEventKind.ERROR)


def ignore(_event: object) -> None:
    """Default listener for owners that do not care about events."""
