"""
Wire format for gaze messages.

One JSON object per line, UTF-8, terminated by ``\\n``:

    {"timestamp":..., "gazeVector":{"x","y","z"}, "faceTransform":{"flat":[16]},
     "eyeBlinkLeft":..., "eyeBlinkRight":..., "eyesOpen":...,
     "screenPosition":{"x","y"}, "phoneScreenSize":{"width","height"}}

``screenPosition`` and ``phoneScreenSize`` are optional.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from gazelink.vision.geometry import GazePoint, Size
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)

FACE_TRANSFORM_LENGTH = 16


class MessageDecodeError(ValueError):
    """A received line is not a valid gaze message."""

    pass


def _number(value: Any, name: str) -> float:
    # bool is an int subclass and never a valid coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MessageDecodeError(f"'{name}' must be a number, got {type(value).__name__}")
    value = float(value)
    if not math.isfinite(value):
        raise MessageDecodeError(f"'{name}' must be finite")
    return value


def _object(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise MessageDecodeError(f"'{key}' must be an object")
    return value


@dataclass(frozen=True)
class GazeMessage:
    """
    One gaze update sent from the sender to the receiver.

    ``screen_position`` is the calibrated gaze point in sender screen points
    (centered, Y up). It is None when the eyes are closed or when a peer
    only sends gaze vectors.
    """

    timestamp: float
    gaze_vector: Tuple[float, float, float]
    face_transform: Tuple[float, ...]  # 16 floats, column-major
    eye_blink_left: float
    eye_blink_right: float
    eyes_open: bool
    screen_position: Optional[GazePoint] = None
    phone_screen_size: Optional[Size] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire dictionary."""
        gx, gy, gz = self.gaze_vector
        data: Dict[str, Any] = {
            "timestamp": float(self.timestamp),
            "gazeVector": {"x": float(gx), "y": float(gy), "z": float(gz)},
            "faceTransform": {"flat": [float(v) for v in self.face_transform]},
            "eyeBlinkLeft": float(self.eye_blink_left),
            "eyeBlinkRight": float(self.eye_blink_right),
            "eyesOpen": bool(self.eyes_open),
        }
        if self.screen_position is not None:
            data["screenPosition"] = {
                "x": float(self.screen_position.x),
                "y": float(self.screen_position.y),
            }
        if self.phone_screen_size is not None:
            data["phoneScreenSize"] = {
                "width": float(self.phone_screen_size.width),
                "height": float(self.phone_screen_size.height),
            }
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "GazeMessage":
        """
        Create from a wire dictionary.

        Raises:
            MessageDecodeError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise MessageDecodeError("Message must be a JSON object")

        try:
            gaze = _object(data, "gazeVector")
            flat = _object(data, "faceTransform").get("flat")
            if not isinstance(flat, list) or len(flat) != FACE_TRANSFORM_LENGTH:
                raise MessageDecodeError(
                    f"'faceTransform.flat' must hold {FACE_TRANSFORM_LENGTH} numbers"
                )

            eyes_open = data.get("eyesOpen")
            if not isinstance(eyes_open, bool):
                raise MessageDecodeError("'eyesOpen' must be a boolean")

            screen_position = None
            if data.get("screenPosition") is not None:
                pos = _object(data, "screenPosition")
                screen_position = GazePoint(
                    _number(pos.get("x"), "screenPosition.x"),
                    _number(pos.get("y"), "screenPosition.y"),
                )

            phone_screen_size = None
            if data.get("phoneScreenSize") is not None:
                size = _object(data, "phoneScreenSize")
                phone_screen_size = Size(
                    _number(size.get("width"), "phoneScreenSize.width"),
                    _number(size.get("height"), "phoneScreenSize.height"),
                )
                if phone_screen_size.width <= 0 or phone_screen_size.height <= 0:
                    raise MessageDecodeError("'phoneScreenSize' must be positive")

            return cls(
                timestamp=_number(data.get("timestamp"), "timestamp"),
                gaze_vector=(
                    _number(gaze.get("x"), "gazeVector.x"),
                    _number(gaze.get("y"), "gazeVector.y"),
                    _number(gaze.get("z"), "gazeVector.z"),
                ),
                face_transform=tuple(
                    _number(v, f"faceTransform.flat[{i}]") for i, v in enumerate(flat)
                ),
                eye_blink_left=_number(data.get("eyeBlinkLeft"), "eyeBlinkLeft"),
                eye_blink_right=_number(data.get("eyeBlinkRight"), "eyeBlinkRight"),
                eyes_open=eyes_open,
                screen_position=screen_position,
                phone_screen_size=phone_screen_size,
            )
        except MessageDecodeError:
            raise
        except (TypeError, ValueError) as e:
            raise MessageDecodeError(str(e)) from e


def encode_line(message: GazeMessage) -> bytes:
    """Serialize a message to one compact JSON line."""
    text = json.dumps(message.to_dict(), separators=(",", ":"), allow_nan=False)
    return (text + "\n").encode("utf-8")


def decode_line(line: Union[bytes, str]) -> GazeMessage:
    """
    Parse one line (without or with its terminator).

    Raises:
        MessageDecodeError: If the line is not a valid message
    """
    try:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        data = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageDecodeError(f"Invalid JSON: {e}") from e

    return GazeMessage.from_dict(data)


class LineFramer:
    """
    Split a byte stream into newline-terminated lines.

    An incomplete trailing fragment is kept for the next chunk. A line that
    grows beyond ``max_line_bytes`` is dropped up to its terminator.
    """

    def __init__(self, max_line_bytes: int = 65536):
        self._max_line_bytes = max_line_bytes
        self._buffer = bytearray()
        self._discarding = False
        self.dropped_lines = 0

    def feed(self, chunk: bytes) -> List[bytes]:
        """
        Add received bytes.

        Returns:
            Complete, non-empty lines without terminators
        """
        lines: List[bytes] = []
        self._buffer.extend(chunk)

        while True:
            index = self._buffer.find(b"\n")
            if index < 0:
                break

            line = bytes(self._buffer[:index]).rstrip(b"\r")
            del self._buffer[: index + 1]

            if self._discarding:
                self._discarding = False
                continue
            if len(line) > self._max_line_bytes:
                logger.warning(f"Dropping oversized line ({len(line)} bytes)")
                self.dropped_lines += 1
                continue
            if line.strip():
                lines.append(line)

        if len(self._buffer) > self._max_line_bytes:
            logger.warning(f"Dropping oversized line (> {self._max_line_bytes} bytes)")
            self._buffer.clear()
            self._discarding = True
            self.dropped_lines += 1

        return lines

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def reset(self):
        self._buffer.clear()
        self._discarding = False
