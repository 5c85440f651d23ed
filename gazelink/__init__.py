"""
GazeLink - Gaze-driven remote cursor.

Estimates where the user looks on a handheld device's screen from
face-tracking samples, streams the estimate over the local network and
drives dwell-based selection on a second machine.

Privacy:
- Only numeric calibration parameters are stored
- No camera frames leave the sensor device
- No default telemetry

Architecture:
- Sender: geometry estimator, smoother, calibration, stream client
- Receiver: stream server, screen mapping, dwell detector, pointer control
- Caller-owned session objects wire each side together
"""

__version__ = "0.1.0"
__license__ = "MIT"
