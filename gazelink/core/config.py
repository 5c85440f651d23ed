"""
Configuration management for GazeLink.

All sender and receiver configuration with sensible defaults.
Uses dataclasses for type safety and validation.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import os
from pathlib import Path


@dataclass
class ScreenGeometryConfig:
    """Scene constants for the sender device's screen."""

    # Physical display size in meters (portrait orientation: width < height)
    physical_width_m: float = 0.0718
    physical_height_m: float = 0.157

    # Display size in points
    width_pt: float = 393.0
    height_pt: float = 852.0

    # Distance of each eye's look-at target along its view ray (meters)
    look_at_distance_m: float = 2.0

    # Per-device empirical vertical offset (points). 0 disables it.
    height_compensation_pt: float = 0.0

    @property
    def size_pt(self) -> Tuple[float, float]:
        return (self.width_pt, self.height_pt)


@dataclass
class SmoothingConfig:
    """Temporal smoothing of the raw gaze estimate."""

    # Sliding window length (frames)
    window_size: int = 15

    # Blink weight at or above which an eye counts as closed
    blink_threshold: float = 0.5

    # Optional stages, all off by default. Thresholds are fractions of screen width.
    enable_outlier_rejection: bool = False
    outlier_threshold: float = 0.3
    outlier_patience: int = 3  # consecutive rejections before the jump is taken as real

    enable_exponential: bool = False
    exponential_alpha: float = 0.7  # alpha * previous + (1 - alpha) * new

    enable_velocity_limit: bool = False
    max_velocity: float = 2.0  # screen widths per second

    enable_dead_zone: bool = False
    dead_zone: float = 0.05


@dataclass
class CalibrationConfig:
    """Calibration capture procedure configuration."""

    # Inset of the outer targets from each edge (fraction of the dimension)
    margin_fraction: float = 0.1

    # Delay between showing a target and collecting samples (seconds)
    settle_seconds: float = 2.0

    # Sensor frame rate and collection window; samples_per_point derives from both
    sensor_fps: float = 30.0
    collection_seconds: float = 2.0

    # A target that has not filled up after this long is closed with what it has
    target_timeout_seconds: float = 6.0

    # Trim this proportion from each end when averaging a target's samples
    outlier_trim_percent: float = 0.0

    @property
    def samples_per_point(self) -> int:
        return max(1, int(round(self.sensor_fps * self.collection_seconds)))


@dataclass
class NetworkConfig:
    """Transport configuration shared by sender and receiver."""

    host: str = "0.0.0.0"
    port: int = 8080

    # Local-network service discovery
    service_type: str = "_eyetracking._tcp.local."
    service_name: str = "EyeTrackingServer"
    advertise: bool = True

    connect_timeout_s: float = 5.0
    write_timeout_s: float = 0.1
    read_timeout_s: float = 30.0
    discovery_timeout_s: float = 5.0

    # Receive buffer guard: a line longer than this is discarded
    max_line_bytes: int = 65536
    recv_chunk_bytes: int = 65536


@dataclass
class MapperConfig:
    """Receiver-side coordinate mapping."""

    # alpha * previous + (1 - alpha) * new; 0.0 disables smoothing
    smoothing_factor: float = 0.7


@dataclass
class CursorConfig:
    """System pointer actuation."""

    min_update_interval: float = 0.033  # ~30 Hz
    min_move_distance: float = 1.0  # points, per axis


@dataclass
class DwellConfig:
    """Dwell selection configuration."""

    threshold_seconds: float = 1.5
    tick_interval_ms: int = 50  # ~20 Hz

    # Click the system pointer when a dwell completes
    click_on_select: bool = False

    # JSON file describing selectable regions (optional)
    regions_file: Optional[Path] = None


@dataclass
class StorageConfig:
    """Data storage configuration."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".gazelink")

    # Key-value store file and the record key of the calibration model
    store_filename: str = "settings.json"
    calibration_key: str = "EyeTrackingCalibrationData"

    log_filename: str = "gazelink.log"
    enable_file_logging: bool = False

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)

    @property
    def store_path(self) -> Path:
        """Get full path to the key-value store file."""
        return self.data_dir / self.store_filename

    @property
    def log_path(self) -> Path:
        """Get full path to log file."""
        return self.data_dir / self.log_filename


@dataclass
class AppConfig:
    """Main application configuration."""

    screen: ScreenGeometryConfig = field(default_factory=ScreenGeometryConfig)
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    mapper: MapperConfig = field(default_factory=MapperConfig)
    cursor: CursorConfig = field(default_factory=CursorConfig)
    dwell: DwellConfig = field(default_factory=DwellConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    version: str = "0.1.0"

    log_level: str = field(
        default_factory=lambda: os.getenv("GAZELINK_LOG_LEVEL", "WARNING")
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """Validate configuration parameters."""
        if self.screen.physical_width_m <= 0 or self.screen.physical_height_m <= 0:
            raise ValueError("physical screen size must be positive")

        if self.screen.width_pt <= 0 or self.screen.height_pt <= 0:
            raise ValueError("screen size in points must be positive")

        if self.smoothing.window_size < 1:
            raise ValueError("window_size must be at least 1")

        if self.smoothing.outlier_patience < 1:
            raise ValueError("outlier_patience must be at least 1")

        if not 0.0 <= self.smoothing.exponential_alpha < 1.0:
            raise ValueError("exponential_alpha must be in [0.0, 1.0)")

        if not 0.0 <= self.mapper.smoothing_factor < 1.0:
            raise ValueError("smoothing_factor must be in [0.0, 1.0)")

        if not 0.0 <= self.calibration.margin_fraction < 0.5:
            raise ValueError("margin_fraction must be in [0.0, 0.5)")

        if not 0.0 <= self.calibration.outlier_trim_percent < 0.5:
            raise ValueError("outlier_trim_percent must be in [0.0, 0.5)")

        if not 0 < self.network.port < 65536:
            raise ValueError("port must be between 1 and 65535")

        if min(
            self.network.write_timeout_s,
            self.network.connect_timeout_s,
            self.network.read_timeout_s,
        ) <= 0:
            raise ValueError("network timeouts must be positive")

        if self.cursor.min_update_interval < 0:
            raise ValueError("min_update_interval must be non-negative")


def get_default_config() -> AppConfig:
    """
    Get default application configuration.

    Returns:
        AppConfig instance with default values
    """
    return AppConfig()
