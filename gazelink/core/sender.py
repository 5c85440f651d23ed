"""
Sender session: sensor frames in, gaze messages out.

Owns the estimator, smoother, calibration model and optional calibration
run for one tracked face, and pushes each result to the transport.
Processing is synchronous on the caller's thread, one frame at a time.
"""

from typing import Callable, Optional

from gazelink.core.config import AppConfig
from gazelink.core.events import (
    BlinkDetected,
    CalibrationFinished,
    GazeUpdated,
    TrackingLost,
    ignore,
)
from gazelink.net.protocol import GazeMessage
from gazelink.storage.calibration_store import CalibrationStore, CalibrationStoreError
from gazelink.storage.schema import CalibrationModel
from gazelink.vision.calibrator import CalibrationSequence
from gazelink.vision.eye_state import BlinkDetector, eyes_open
from gazelink.vision.geometry import FaceSample, GazeEstimator, Size, gaze_vector_from_look_at
from gazelink.vision.smoothing import GazeSmoother
from gazelink.utils.logger import get_logger, ThrottledLogger
from gazelink.utils.timing import SampleRateMeter

logger = get_logger(__name__)
_gap_logger = ThrottledLogger(logger)


class SenderSession:
    """
    Per-frame gaze pipeline on the sensor device.

    Flow:
        FaceSample -> GazeEstimator -> GazeSmoother -> CalibrationModel.apply
        -> GazeMessage -> client.send

    Frames with closed eyes are still sent, flagged and without a screen
    position. Frames where the gaze misses the screen are skipped.
    """

    def __init__(
        self,
        config: AppConfig,
        client: Optional[object] = None,
        store: Optional[CalibrationStore] = None,
        on_event: Callable[[object], None] = ignore,
    ):
        """
        Initialize sender session.

        Args:
            config: Application configuration
            client: Transport with ``send(GazeMessage) -> bool`` (optional)
            store: Calibration persistence (optional)
            on_event: Listener for GazeUpdated, BlinkDetected, TrackingLost
                and CalibrationFinished events
        """
        self._config = config
        self._client = client
        self._store = store
        self._on_event = on_event

        self._screen_size = Size(config.screen.width_pt, config.screen.height_pt)
        self._estimator = GazeEstimator(config.screen)
        self._smoother = GazeSmoother(config.smoothing, self._screen_size.width)
        self._blinks = BlinkDetector(reopen_threshold=config.smoothing.blink_threshold)
        self._fps = SampleRateMeter()

        self._model = store.load_or_identity() if store is not None else CalibrationModel.identity()
        self._calibration: Optional[CalibrationSequence] = None

        logger.info(f"SenderSession initialized (calibrated={self._model.fitted})")

    def process_sample(self, sample: FaceSample) -> Optional[GazeMessage]:
        """
        Process one sensor frame.

        Returns:
            The message that was sent, or None when the frame was skipped
        """
        self._fps.tick(sample.timestamp)

        blink = self._blinks.update(sample.blink_left, sample.blink_right)
        if blink is not None:
            self._on_event(BlinkDetected(is_blinking=blink))

        calibration = self._active_calibration()
        if calibration is not None:
            calibration.tick(sample.timestamp)

        gaze_vector = tuple(float(v) for v in gaze_vector_from_look_at(sample.look_at_point))

        if not eyes_open(sample.blink_left, sample.blink_right, self._config.smoothing.blink_threshold):
            _gap_logger.debug("Eyes closed, sending gaze without screen position")
            message = self._build_message(sample, gaze_vector, eyes_are_open=False)
            self._send(message)
            return message

        raw = self._estimator.estimate(sample)
        if raw is None:
            _gap_logger.debug("No gaze estimate for frame at %.3f", sample.timestamp)
            return None

        calibration = self._active_calibration()
        if calibration is not None:
            calibration.add_sample(raw, sample.timestamp)

        smoothed = self._smoother.smooth(raw, sample.timestamp)
        calibrated = self._model.apply(smoothed)

        message = self._build_message(sample, gaze_vector, eyes_are_open=True, position=calibrated)
        self._send(message)
        self._on_event(GazeUpdated(point=calibrated, raw=raw, timestamp=sample.timestamp))
        return message

    def tracking_lost(self, timestamp: Optional[float] = None):
        """The face anchor disappeared: drop all temporal state."""
        self._smoother.reset()
        self._estimator.reset()
        self._blinks.reset()
        self._fps.reset()
        logger.info("Tracking lost")
        self._on_event(TrackingLost(timestamp))

    def start_calibration(self, now: float) -> CalibrationSequence:
        """
        Begin a calibration run, replacing any unfinished one.

        Args:
            now: Current time on the sample clock
        """
        if self._calibration is not None and not self._calibration.is_finished:
            self._calibration.abort()

        self._calibration = CalibrationSequence(
            self._config.calibration, self._screen_size, on_finished=self._on_calibration_finished
        )
        self._calibration.start(now)
        return self._calibration

    def abort_calibration(self):
        """Cancel the running calibration. The installed model is kept."""
        if self._calibration is not None:
            self._calibration.abort()

    def clear_calibration(self):
        """Install the identity model and delete the saved one."""
        self._model = CalibrationModel.identity()
        if self._store is not None:
            try:
                self._store.delete()
            except CalibrationStoreError as e:
                logger.error(f"Failed to clear saved calibration: {e}")
        logger.info("Calibration cleared")

    def _on_calibration_finished(self, result: CalibrationFinished):
        if result.success and result.model is not None:
            if self._store is not None:
                try:
                    self._store.save(result.model)
                except CalibrationStoreError as e:
                    logger.error(f"Calibration not persisted: {e}")

            # Replace the whole model; frames never see a partial update
            self._model = result.model
            self._smoother.reset()
            logger.info("Calibration installed")
        else:
            logger.warning(f"Calibration did not complete: {result.reason}")

        self._on_event(result)

    def _active_calibration(self) -> Optional[CalibrationSequence]:
        if self._calibration is None or self._calibration.is_finished:
            return None
        return self._calibration

    def _build_message(self, sample, gaze_vector, eyes_are_open, position=None) -> GazeMessage:
        return GazeMessage(
            timestamp=sample.timestamp,
            gaze_vector=gaze_vector,
            face_transform=tuple(sample.face_transform_flat),
            eye_blink_left=float(sample.blink_left),
            eye_blink_right=float(sample.blink_right),
            eyes_open=eyes_are_open,
            screen_position=position,
            phone_screen_size=self._screen_size if position is not None else None,
        )

    def _send(self, message: GazeMessage):
        if self._client is not None:
            self._client.send(message)

    def update_screen_pose(self, pose):
        """Forward a new virtual screen plane pose to the estimator."""
        self._estimator.update_screen_pose(pose)

    @property
    def calibration_model(self) -> CalibrationModel:
        return self._model

    @property
    def calibration(self) -> Optional[CalibrationSequence]:
        return self._calibration

    @property
    def fps(self) -> float:
        """Processed frames per second, measured on sample timestamps."""
        return self._fps.fps

    @property
    def screen_size(self) -> Size:
        return self._screen_size
