"""
Tests for the sender pipeline.
"""

import pytest

from conftest import FakeClient, face_offset_for_point, make_sample
from gazelink.core.events import BlinkDetected, CalibrationFinished, GazeUpdated, TrackingLost
from gazelink.core.sender import SenderSession
from gazelink.storage.calibration_store import CalibrationStore
from gazelink.storage.schema import CalibrationModel
from gazelink.vision.calibrator import CalibrationState

FRAME = 1.0 / 30.0


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def events():
    return []


@pytest.fixture
def store(config):
    return CalibrationStore(config.storage)


@pytest.fixture
def session(config, client, store, events):
    return SenderSession(config, client=client, store=store, on_event=events.append)


class TestSenderSession:
    """Tests for SenderSession."""

    def test_starts_uncalibrated(self, session):
        assert session.calibration_model == CalibrationModel.identity()

    def test_open_eyes_send_screen_position(self, session, client, events):
        message = session.process_sample(make_sample(timestamp=1.0))

        assert client.messages == [message]
        assert message.eyes_open is True
        assert message.screen_position.x == pytest.approx(0.0, abs=1e-9)
        assert message.screen_position.y == pytest.approx(0.0, abs=1e-9)
        assert tuple(message.phone_screen_size) == (393.0, 852.0)
        assert message.gaze_vector == pytest.approx((0.0, 0.0, 1.0))
        assert len(message.face_transform) == 16
        assert message.face_transform[14] == pytest.approx(-0.3)

        assert isinstance(events[-1], GazeUpdated)
        assert events[-1].timestamp == 1.0

    def test_closed_eyes_send_without_position(self, session, client):
        message = session.process_sample(make_sample(blink_left=0.6, blink_right=0.1))

        assert message.eyes_open is False
        assert message.screen_position is None
        assert message.phone_screen_size is None
        assert client.messages == [message]

    def test_closed_eyes_keep_smoothing_window(self, session, config):
        """Blinks pause the window instead of clearing it."""
        fx, fy = face_offset_for_point(config, 100.0, 0.0)
        session.process_sample(make_sample(face_x=fx, face_y=fy))
        session.process_sample(make_sample(blink_left=0.9, blink_right=0.9))

        message = session.process_sample(make_sample())

        assert message.screen_position.x == pytest.approx(50.0)

    def test_miss_is_skipped(self, session, client, events):
        assert session.process_sample(make_sample(face_x=0.5)) is None
        assert client.messages == []
        assert events == []

    def test_calibration_applied(self, config, client, store):
        store.save(CalibrationModel.from_fit(2.0, 1.0, 10.0, -5.0))
        session = SenderSession(config, client=client, store=store)

        fx, fy = face_offset_for_point(config, 20.0, 30.0)
        message = session.process_sample(make_sample(face_x=fx, face_y=fy))

        assert message.screen_position.x == pytest.approx(50.0)
        assert message.screen_position.y == pytest.approx(25.0)

    def test_blink_events(self, session, events):
        session.process_sample(make_sample(timestamp=0.0))
        session.process_sample(make_sample(blink_left=0.9, blink_right=0.9, timestamp=FRAME))
        session.process_sample(make_sample(timestamp=2 * FRAME))

        blinks = [e for e in events if isinstance(e, BlinkDetected)]
        assert [b.is_blinking for b in blinks] == [True, False]

    def test_blink_ends_with_first_gaze_frame(self, session, events):
        session.process_sample(make_sample(timestamp=0.0))
        session.process_sample(make_sample(blink_left=0.9, blink_right=0.9, timestamp=FRAME))
        message = session.process_sample(make_sample(blink_left=0.4, blink_right=0.4, timestamp=2 * FRAME))

        assert message.eyes_open is True
        assert message.screen_position is not None
        assert events[-2] == BlinkDetected(is_blinking=False)
        assert isinstance(events[-1], GazeUpdated)

    def test_tracking_lost_resets_smoothing(self, session, events, config):
        fx, fy = face_offset_for_point(config, 100.0, 0.0)
        session.process_sample(make_sample(face_x=fx, face_y=fy))

        session.tracking_lost(5.0)
        message = session.process_sample(make_sample())

        assert events[-2] == TrackingLost(5.0)
        assert message.screen_position.x == pytest.approx(0.0, abs=1e-9)

    def test_fps(self, session):
        for i in range(3):
            session.process_sample(make_sample(timestamp=i * FRAME))

        assert session.fps == pytest.approx(30.0)


class TestSenderCalibration:
    """Calibration driven through the sender session."""

    def run_calibration(self, session, config, raw_scale=0.5, start=0.0):
        """Look at each target with raw gaze at raw_scale of its position."""
        sequence = session.start_calibration(start)
        t = start
        while not sequence.is_finished:
            target = sequence.get_current_target()
            fx, fy = face_offset_for_point(config, target.screen.x * raw_scale, target.screen.y * raw_scale)
            session.process_sample(make_sample(face_x=fx, face_y=fy, timestamp=t))
            t += FRAME
        return sequence

    def test_success_installs_and_persists(self, session, config, store, events):
        sequence = self.run_calibration(session, config)

        assert sequence.state == CalibrationState.COMPLETED
        model = session.calibration_model
        assert model.fitted is True
        assert model.scale_x == pytest.approx(2.0, rel=1e-6)
        assert model.scale_y == pytest.approx(2.0, rel=1e-6)

        assert store.load() == model

        finished = [e for e in events if isinstance(e, CalibrationFinished)]
        assert len(finished) == 1
        assert finished[0].success is True

    def test_abort_keeps_previous_model(self, session, store, events):
        previous = session.calibration_model
        session.start_calibration(0.0)
        session.process_sample(make_sample(timestamp=2.5))

        session.abort_calibration()

        assert session.calibration_model == previous
        assert store.exists() is False
        finished = [e for e in events if isinstance(e, CalibrationFinished)]
        assert finished[-1].success is False

    def test_restart_aborts_running_calibration(self, session, events):
        first = session.start_calibration(0.0)
        second = session.start_calibration(1.0)

        assert first.state == CalibrationState.ABORTED
        assert second.state == CalibrationState.SETTLING

    def test_clear_calibration(self, session, config, store):
        self.run_calibration(session, config)

        session.clear_calibration()

        assert session.calibration_model == CalibrationModel.identity()
        assert store.exists() is False
