"""
Tests for the receiver pipeline.
"""

import pytest

from gazelink.core.events import ConnectionEvent, ConnectionEventKind, DwellEventKind
from gazelink.core.receiver import ReceiverSession
from gazelink.core.regions import Region, RegionRegistry
from gazelink.net.protocol import GazeMessage, LineFramer, decode_line, encode_line
from gazelink.os_control.screen_mapper import DisplayRect
from gazelink.storage.schema import CalibrationModel
from gazelink.vision.geometry import GazePoint, Size

DISPLAY = DisplayRect(0, 0, 1920, 1080)
PHONE = Size(1311.0, 603.0)


class FakeCursor:
    def __init__(self):
        self.moves = []
        self.clicks = 0
        self.resets = 0

    def move_to(self, point):
        self.moves.append(point)
        return True

    def click(self):
        self.clicks += 1
        return True

    def reset(self):
        self.resets += 1


def message(position=GazePoint(0.0, 0.0), eyes_open=True, gaze=(0.0, 0.0, 1.0), size=PHONE):
    return GazeMessage(
        timestamp=0.0,
        gaze_vector=gaze,
        face_transform=tuple([0.0] * 16),
        eye_blink_left=0.0 if eyes_open else 0.9,
        eye_blink_right=0.0 if eyes_open else 0.9,
        eyes_open=eyes_open,
        screen_position=position if eyes_open else None,
        phone_screen_size=size if eyes_open and position is not None else None,
    )


@pytest.fixture
def cursor():
    return FakeCursor()


@pytest.fixture
def dwell_events():
    return []


@pytest.fixture
def registry():
    # Whole display is one region, with a button over the center
    return RegionRegistry([
        Region("background", 0, 0, 1920, 1080, selectable=False, children=[
            Region("center", 860, 440, 200, 200),
        ]),
    ])


@pytest.fixture
def session(config, registry, cursor, dwell_events, clock):
    return ReceiverSession(
        config, DISPLAY, registry.hit_test, cursor=cursor, on_dwell_event=dwell_events.append, clock=clock
    )


class TestReceiverSession:
    """Tests for ReceiverSession."""

    def test_worked_example(self, session, cursor):
        """Calibrated (115, -50.5) from a 1311x603 sender."""
        point = session.handle_message(message(GazePoint(115.0, -50.5)))

        assert point.x == pytest.approx(770.5 / 1311 * 1920)
        assert point.y == pytest.approx(352 / 603 * 1080)
        assert cursor.moves == [point]
        assert session.last_point == point

    def test_center_starts_dwell(self, session, dwell_events):
        session.handle_message(message())

        assert dwell_events[0].kind == DwellEventKind.STARTED
        assert dwell_events[0].region_id == "center"

    def test_dwell_completes_on_ticks(self, session, dwell_events, clock):
        session.handle_message(message())
        for _ in range(40):
            clock.advance(0.05)
            session.tick()

        assert DwellEventKind.COMPLETED in [e.kind for e in dwell_events]

    def test_click_on_select(self, config, registry, cursor, clock):
        config.dwell.click_on_select = True
        session = ReceiverSession(config, DISPLAY, registry.hit_test, cursor=cursor, clock=clock)

        session.handle_message(message())
        clock.advance(2.0)
        session.tick()

        assert cursor.clicks == 1

    def test_no_click_by_default(self, session, cursor, clock):
        session.handle_message(message())
        clock.advance(2.0)
        session.tick()

        assert cursor.clicks == 0

    def test_closed_eyes_reset_dwell_and_cursor(self, session, cursor, dwell_events):
        session.handle_message(message())

        assert session.handle_message(message(eyes_open=False)) is None

        assert dwell_events[-1].kind == DwellEventKind.CANCELLED
        assert cursor.resets == 1
        assert len(cursor.moves) == 1

    def test_legacy_gaze_vector_mapping(self, session):
        point = session.handle_message(message(position=None, gaze=(-1.0, 1.0, 0.0)))

        assert point == GazePoint(0.0, 0.0)

    def test_disconnect_resets(self, session, cursor, dwell_events):
        session.handle_message(message())

        session.handle_connection_event(ConnectionEvent(ConnectionEventKind.DISCONNECTED, "peer"))

        assert dwell_events[-1].kind == DwellEventKind.CANCELLED
        assert cursor.resets == 1
        assert session.last_point is None

        # Smoothing restarted: a new point is not blended with the old one
        point = session.handle_message(message(GazePoint(PHONE.width / 2, 0.0)))
        assert point.x == pytest.approx(1920.0)

    def test_error_resets(self, session, cursor):
        session.handle_message(message())

        session.handle_connection_event(
            ConnectionEvent(ConnectionEventKind.ERROR, "peer", RuntimeError("boom"))
        )

        assert cursor.resets == 1

    def test_connect_does_not_reset(self, session, cursor):
        session.handle_connection_event(ConnectionEvent(ConnectionEventKind.CONNECTED, "peer"))

        assert cursor.resets == 0

    def test_without_cursor(self, config, registry):
        session = ReceiverSession(config, DISPLAY, registry.hit_test)

        assert session.handle_message(message()) == GazePoint(960.0, 540.0)
        assert session.messages_handled == 1


class TestEndToEnd:
    """Raw sender point through calibration and the wire to the receiver pointer."""

    def test_calibrated_point_over_the_wire(self, session, cursor):
        model = CalibrationModel(scale_x=1.1, scale_y=0.95, offset_x=5.0, offset_y=-3.0, fitted=True)

        calibrated = model.apply(GazePoint(100.0, -50.0))
        assert calibrated.x == pytest.approx(115.0)
        assert calibrated.y == pytest.approx(-50.5)

        framer = LineFramer()
        line = encode_line(message(calibrated))
        lines = framer.feed(line[:20]) + framer.feed(line[20:])
        assert len(lines) == 1

        point = session.handle_message(decode_line(lines[0]))

        assert point.x == pytest.approx(770.5 / 1311 * 1920)
        assert point.y == pytest.approx(352 / 603 * 1080)
        assert cursor.moves == [point]
