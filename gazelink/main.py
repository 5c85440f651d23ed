"""
GazeLink - Gaze-driven remote cursor

Main entry point.

Usage:
    gazelink-receiver [--port 8080] [--regions regions.json]
    gazelink-sender samples.jsonl [--host HOST] [--port 8080]
    python -m gazelink.main {receiver,sender} ...
"""

import argparse
import json
import signal
import sys
from pathlib import Path
from typing import Iterator, List, Optional

from gazelink.core.config import AppConfig, get_default_config
from gazelink.utils.logger import setup_logger, get_logger


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", type=str, default=None, help="override GAZELINK_LOG_LEVEL")
    common.add_argument("--data-dir", type=Path, default=None, help="settings and log directory")

    parser = argparse.ArgumentParser(description="Stream gaze from a sensor device to a remote cursor")
    sub = parser.add_subparsers(dest="command", required=True)

    receiver = sub.add_parser("receiver", parents=[common], help="accept gaze streams and drive the pointer")
    _add_receiver_args(receiver)

    sender = sub.add_parser("sender", parents=[common], help="replay recorded face samples to a receiver")
    _add_sender_args(sender)

    return parser


def _add_receiver_args(parser: argparse.ArgumentParser):
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--no-advertise", action="store_true", help="skip service advertisement")
    parser.add_argument("--regions", type=Path, default=None, help="JSON file of selectable regions")
    parser.add_argument("--dwell-seconds", type=float, default=None)
    parser.add_argument("--click-on-select", action="store_true")
    parser.add_argument("--no-cursor", action="store_true", help="do not move the system pointer")


def _add_sender_args(parser: argparse.ArgumentParser):
    parser.add_argument("samples", type=Path, help="JSON lines file of recorded face samples")
    parser.add_argument("--host", type=str, default=None, help="receiver host (default: discover)")
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--fps", type=float, default=None, help="fixed replay rate (default: recorded timing)")
    parser.add_argument("--loop", action="store_true", help="replay the file until interrupted")
    parser.add_argument("--calibrate", action="store_true", help="run calibration on the replayed samples")
    parser.add_argument("--clear-calibration", action="store_true", help="delete the saved calibration first")


def _configure(args: argparse.Namespace) -> AppConfig:
    config = get_default_config()

    if args.log_level:
        config.log_level = args.log_level
    if args.data_dir is not None:
        config.storage.data_dir = args.data_dir
    if getattr(args, "host", None):
        config.network.host = args.host
    if getattr(args, "port", None):
        config.network.port = args.port
    if getattr(args, "no_advertise", False):
        config.network.advertise = False
    if getattr(args, "regions", None) is not None:
        config.dwell.regions_file = args.regions
    if getattr(args, "dwell_seconds", None) is not None:
        config.dwell.threshold_seconds = args.dwell_seconds
    if getattr(args, "click_on_select", False):
        config.dwell.click_on_select = True

    # Re-check after overrides
    config._validate()

    setup_logger(
        name="gazelink",
        level=config.log_level,
        log_file=config.storage.log_path,
        enable_file_logging=config.storage.enable_file_logging,
    )
    return config


def run_receiver(config: AppConfig, use_cursor: bool = True) -> int:
    """Run the desktop receiver until the Qt event loop exits."""
    from PyQt6.QtCore import QTimer
    from PyQt6.QtGui import QGuiApplication

    from gazelink.core.receiver import ReceiverSession
    from gazelink.core.regions import RegionRegistry
    from gazelink.gui.qt_bridge import ReceiverBridge
    from gazelink.net.errors import TransportError
    from gazelink.net.server import GazeServer
    from gazelink.os_control.cursor_controller import CursorControlError, CursorController
    from gazelink.os_control.screen_mapper import DisplayRect

    logger = get_logger(__name__)

    app = QGuiApplication(sys.argv)
    app.setApplicationName("GazeLink")
    app.setApplicationVersion(config.version)

    geometry = app.primaryScreen().availableGeometry()
    display = DisplayRect(geometry.x(), geometry.y(), geometry.width(), geometry.height())
    logger.info(f"Usable display: {display}")

    regions = RegionRegistry()
    if config.dwell.regions_file is not None:
        try:
            regions = RegionRegistry.from_json(config.dwell.regions_file)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load regions: {e}")
            return 1

    cursor = None
    if use_cursor:
        try:
            cursor = CursorController(display, config.cursor)
        except CursorControlError as e:
            logger.warning(f"Pointer control unavailable: {e}")

    def log_dwell(event):
        logger.info(f"Dwell {event.kind.name.lower()}: {event.region_id!r} ({event.progress:.0%})")

    # Dwell events reach Qt observers through the bridge signal
    session = ReceiverSession(
        config, display, regions.hit_test, cursor=cursor, on_dwell_event=lambda event: bridge.post_dwell_event(event)
    )
    bridge = ReceiverBridge(session, config.dwell.tick_interval_ms)
    bridge.dwell_event.connect(log_dwell)

    server = GazeServer(
        config.network,
        on_message=bridge.post_message,
        on_connection_event=bridge.post_connection_event,
    )
    try:
        server.start()
    except TransportError as e:
        logger.error(str(e))
        return 1

    bridge.start()
    signal.signal(signal.SIGINT, lambda *_: app.quit())

    # Let Python see SIGINT while Qt's loop is running
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(200)

    try:
        exit_code = app.exec()
    finally:
        bridge.stop()
        server.stop()

    logger.info("Receiver exiting")
    return exit_code


def _read_samples(path: Path) -> Iterator[dict]:
    with open(path, "r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                get_logger(__name__).warning(f"{path}:{number}: skipping invalid sample: {e}")


def run_sender(
    config: AppConfig,
    samples_path: Path,
    fps: Optional[float] = None,
    loop: bool = False,
    calibrate: bool = False,
    clear_calibration: bool = False,
    host: Optional[str] = None,
) -> int:
    """Replay recorded face samples through a SenderSession."""
    from gazelink.core.sender import SenderSession
    from gazelink.net.client import GazeClient
    from gazelink.net.errors import TransportError
    from gazelink.storage.calibration_store import CalibrationStore, CalibrationStoreError
    from gazelink.vision.geometry import FaceSample
    from gazelink.utils.timing import ReplayPacer

    logger = get_logger(__name__)

    def log_event(event):
        logger.info(f"{type(event).__name__}: {event}")

    def log_connection(event):
        if event.error is not None:
            logger.error(f"Connection {event.kind.name.lower()}: {event.error}")

    client = GazeClient(config.network, on_connection_event=log_connection)
    try:
        if host:
            client.connect(host, config.network.port)
        else:
            client.connect_discovered()
    except TransportError:
        # Already reported through log_connection
        return 1

    try:
        store: Optional[CalibrationStore] = CalibrationStore(config.storage)
    except CalibrationStoreError as e:
        logger.warning(f"Calibration storage unavailable: {e}")
        store = None

    session = SenderSession(config, client=client, store=store, on_event=log_event)
    if clear_calibration:
        session.clear_calibration()

    pacer = ReplayPacer(fixed_fps=fps)
    calibration_started = False

    try:
        while True:
            for data in _read_samples(samples_path):
                try:
                    sample = FaceSample.from_dict(data)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping invalid sample: {e}")
                    continue

                if calibrate and not calibration_started:
                    session.start_calibration(sample.timestamp)
                    calibration_started = True

                pacer.wait(sample.timestamp)
                session.process_sample(sample)
                if not client.is_connected:
                    logger.error("Receiver connection lost")
                    return 1

            if not loop:
                break
            session.tracking_lost()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        session.abort_calibration()
        client.close()

    logger.info(f"Sender finished ({client.messages_sent} messages, {session.fps:.1f} fps)")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = _build_parser().parse_args(argv)
    config = _configure(args)

    logger = get_logger(__name__)
    logger.info("=" * 60)
    logger.info(f"GazeLink {args.command} starting")
    logger.info(f"Version: {config.version}")
    logger.info("=" * 60)

    if args.command == "receiver":
        return run_receiver(config, use_cursor=not args.no_cursor)

    return run_sender(
        config,
        args.samples,
        fps=args.fps,
        loop=args.loop,
        calibrate=args.calibrate,
        clear_calibration=args.clear_calibration,
        host=args.host,
    )


def receiver_main() -> int:
    return main(["receiver"] + sys.argv[1:])


def sender_main() -> int:
    return main(["sender"] + sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
