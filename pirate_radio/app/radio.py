"""
Main entry point for Pirate Radio.

Loads configuration, builds the RadioStation, and runs it until interrupted.
While running, single-letter commands on stdin control playback:

    n  next track
    p  previous track
    s  toggle shuffle
    q  stop and quit
"""

import argparse
import logging
import logging.handlers
import os
import signal
import sys
import time
from typing import List, Optional

from pirate_radio import __version__
from pirate_radio.app.config import RadioConfig
from pirate_radio.app.radio_station import RadioStation
from pirate_radio.errors import InitFailedError, PirateRadioError
from pirate_radio.outputs.fm_transmitter import FMTransmitter
from pirate_radio.state.notifications import StationEvent

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5


class ConsoleObserver:
    """Logs station events for the operator."""

    def on_track_started(self, event: StationEvent) -> None:
        logger.info(f"[ON AIR] ♪ {event.track}")

    def on_track_finished(self, event: StationEvent) -> None:
        logger.info(f"[ON AIR] Finished: {event.track}")

    def on_error(self, event: StationEvent) -> None:
        where = f" ({event.track})" if event.track else ""
        logger.error(f"[ON AIR] {event.error_type}{where}: {event.message}")

    def on_broadcast_stopped(self, event: StationEvent) -> None:
        logger.info("[ON AIR] Off air")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pirate-radio",
        description="Broadcast a directory of music over FM from a Raspberry Pi.",
    )
    parser.add_argument("directory", nargs="?", help="Music directory (default: PIRATE_RADIO_MUSIC_DIR)")
    parser.add_argument("-d", "--dir", dest="dir_option", metavar="DIRECTORY", help="Music directory")
    parser.add_argument("-f", "--frequency", type=float, help="Broadcast frequency in MHz (87.5-108.0)")
    parser.add_argument("-s", "--shuffle", action="store_true", default=None, help="Shuffle playback order")
    parser.add_argument("--drain", type=float, metavar="SECONDS", help="Drain period after each track")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Logging level",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_overrides(config: RadioConfig, options: argparse.Namespace) -> RadioConfig:
    """Apply command line flags on top of the loaded configuration."""
    directory = options.dir_option or options.directory
    if directory:
        config.music_dir = directory
    if options.frequency is not None:
        config.frequency = options.frequency
    if options.shuffle:
        config.shuffle = True
    if options.drain is not None:
        config.drain_seconds = options.drain
    if options.log_level:
        config.log_level = options.log_level
    config.validate()
    return config


def setup_logging(config: RadioConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
    if config.log_file:
        # Rotate at 10MB, keeping 5 backups (radio.log.1 ... radio.log.5)
        handler = logging.handlers.RotatingFileHandler(
            config.log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logging.getLogger().addHandler(handler)


def handle_command(station: RadioStation, line: str) -> bool:
    """
    Execute one operator command.

    Returns:
        False if the command asks to quit, True otherwise
    """
    command = line.strip().lower()
    if command == "n":
        station.next_track()
    elif command == "p":
        station.previous_track()
    elif command == "s":
        mode = station.toggle_shuffle()
        logger.info(f"[RADIO] Playback mode: {mode.value}")
    elif command == "q":
        return False
    elif command:
        logger.info("[RADIO] Commands: n=next, p=previous, s=shuffle, q=quit")
    return True


def run_command_loop(station: RadioStation) -> None:
    """Read commands from stdin until quit, EOF, or the broadcast ends."""
    for line in sys.stdin:
        if not handle_command(station, line):
            break
        if not station.is_broadcasting:
            break


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for Pirate Radio.

    Returns:
        Process exit code
    """
    options = build_parser().parse_args(args)

    try:
        config = apply_overrides(RadioConfig.load_config(), options)
    except ValueError as e:
        print(f"pirate-radio: {e}", file=sys.stderr)
        return 2

    setup_logging(config)

    if not os.path.isdir(config.music_dir):
        logger.error(f"[RADIO] Music directory not found: {config.music_dir}")
        return 1

    try:
        FMTransmitter(config.transmitter_path)
    except InitFailedError as e:
        logger.error(f"[RADIO] Cannot broadcast: {e}")
        return 1

    if hasattr(os, "geteuid") and os.geteuid() != 0:
        logger.warning("[RADIO] Not running as root; fm_transmitter needs root for GPIO/DMA access")

    logger.info("=" * 70)
    logger.info("Pirate Radio - Starting Broadcast")
    logger.info(f"  Frequency: {config.frequency:.1f} MHz")
    logger.info(f"  Music:     {os.path.abspath(config.music_dir)}")
    logger.info(f"  Mode:      {'shuffle' if config.shuffle else 'sequential'}")
    logger.info("=" * 70)

    observer = ConsoleObserver()
    station = RadioStation.from_config(config, observer=observer)

    shutdown_initiated = False

    def signal_handler(sig, frame):
        nonlocal shutdown_initiated
        if shutdown_initiated:
            logger.debug("[RADIO] Shutdown already in progress, ignoring duplicate signal")
            return
        shutdown_initiated = True
        logger.info(f"[RADIO] Received {signal.Signals(sig).name} - stopping broadcast")
        try:
            station.close()
        except Exception as e:
            logger.error(f"[RADIO] Error during shutdown: {e}", exc_info=True)
        finally:
            sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        station.start()
    except PirateRadioError as e:
        logger.error(f"[RADIO] Cannot start broadcast: {e}")
        station.close()
        return 1

    try:
        if sys.stdin.isatty():
            logger.info("[RADIO] On air. Commands: n=next, p=previous, s=shuffle, q=quit")
            run_command_loop(station)
        else:
            logger.info("[RADIO] On air. Press Ctrl+C to stop.")
            while station.is_broadcasting and not shutdown_initiated:
                time.sleep(0.1)
    finally:
        if not shutdown_initiated:
            station.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
