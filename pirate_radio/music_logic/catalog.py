"""
Track catalog for Pirate Radio.

Holds the tracks found in the music directory, the playback cursor and the
ordering policy, and keeps itself current by rescanning whenever the
directory changes.

The broadcast loop, the directory monitor and the operator all touch the
catalog from different threads; every read and write goes through one lock.
"""

import enum
import logging
import os
import random
import threading
from pathlib import Path
from typing import Callable, List, Optional, Union

from pirate_radio.errors import (
    DirectoryNotFoundError,
    PermissionDeniedError,
    PirateRadioError,
    UnknownRadioError,
)
from pirate_radio.music_logic.directory_monitor import DirectoryMonitor

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({"mp3", "wav", "flac", "ogg", "m4a", "aac", "wma"})


def is_supported(path: Union[str, Path]) -> bool:
    """Check whether ``path`` has a supported audio extension (case-insensitive)."""
    ext = os.path.splitext(str(path))[1]
    return ext[1:].lower() in SUPPORTED_EXTENSIONS


class PlaybackMode(enum.Enum):
    """Order in which the catalog hands out tracks."""
    SEQUENTIAL = "sequential"
    SHUFFLE = "shuffle"
    REPEAT_ONE = "repeat_one"


class Direction(enum.Enum):
    NEXT = "next"
    PREVIOUS = "previous"


class TrackCatalog:
    """
    Ordered set of playable tracks in a watched directory, plus a cursor.

    The cursor is always a valid index while the catalog is non-empty. An
    empty catalog has no current track; that is a normal state, not an error.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        playback_mode: PlaybackMode = PlaybackMode.SEQUENTIAL,
        on_error: Optional[Callable[[PirateRadioError], None]] = None,
        rng: Optional[random.Random] = None,
        debounce_seconds: float = 0.5,
    ):
        """
        Args:
            directory: Music directory to scan and watch
            playback_mode: Initial ordering policy
            on_error: Receives failures of monitor-triggered rescans
            rng: Random source for shuffle (default: module-level random)
            debounce_seconds: Quiet period before a directory change triggers a rescan
        """
        self._directory = Path(directory)
        self._playback_mode = playback_mode
        self.on_error = on_error
        self._rng = rng or random.Random()
        self._tracks: List[str] = []
        self._cursor = 0
        self._lock = threading.RLock()
        self._monitor = DirectoryMonitor(self._directory, self._on_directory_changed, debounce_seconds)

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def playback_mode(self) -> PlaybackMode:
        with self._lock:
            return self._playback_mode

    @playback_mode.setter
    def playback_mode(self, mode: PlaybackMode) -> None:
        with self._lock:
            self._playback_mode = mode
        logger.info(f"[CATALOG] Playback mode: {mode.value}")

    @property
    def tracks(self) -> List[str]:
        """Snapshot of the track list."""
        with self._lock:
            return list(self._tracks)

    @property
    def cursor(self) -> int:
        with self._lock:
            return self._cursor

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracks)

    def scan(self) -> List[str]:
        """
        Reload the track list from the directory.

        Keeps regular, non-hidden files with a supported extension, sorted by
        path (shuffled instead in SHUFFLE mode), and resets the cursor to 0.
        Finding nothing is not an error.

        Returns:
            The new track list

        Raises:
            DirectoryNotFoundError: If the directory does not exist; the
                previously loaded tracks are kept
            PermissionDeniedError: If the directory cannot be listed
        """
        if not self._directory.is_dir():
            raise DirectoryNotFoundError(str(self._directory))

        try:
            with os.scandir(self._directory) as entries:
                found = sorted(
                    entry.path
                    for entry in entries
                    if not entry.name.startswith(".")
                    and entry.is_file()
                    and is_supported(entry.name)
                )
        except FileNotFoundError:
            raise DirectoryNotFoundError(str(self._directory))
        except PermissionError as e:
            raise PermissionDeniedError(f"cannot read {self._directory}: {e}")
        except OSError as e:
            raise UnknownRadioError(f"error reading {self._directory}: {e}")

        with self._lock:
            if self._playback_mode == PlaybackMode.SHUFFLE:
                self._rng.shuffle(found)
            self._tracks = found
            self._cursor = 0
            logger.info(f"[CATALOG] Scanned {self._directory}: {len(found)} tracks")
            return list(found)

    def current_track(self) -> Optional[str]:
        """Return the track under the cursor, or None if the catalog is empty."""
        with self._lock:
            if 0 <= self._cursor < len(self._tracks):
                return self._tracks[self._cursor]
            return None

    def advance(self, direction: Direction) -> Optional[str]:
        """
        Move the cursor and return the new current track.

        NEXT follows the playback mode: wraps to 0 in SEQUENTIAL, jumps to a
        random index in SHUFFLE (may land on the same track), stays put in
        REPEAT_ONE. PREVIOUS steps back with wraparound in every mode.

        Returns:
            The new current track, or None if the catalog is empty
        """
        with self._lock:
            count = len(self._tracks)
            if count == 0:
                return None

            if direction == Direction.PREVIOUS:
                self._cursor = (self._cursor - 1) % count
            elif self._playback_mode == PlaybackMode.SEQUENTIAL:
                self._cursor = (self._cursor + 1) % count
            elif self._playback_mode == PlaybackMode.SHUFFLE:
                self._cursor = self._rng.randrange(count)
            # REPEAT_ONE: cursor unchanged

            return self._tracks[self._cursor]

    def next_track(self) -> Optional[str]:
        return self.advance(Direction.NEXT)

    def previous_track(self) -> Optional[str]:
        return self.advance(Direction.PREVIOUS)

    def add_track(self, path: Union[str, Path]) -> bool:
        """
        Append a track to the end of the list.

        Returns:
            True if added, False if the extension is not supported
        """
        if not is_supported(path):
            logger.debug(f"[CATALOG] Ignoring unsupported file: {path}")
            return False
        with self._lock:
            self._tracks.append(str(path))
        return True

    def remove_track(self, index: int) -> Optional[str]:
        """
        Remove the track at ``index``, keeping the cursor in range.

        Returns:
            The removed path, or None if ``index`` was out of range
        """
        with self._lock:
            if not 0 <= index < len(self._tracks):
                return None
            removed = self._tracks.pop(index)
            if self._cursor >= len(self._tracks):
                self._cursor = max(0, len(self._tracks) - 1)
            return removed

    @property
    def is_monitoring(self) -> bool:
        return self._monitor.is_running

    def start_monitoring(self) -> None:
        """
        Rescan automatically whenever the directory changes.

        Replaces any monitor already running. Failures, including failure to
        set up the watch, go to ``on_error`` rather than being raised.
        """
        try:
            self._monitor.start()
        except OSError as e:
            logger.error(f"[CATALOG] Cannot watch {self._directory}: {e}")
            self._report(UnknownRadioError(f"cannot watch {self._directory}: {e}"))

    def stop_monitoring(self) -> None:
        """Stop the directory monitor (no-op if it never started)."""
        self._monitor.stop()

    def _on_directory_changed(self) -> None:
        logger.info(f"[CATALOG] Directory changed, rescanning {self._directory}")
        try:
            self.scan()
        except PirateRadioError as e:
            logger.warning(f"[CATALOG] Rescan failed: {e}")
            self._report(e)

    def _report(self, error: PirateRadioError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.error("[CATALOG] Error callback raised", exc_info=True)
