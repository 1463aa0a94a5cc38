"""
Directory change monitor for the music library.

Watches a single directory (non-recursive) with watchdog and calls back once
per burst of changes, after the burst has been quiet for ``debounce_seconds``.
Copying a large file into the library produces many modify events; the
callback still fires once.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

# Open/close-without-write events are ignored: ffmpeg reading a track must not trigger a rescan
WATCHED_EVENT_TYPES = frozenset({
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
})


class DirectoryChangeHandler(FileSystemEventHandler):
    """Debounces watchdog events into a single change callback."""

    def __init__(self, callback: Callable[[], None], debounce_seconds: float = 0.5):
        """
        Args:
            callback: Called on a timer thread once changes settle
            debounce_seconds: Quiet period required after the last event
        """
        super().__init__()
        self.callback = callback
        self.debounce_seconds = debounce_seconds
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._cancelled = False

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in WATCHED_EVENT_TYPES:
            return
        logger.debug(f"[MONITOR] {event.event_type}: {event.src_path}")

        with self._lock:
            if self._cancelled:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self._fire)
            self._timer.name = "DirectoryRescan"
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._timer = None
        self.callback()

    def cancel(self) -> None:
        """Drop any pending callback and ignore further events."""
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class DirectoryMonitor:
    """
    Background watch on one directory.

    start() replaces any watch already running; stop() is always safe.
    """

    def __init__(self, directory: Path, on_change: Callable[[], None], debounce_seconds: float = 0.5):
        self.directory = Path(directory)
        self.on_change = on_change
        self.debounce_seconds = debounce_seconds
        self._observer: Optional[Observer] = None
        self._handler: Optional[DirectoryChangeHandler] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        observer = self._observer
        return observer is not None and observer.is_alive()

    def start(self) -> None:
        """
        Start watching the directory.

        Raises:
            OSError: If the watch cannot be established (e.g. directory missing)
        """
        self.stop()
        if not self.directory.is_dir():
            raise FileNotFoundError(f"not a directory: {self.directory}")

        handler = DirectoryChangeHandler(self.on_change, self.debounce_seconds)
        observer = Observer()
        observer.daemon = True
        observer.schedule(handler, str(self.directory), recursive=False)
        observer.start()

        with self._lock:
            self._observer = observer
            self._handler = handler
        logger.info(f"[MONITOR] Watching {self.directory}")

    def stop(self) -> None:
        """Release the watch and cancel pending callbacks."""
        with self._lock:
            observer, self._observer = self._observer, None
            handler, self._handler = self._handler, None

        if handler is not None:
            handler.cancel()
        if observer is None:
            return

        observer.stop()
        if observer is not threading.current_thread():
            observer.join(timeout=5.0)
        logger.info(f"[MONITOR] Stopped watching {self.directory}")
