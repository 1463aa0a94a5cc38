"""
Station lifecycle notifications.

Events are produced on the broadcast loop thread and on the directory
monitor's timer thread, but the observer sees them one at a time, in post
order, on a single dispatcher thread. The observer is held weakly: registering
it does not keep it alive, and events for a dead observer are dropped.
"""

import enum
import logging
import os
import queue
import threading
import time
import weakref
from dataclasses import dataclass, field
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    TRACK_STARTED = "track_started"
    TRACK_FINISHED = "track_finished"
    ERROR = "error"
    BROADCAST_STOPPED = "broadcast_stopped"


@dataclass(frozen=True)
class StationEvent:
    """
    Immutable lifecycle event.

    Carries plain values only, never live objects, so it can cross threads.
    """
    kind: EventKind
    track: Optional[str] = None  # file name, e.g. "a.mp3"
    path: Optional[str] = None
    message: Optional[str] = None
    error_type: Optional[str] = None  # exception class name for ERROR events
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def track_started(cls, path: str) -> "StationEvent":
        return cls(EventKind.TRACK_STARTED, track=os.path.basename(path), path=path)

    @classmethod
    def track_finished(cls, path: str) -> "StationEvent":
        return cls(EventKind.TRACK_FINISHED, track=os.path.basename(path), path=path)

    @classmethod
    def error(cls, error: BaseException, path: Optional[str] = None) -> "StationEvent":
        return cls(
            EventKind.ERROR,
            track=os.path.basename(path) if path else None,
            path=path,
            message=str(error),
            error_type=type(error).__name__,
        )

    @classmethod
    def broadcast_stopped(cls) -> "StationEvent":
        return cls(EventKind.BROADCAST_STOPPED)


class RadioStationObserver(Protocol):
    """
    Receiver of station lifecycle events.

    All methods are called on the notification dispatcher thread, never
    concurrently. Methods an observer does not define are skipped.
    """

    def on_track_started(self, event: StationEvent) -> None:
        ...

    def on_track_finished(self, event: StationEvent) -> None:
        ...

    def on_error(self, event: StationEvent) -> None:
        ...

    def on_broadcast_stopped(self, event: StationEvent) -> None:
        ...


_HANDLER_NAMES = {
    EventKind.TRACK_STARTED: "on_track_started",
    EventKind.TRACK_FINISHED: "on_track_finished",
    EventKind.ERROR: "on_error",
    EventKind.BROADCAST_STOPPED: "on_broadcast_stopped",
}

_CLOSE = object()


class NotificationChannel:
    """Serialises event delivery to one weakly referenced observer."""

    def __init__(self, observer: Optional[RadioStationObserver] = None):
        self._observer_ref: Optional[weakref.ReferenceType] = None
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._closed = False
        self.observer = observer

    @property
    def observer(self) -> Optional[RadioStationObserver]:
        ref = self._observer_ref
        return ref() if ref is not None else None

    @observer.setter
    def observer(self, observer: Optional[RadioStationObserver]) -> None:
        self._observer_ref = weakref.ref(observer) if observer is not None else None

    def post(self, event: StationEvent) -> None:
        """Queue an event for delivery. Never blocks on the observer."""
        with self._lock:
            if self._closed:
                logger.debug(f"[NOTIFY] Channel closed, dropping {event.kind.value}")
                return
            self._ensure_dispatcher()
            self._queue.put(event)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every event posted so far has been delivered.

        Returns:
            True if delivery caught up within ``timeout``
        """
        if threading.current_thread() is self._thread:
            return True
        marker = threading.Event()
        with self._lock:
            if self._closed or self._thread is None:
                return True
            self._queue.put(marker)
        return marker.wait(timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Deliver what is queued, then stop the dispatcher thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
            if thread is not None:
                self._queue.put(_CLOSE)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _ensure_dispatcher(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._dispatch_loop, name="StationNotifications", daemon=True)
        self._thread.start()

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _CLOSE:
                return
            if isinstance(item, threading.Event):
                item.set()
                continue
            self._deliver(item)

    def _deliver(self, event: StationEvent) -> None:
        observer = self.observer
        if observer is None:
            logger.debug(f"[NOTIFY] No observer, dropping {event.kind.value}")
            return
        handler = getattr(observer, _HANDLER_NAMES[event.kind], None)
        if handler is None:
            return
        try:
            handler(event)
        except Exception as e:
            logger.error(f"[NOTIFY] Observer failed handling {event.kind.value}: {e}", exc_info=True)
