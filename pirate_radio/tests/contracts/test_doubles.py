"""
Test doubles (fakes, stubs, recorders) for Pirate Radio contract tests.

These stand in for the ffmpeg / fm_transmitter stages and for the station
observer so engine behaviour can be tested without spawning real processes.
"""

import os
import threading
import time
from typing import Callable, Dict, List, Optional

from pirate_radio.errors import ConversionFailedError, TransmissionFailedError
from pirate_radio.outputs.fm_transmitter import TransmitterConfig
from pirate_radio.state.notifications import EventKind, StationEvent


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingObserver:
    """Observer that records every event and the thread it arrived on."""

    def __init__(self):
        self.events: List[StationEvent] = []
        self.threads: List[str] = []
        self._cond = threading.Condition()

    def _record(self, event: StationEvent) -> None:
        with self._cond:
            self.events.append(event)
            self.threads.append(threading.current_thread().name)
            self._cond.notify_all()

    on_track_started = _record
    on_track_finished = _record
    on_error = _record
    on_broadcast_stopped = _record

    def summary(self) -> List[tuple]:
        """(kind, track) pairs, e.g. ("track_started", "a.mp3")."""
        with self._cond:
            return [(e.kind.value, e.track) for e in self.events]

    def of_kind(self, kind: EventKind) -> List[StationEvent]:
        with self._cond:
            return [e for e in self.events if e.kind == kind]

    def wait_for_count(self, count: int, timeout: float = 5.0) -> bool:
        """Block until at least ``count`` events have arrived."""
        with self._cond:
            return self._cond.wait_for(lambda: len(self.events) >= count, timeout)

    def wait_for(self, kind: EventKind, track: Optional[str] = None, timeout: float = 5.0) -> bool:
        """Block until an event of ``kind`` (for ``track``, if given) has arrived."""
        def seen() -> bool:
            return any(e.kind == kind and (track is None or e.track == track) for e in self.events)

        with self._cond:
            return self._cond.wait_for(seen, timeout)


class FakePipeline:
    """
    Stand-in for TrackPipeline.

    Outcomes:
        "ok"      - plays briefly and returns True
        "block"   - plays until cancel() and returns False
        "fail"    - raises ConversionFailedError
        "tx_fail" - raises TransmissionFailedError
        "oserror" - raises OSError
    """

    def __init__(self, outcome: str = "ok", play_seconds: float = 0.02):
        self.outcome = outcome
        self.play_seconds = play_seconds
        self.track_path: Optional[str] = None
        self.config: Optional[TransmitterConfig] = None
        self.running = threading.Event()
        self._cancel = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, track_path: str, config: TransmitterConfig) -> bool:
        self.track_path = track_path
        self.config = config
        self.running.set()
        try:
            if self.outcome == "fail":
                raise ConversionFailedError(track_path, returncode=1)
            if self.outcome == "tx_fail":
                raise TransmissionFailedError("mailbox open failed")
            if self.outcome == "oserror":
                raise OSError("pipe creation failed")
            if self.outcome == "block":
                self._cancel.wait(10.0)
                return False
            return not self._cancel.wait(self.play_seconds)
        finally:
            self.running.clear()

    def cancel(self) -> None:
        self._cancel.set()


class FakePipelineFactory:
    """Creates FakePipelines whose outcome is chosen per track file name."""

    def __init__(self, outcomes: Optional[Dict[str, str]] = None, default: str = "ok"):
        self.outcomes = outcomes or {}
        self.default = default
        self.created: List[FakePipeline] = []
        self._lock = threading.Lock()

    def __call__(self) -> "_DeferredPipeline":
        pipeline = _DeferredPipeline(self)
        with self._lock:
            self.created.append(pipeline)
        return pipeline

    def outcome_for(self, track_path: str) -> str:
        return self.outcomes.get(os.path.basename(track_path), self.default)

    def played(self) -> List[str]:
        """File names handed to run(), in order."""
        with self._lock:
            return [os.path.basename(p.track_path) for p in self.created if p.track_path]

    def current(self) -> Optional[FakePipeline]:
        with self._lock:
            return self.created[-1] if self.created else None


class _DeferredPipeline(FakePipeline):
    """FakePipeline that picks its outcome when run() learns the track."""

    def __init__(self, factory: FakePipelineFactory):
        super().__init__()
        self._factory = factory

    def run(self, track_path: str, config: TransmitterConfig) -> bool:
        self.outcome = self._factory.outcome_for(track_path)
        return super().run(track_path, config)


class FakeDecoder:
    """Stand-in for FFmpegDecoder."""

    def __init__(self, path: str, write_fd: int, returncode: int = 0, block: bool = False):
        self.path = path
        self.write_fd = write_fd
        self._exit_code = returncode
        self.block = block
        self.killed = threading.Event()
        self._result: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self._result is None

    @property
    def returncode(self) -> Optional[int]:
        return self._result

    def wait(self, timeout: Optional[float] = None) -> int:
        if self.block:
            self.killed.wait(10.0)
        self._result = -15 if self.killed.is_set() else self._exit_code
        return self._result

    def kill(self) -> None:
        self.killed.set()


class FakeTransmitter:
    """Stand-in for FMTransmitter."""

    def __init__(self, returncode: Optional[int] = None, last_error: Optional[str] = None, start_error=None):
        self.returncode = returncode
        self.last_error = last_error
        self.start_error = start_error
        self.config: Optional[TransmitterConfig] = None
        self.stdin: Optional[int] = None
        self.stopped = False
        self.destroyed = False

    def start_stream(self, config: TransmitterConfig, stdin: int) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.config = config
        self.stdin = stdin

    def stop(self, grace_period_seconds: float = 2.0) -> Optional[int]:
        self.stopped = True
        return self.returncode

    @property
    def is_running(self) -> bool:
        return self.config is not None and not self.stopped and self.returncode is None

    def destroy(self) -> None:
        self.stop()
        self.destroyed = True
