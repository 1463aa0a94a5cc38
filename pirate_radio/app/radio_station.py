"""
RadioStation: the broadcast engine.

Owns the track catalog and one background loop that plays the current track
through a TrackPipeline, reports what happened, advances, and repeats until
stopped. start/stop/next_track/previous_track may be called from any thread
while the loop runs.

Lifecycle: IDLE → start() → BROADCASTING → stop() → IDLE (start() may be
called again). A single track failing never ends the broadcast; only stop()
does.
"""

import dataclasses
import enum
import logging
import threading
import weakref
from pathlib import Path
from typing import Callable, Optional, Union

from pirate_radio.app.config import RadioConfig
from pirate_radio.broadcast_core.track_pipeline import DEFAULT_DRAIN_SECONDS, TrackPipeline
from pirate_radio.errors import (
    AlreadyRunningError,
    NoTracksFoundError,
    PirateRadioError,
    UnknownRadioError,
)
from pirate_radio.music_logic.catalog import PlaybackMode, TrackCatalog
from pirate_radio.outputs.fm_transmitter import TransmitterConfig
from pirate_radio.state.notifications import (
    EventKind,
    NotificationChannel,
    RadioStationObserver,
    StationEvent,
)

logger = logging.getLogger(__name__)

# How long the loop idles between rescans while the catalog is empty
DEFAULT_IDLE_RESCAN_SECONDS = 5.0

# Upper bound on how long stop() waits for the loop to tear its pipeline down
STOP_JOIN_TIMEOUT_SECONDS = 10.0

PipelineFactory = Callable[[], TrackPipeline]


class BroadcastState(enum.Enum):
    IDLE = "idle"
    BROADCASTING = "broadcasting"


class RadioStation:
    """
    Continuous broadcast of a music directory on one frequency.

    Frequency and other transmitter settings are copied into each pipeline
    when a track starts, so changes apply from the next track on.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        frequency: float = 100.0,
        bandwidth: float = 200.0,
        dma_channel: int = 0,
        playback_mode: PlaybackMode = PlaybackMode.SEQUENTIAL,
        drain_seconds: float = DEFAULT_DRAIN_SECONDS,
        idle_rescan_seconds: float = DEFAULT_IDLE_RESCAN_SECONDS,
        pipeline_factory: Optional[PipelineFactory] = None,
        observer: Optional[RadioStationObserver] = None,
    ):
        """
        Args:
            directory: Music directory to broadcast
            frequency: Broadcast frequency in MHz
            bandwidth: Emission bandwidth in kHz
            dma_channel: DMA channel used by fm_transmitter
            playback_mode: Initial catalog ordering
            drain_seconds: Drain allowance passed to each default pipeline
            idle_rescan_seconds: Idle interval between rescans of an empty catalog
            pipeline_factory: Creates one TrackPipeline per track
            observer: Receives lifecycle events (held weakly)
        """
        self._channel = NotificationChannel(observer)
        self.catalog = TrackCatalog(directory, playback_mode, on_error=self._on_catalog_error)
        self._transmitter_config = TransmitterConfig(
            frequency=frequency,
            bandwidth=bandwidth,
            dma_channel=dma_channel,
        )
        self.idle_rescan_seconds = idle_rescan_seconds
        self._pipeline_factory = pipeline_factory or (lambda: TrackPipeline(drain_seconds=drain_seconds))

        self._lock = threading.RLock()
        self._should_stop = threading.Event()
        self._is_broadcasting = False
        self._pipeline: Optional[TrackPipeline] = None
        self._operator_skip = False
        self._loop_thread: Optional[threading.Thread] = None

        # Dispatcher thread must not outlive the station
        self._finalizer = weakref.finalize(self, self._channel.close, 1.0)

    @classmethod
    def from_config(cls, config: RadioConfig, observer: Optional[RadioStationObserver] = None) -> "RadioStation":
        """Build a station wired to real ffmpeg / fm_transmitter from configuration."""
        def pipeline_factory() -> TrackPipeline:
            return TrackPipeline(
                drain_seconds=config.drain_seconds,
                sample_rate=config.sample_rate,
                channels=config.channels,
                ffmpeg_path=config.ffmpeg_path,
                transmitter_path=config.transmitter_path,
            )

        return cls(
            config.music_dir,
            frequency=config.frequency,
            bandwidth=config.bandwidth,
            dma_channel=config.dma_channel,
            playback_mode=PlaybackMode.SHUFFLE if config.shuffle else PlaybackMode.SEQUENTIAL,
            drain_seconds=config.drain_seconds,
            idle_rescan_seconds=config.idle_rescan_seconds,
            pipeline_factory=pipeline_factory,
            observer=observer,
        )

    # -- properties -------------------------------------------------------

    @property
    def observer(self) -> Optional[RadioStationObserver]:
        return self._channel.observer

    @observer.setter
    def observer(self, observer: Optional[RadioStationObserver]) -> None:
        self._channel.observer = observer

    @property
    def is_broadcasting(self) -> bool:
        return self._is_broadcasting

    @property
    def state(self) -> BroadcastState:
        return BroadcastState.BROADCASTING if self._is_broadcasting else BroadcastState.IDLE

    @property
    def frequency(self) -> float:
        return self._transmitter_config.frequency

    @frequency.setter
    def frequency(self, frequency: float) -> None:
        with self._lock:
            self._transmitter_config.frequency = frequency
        logger.info(f"[STATION] Frequency set to {frequency:.1f} MHz (applies from next track)")

    @property
    def transmitter_config(self) -> TransmitterConfig:
        """Copy of the settings the next pipeline will use."""
        with self._lock:
            return dataclasses.replace(self._transmitter_config)

    @property
    def current_track(self) -> Optional[str]:
        return self.catalog.current_track()

    # -- control surface --------------------------------------------------

    def start(self) -> None:
        """
        Begin broadcasting.

        Scans the catalog, starts the directory monitor and hands off to the
        background loop. Returns before the first track starts. No-op if
        already broadcasting.

        Raises:
            DirectoryNotFoundError: If the music directory does not exist
            NoTracksFoundError: If it holds no playable tracks
            AlreadyRunningError: If the previous session's loop has not exited yet
        """
        with self._lock:
            if self._is_broadcasting:
                logger.warning("[STATION] Already broadcasting, ignoring duplicate start()")
                return

            previous = self._loop_thread
            if previous is not None and previous.is_alive():
                raise AlreadyRunningError("previous broadcast loop is still shutting down")

            tracks = self.catalog.scan()
            if not tracks:
                raise NoTracksFoundError(str(self.catalog.directory))

            self._should_stop.clear()
            self._is_broadcasting = True
            self.catalog.start_monitoring()

            self._loop_thread = threading.Thread(target=self._broadcast_loop, name="BroadcastLoop", daemon=True)
            self._loop_thread.start()

        logger.info(
            f"[STATION] Broadcast started on {self.frequency:.1f} MHz "
            f"({len(tracks)} tracks, {self.catalog.playback_mode.value})"
        )

    def stop(self) -> None:
        """
        Stop broadcasting.

        Cancels the playing track, stops the directory monitor, waits for the
        loop to exit and posts the stopped event once. Idempotent.
        """
        with self._lock:
            if not self._is_broadcasting:
                return
            self._should_stop.set()
            self._is_broadcasting = False
            pipeline = self._pipeline
            loop_thread = self._loop_thread

        logger.info("[STATION] Stopping broadcast")
        if pipeline is not None:
            pipeline.cancel()
        self.catalog.stop_monitoring()

        if loop_thread is not None and loop_thread is not threading.current_thread():
            loop_thread.join(timeout=STOP_JOIN_TIMEOUT_SECONDS)
            if loop_thread.is_alive():
                logger.warning(f"[STATION] Broadcast loop did not stop within {STOP_JOIN_TIMEOUT_SECONDS}s")

        self._channel.post(StationEvent.broadcast_stopped())
        logger.info("[STATION] Broadcast stopped")

    def next_track(self) -> None:
        """Skip to the next track (per playback mode)."""
        self._skip(self.catalog.next_track)

    def previous_track(self) -> None:
        """Go back to the previous track."""
        self._skip(self.catalog.previous_track)

    def _skip(self, move: Callable[[], Optional[str]]) -> None:
        # The cursor moves here; the loop must not advance again for the cut track
        with self._lock:
            pipeline = self._pipeline
            target = move()
            if pipeline is not None:
                self._operator_skip = True
        logger.info(f"[STATION] Operator skip → {target}")
        if pipeline is not None:
            pipeline.cancel()

    def toggle_shuffle(self) -> PlaybackMode:
        """Switch between SHUFFLE and SEQUENTIAL; returns the new mode."""
        with self._lock:
            if self.catalog.playback_mode == PlaybackMode.SHUFFLE:
                mode = PlaybackMode.SEQUENTIAL
            else:
                mode = PlaybackMode.SHUFFLE
            self.catalog.playback_mode = mode
        return mode

    def close(self) -> None:
        """Stop broadcasting and shut down event delivery."""
        self.stop()
        self._finalizer()

    def flush_notifications(self, timeout: Optional[float] = None) -> bool:
        """Wait until every event posted so far has reached the observer."""
        return self._channel.flush(timeout)

    # -- broadcast loop ---------------------------------------------------

    def _broadcast_loop(self) -> None:
        logger.info("[STATION] Broadcast loop started")
        try:
            while not self._should_stop.is_set():
                if not self._play():
                    self._wait_for_tracks()
        except Exception as e:
            logger.error(f"[STATION] Broadcast loop crashed: {e}", exc_info=True)
            self._post(StationEvent.error(UnknownRadioError(str(e))))
        finally:
            with self._lock:
                self._pipeline = None
            logger.info("[STATION] Broadcast loop exited")

    def _wait_for_tracks(self) -> None:
        """Rescan an empty catalog, idling between attempts."""
        try:
            tracks = self.catalog.scan()
        except PirateRadioError as e:
            logger.warning(f"[STATION] Rescan failed: {e}")
            self._post(StationEvent.error(e))
            self._should_stop.wait(self.idle_rescan_seconds)
            return

        if not tracks:
            logger.debug(f"[STATION] No tracks yet, retrying in {self.idle_rescan_seconds}s")
            self._should_stop.wait(self.idle_rescan_seconds)

    def _play(self) -> bool:
        """
        Broadcast the track under the cursor.

        The cursor is read under the same lock that installs the pipeline, so
        an operator skip either lands before the read or cuts this track.

        Returns:
            False if the catalog has no current track, True otherwise
        """
        if self.catalog.current_track() is None:
            return False
        pipeline = self._pipeline_factory()
        with self._lock:
            if self._should_stop.is_set():
                return True
            track_path = self.catalog.current_track()
            if track_path is None:
                return False
            self._pipeline = pipeline
            self._operator_skip = False
            config = dataclasses.replace(self._transmitter_config)

        self._post(StationEvent.track_started(track_path))
        try:
            pipeline.run(track_path, config)
        except PirateRadioError as e:
            logger.error(f"[STATION] Track failed: {e}")
            self._post(StationEvent.error(e, track_path))
        except OSError as e:
            logger.error(f"[STATION] Track failed: {e}", exc_info=True)
            self._post(StationEvent.error(UnknownRadioError(str(e)), track_path))
        else:
            self._post(StationEvent.track_finished(track_path))
        finally:
            with self._lock:
                self._pipeline = None
                skipped, self._operator_skip = self._operator_skip, False
                if not skipped and not self._should_stop.is_set():
                    self.catalog.next_track()

    def _post(self, event: StationEvent) -> None:
        """Post a session event unless stop() has already been requested."""
        with self._lock:
            if self._should_stop.is_set() and event.kind != EventKind.BROADCAST_STOPPED:
                logger.debug(f"[STATION] Stopping, dropping {event.kind.value}")
                return
            self._channel.post(event)

    def _on_catalog_error(self, error: PirateRadioError) -> None:
        self._post(StationEvent.error(error))
