"""
Per-track process pipeline: ffmpeg → OS pipe → fm_transmitter.

One TrackPipeline plays one track. It owns both child processes and the pipe
between them for the duration of run(), and nothing outside it holds a
reference to either process. cancel() may be called from any thread while
run() is blocked; run() then tears everything down and returns False.
"""

import logging
import os
import threading
from typing import Callable, Optional

from pirate_radio.broadcast_core.ffmpeg_decoder import (
    DEFAULT_CHANNELS,
    DEFAULT_SAMPLE_RATE,
    FFmpegDecoder,
)
from pirate_radio.errors import ConversionFailedError, TransmissionFailedError
from pirate_radio.outputs.fm_transmitter import (
    DEFAULT_STOP_GRACE_SECONDS,
    DEFAULT_TRANSMITTER_PATH,
    FMTransmitter,
    TransmitterConfig,
)

logger = logging.getLogger(__name__)

# Time the emitter keeps running after ffmpeg exits, to play out buffered audio
DEFAULT_DRAIN_SECONDS = 0.5

TransmitterFactory = Callable[[], FMTransmitter]
DecoderFactory = Callable[[str, int], FFmpegDecoder]


class TrackPipeline:
    """
    Runs a single track through the decode and emission stages.

    Instances are single use: create one per track attempt.
    """

    def __init__(
        self,
        drain_seconds: float = DEFAULT_DRAIN_SECONDS,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
        ffmpeg_path: str = "ffmpeg",
        transmitter_path: str = DEFAULT_TRANSMITTER_PATH,
        transmitter_factory: Optional[TransmitterFactory] = None,
        decoder_factory: Optional[DecoderFactory] = None,
        stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS,
    ):
        """
        Args:
            drain_seconds: Drain allowance between ffmpeg exit and emitter stop
            sample_rate: Decoder output sample rate in Hz
            channels: Decoder output channel count
            ffmpeg_path: ffmpeg executable
            transmitter_path: fm_transmitter executable
            transmitter_factory: Overrides how the emission stage is created
            decoder_factory: Overrides how the decode stage is created; called
                with (track_path, write_fd)
            stop_grace_seconds: SIGTERM→SIGKILL window for the emission stage
        """
        self.drain_seconds = drain_seconds
        self.stop_grace_seconds = stop_grace_seconds
        self._transmitter_factory = transmitter_factory or (lambda: FMTransmitter(transmitter_path))
        self._decoder_factory = decoder_factory or (
            lambda path, fd: FFmpegDecoder(
                path, fd, sample_rate=sample_rate, channels=channels, ffmpeg_path=ffmpeg_path
            )
        )

        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._started = False
        self._decoder: Optional[FFmpegDecoder] = None
        self._transmitter: Optional[FMTransmitter] = None

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def is_active(self) -> bool:
        """True while either stage is owned by this pipeline."""
        with self._lock:
            return self._decoder is not None or self._transmitter is not None

    def run(self, track_path: str, config: TransmitterConfig) -> bool:
        """
        Play one track and block until it is done.

        Args:
            track_path: Audio file to broadcast
            config: Emission settings for this track

        Returns:
            True if the track played to the end, False if cancel() cut it short

        Raises:
            ConversionFailedError: If ffmpeg fails for a reason other than cancel()
            TransmissionFailedError: If the emitter died before ffmpeg finished
            PirateRadioError: If either stage cannot be started
        """
        with self._lock:
            if self._started:
                raise RuntimeError("TrackPipeline is single use")
            self._started = True

        if self.cancelled:
            return False

        logger.info(f"[PIPELINE] Starting: {os.path.basename(track_path)}")
        try:
            decoder = self._spawn_stages(track_path, config)
            if decoder is None:
                return False

            returncode = decoder.wait()

            if self.cancelled:
                logger.info(f"[PIPELINE] Cancelled: {os.path.basename(track_path)}")
                return False

            if returncode != 0:
                # ffmpeg dies of SIGPIPE when the emitter goes away first
                self._check_transmitter()
                raise ConversionFailedError(track_path, returncode=returncode)

            # Let the emitter play out what is still buffered
            if self._cancel_event.wait(self.drain_seconds):
                logger.info(f"[PIPELINE] Cancelled during drain: {os.path.basename(track_path)}")
                return False

            self._check_transmitter()
            logger.info(f"[PIPELINE] Finished: {os.path.basename(track_path)}")
            return True
        finally:
            self._teardown()

    def _spawn_stages(self, track_path: str, config: TransmitterConfig) -> Optional[FFmpegDecoder]:
        """
        Start the emitter reading the pipe, then ffmpeg writing into it.

        Spawning happens under the lock so cancel() either sees a stage or
        prevents it from being started.

        Returns:
            The running decoder, or None if the pipeline was cancelled first
        """
        read_fd, write_fd = os.pipe()
        try:
            with self._lock:
                if self.cancelled:
                    return None
                transmitter = self._transmitter_factory()
                self._transmitter = transmitter
                transmitter.start_stream(config, stdin=read_fd)

            with self._lock:
                if self.cancelled:
                    return None
                decoder = self._decoder_factory(track_path, write_fd)
                self._decoder = decoder
            return decoder
        finally:
            # Children hold their own copies; the emitter sees EOF once ffmpeg exits
            os.close(read_fd)
            os.close(write_fd)

    def _check_transmitter(self) -> None:
        """Raise if the emission stage exited on its own with an error."""
        transmitter = self._transmitter
        if transmitter is None:
            return
        returncode = transmitter.returncode
        if returncode not in (None, 0):
            raise TransmissionFailedError(
                transmitter.last_error or f"fm_transmitter exited with code {returncode}"
            )

    def cancel(self) -> None:
        """
        Cut the current track short.

        Kills the decode stage at once and wakes a pending drain wait; run()
        stops the emission stage on its way out. Safe to call at any time,
        including before run() or after it returned.
        """
        with self._lock:
            self._cancel_event.set()
            decoder = self._decoder
        if decoder is not None:
            logger.debug("[PIPELINE] Cancel requested, killing decoder")
            decoder.kill()

    def _teardown(self) -> None:
        with self._lock:
            decoder, self._decoder = self._decoder, None
            transmitter, self._transmitter = self._transmitter, None

        if decoder is not None and decoder.is_running:
            decoder.kill()
        if transmitter is not None:
            try:
                transmitter.stop(self.stop_grace_seconds)
            finally:
                transmitter.destroy()
