"""
FM transmitter output for Pirate Radio.

Drives the ``fm_transmitter`` executable (Raspberry Pi GPIO4 FM emission),
exposing it through a small handle-style interface: create, start from a file
or from a connected stream, stop, query running state and last error, destroy.

The emitter reads 16-bit WAV, either from a file or from stdin (``-``).
"""

import logging
import os
import shutil
import subprocess
import threading
from dataclasses import dataclass
from typing import IO, List, Optional, Union

from pirate_radio.broadcast_core.process_control import terminate_process_group
from pirate_radio.errors import (
    AlreadyRunningError,
    InitFailedError,
    InvalidFormatError,
    PermissionDeniedError,
    TrackFileNotFoundError,
    TransmissionFailedError,
)

logger = logging.getLogger(__name__)

DEFAULT_TRANSMITTER_PATH = "/usr/local/bin/fm_transmitter"

# Time the emitter gets to flush its DMA buffer after SIGTERM before SIGKILL
DEFAULT_STOP_GRACE_SECONDS = 2.0

MIN_FREQUENCY_MHZ = 87.5
MAX_FREQUENCY_MHZ = 108.0
MAX_DMA_CHANNEL = 15

Input = Union[int, IO[bytes]]


@dataclass
class TransmitterConfig:
    """Emission settings passed to fm_transmitter."""

    frequency: float = 100.0  # MHz
    bandwidth: float = 200.0  # kHz
    dma_channel: int = 0
    loop: bool = False

    def to_args(self) -> List[str]:
        """Render as fm_transmitter command line flags."""
        args = [
            "-f", f"{self.frequency:.1f}",
            "-b", f"{self.bandwidth:.1f}",
            "-d", str(self.dma_channel),
        ]
        if self.loop:
            args.append("-r")
        return args

    def validate(self) -> None:
        """
        Validate transmission settings.

        Raises:
            ValueError: If a setting is out of range
        """
        if not MIN_FREQUENCY_MHZ <= self.frequency <= MAX_FREQUENCY_MHZ:
            raise ValueError(
                f"Invalid frequency: {self.frequency} MHz "
                f"(must be {MIN_FREQUENCY_MHZ}-{MAX_FREQUENCY_MHZ})"
            )
        if self.bandwidth <= 0:
            raise ValueError(f"Invalid bandwidth: {self.bandwidth} kHz (must be positive)")
        if not 0 <= self.dma_channel <= MAX_DMA_CHANNEL:
            raise ValueError(f"Invalid DMA channel: {self.dma_channel} (must be 0-{MAX_DMA_CHANNEL})")


class FMTransmitter:
    """
    Handle to one fm_transmitter emission process.

    At most one emission runs per handle. stop() is idempotent and may be
    called from any thread; destroy() releases the handle for good.
    """

    def __init__(self, executable: str = DEFAULT_TRANSMITTER_PATH):
        """
        Create a transmitter handle.

        Args:
            executable: fm_transmitter path or name on PATH

        Raises:
            InitFailedError: If the executable cannot be found or run
        """
        resolved = shutil.which(executable)
        if resolved is None:
            raise InitFailedError(f"fm_transmitter not found or not executable: {executable}")

        self.executable = resolved
        self._proc: Optional[subprocess.Popen] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._last_error: Optional[str] = None
        self._destroyed = False
        self._lock = threading.Lock()

    def start_file(self, path: str, config: TransmitterConfig) -> None:
        """
        Start transmitting a WAV file.

        Raises:
            AlreadyRunningError: If an emission is in progress
            TrackFileNotFoundError: If ``path`` does not exist
            InvalidFormatError: If ``path`` is not a WAV file
            PermissionDeniedError, TransmissionFailedError: If the emitter cannot start
        """
        if not os.path.isfile(path):
            raise TrackFileNotFoundError(path)
        if os.path.splitext(path)[1].lower() != ".wav":
            raise InvalidFormatError(path)
        self._spawn(config, path, subprocess.DEVNULL)

    def start_stream(self, config: TransmitterConfig, stdin: Input) -> None:
        """
        Start transmitting WAV data read from ``stdin``.

        Args:
            config: Emission settings
            stdin: File descriptor or binary file object to read from

        Raises:
            AlreadyRunningError: If an emission is in progress
            PermissionDeniedError, TransmissionFailedError: If the emitter cannot start
        """
        self._spawn(config, "-", stdin)

    def _spawn(self, config: TransmitterConfig, source: str, stdin: Input) -> None:
        with self._lock:
            if self._destroyed:
                raise InitFailedError("transmitter handle was destroyed")
            if self._proc is not None and self._proc.poll() is None:
                raise AlreadyRunningError(f"fm_transmitter pid={self._proc.pid}")

            command = [self.executable, *config.to_args(), source]
            try:
                proc = subprocess.Popen(
                    command,
                    stdin=stdin,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    preexec_fn=os.setsid,
                )
            except PermissionError as e:
                raise PermissionDeniedError(str(e))
            except OSError as e:
                raise TransmissionFailedError(f"could not start {self.executable}: {e}")

            self._proc = proc
            self._last_error = None
            self._stderr_thread = threading.Thread(
                target=self._read_stderr,
                args=(proc,),
                name="TransmitterStderr",
                daemon=True,
            )
            self._stderr_thread.start()

        logger.info(
            f"[TRANSMITTER] Broadcasting on {config.frequency:.1f} MHz "
            f"(pid={proc.pid}, source={source})"
        )

    def _read_stderr(self, proc: subprocess.Popen) -> None:
        """Keep the most recent diagnostic line fm_transmitter printed."""
        stream = proc.stderr
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    logger.debug(f"[TRANSMITTER] stderr: {line}")
                    self._last_error = line
        except (OSError, ValueError):
            # Stream closed underneath us during teardown
            pass
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def stop(self, grace_period_seconds: float = DEFAULT_STOP_GRACE_SECONDS) -> Optional[int]:
        """
        Stop the current emission.

        Args:
            grace_period_seconds: Drain allowance after SIGTERM before SIGKILL

        Returns:
            Exit code of the emitter, or None if nothing was running
        """
        with self._lock:
            proc = self._proc
        if proc is None:
            return None

        returncode = terminate_process_group(proc, grace_period_seconds, "TRANSMITTER")
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)
        logger.debug(f"[TRANSMITTER] Stopped (pid={proc.pid}, code={returncode})")
        return returncode

    @property
    def is_running(self) -> bool:
        proc = self._proc
        return proc is not None and proc.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        proc = self._proc
        return proc.poll() if proc is not None else None

    @property
    def last_error(self) -> Optional[str]:
        """Last diagnostic line written by the emitter, if any."""
        return self._last_error

    def destroy(self) -> None:
        """Stop any emission and release the handle."""
        self.stop()
        with self._lock:
            self._destroyed = True
            self._proc = None
