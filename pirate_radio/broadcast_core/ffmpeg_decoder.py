import logging
import os
import subprocess
import tempfile
from typing import IO, List, Optional, Sequence, Union

from pirate_radio.broadcast_core.process_control import terminate_process_group
from pirate_radio.errors import ConversionFailedError

logger = logging.getLogger(__name__)

# fm_transmitter expects 16-bit WAV; low rate mono keeps the DMA load down
DEFAULT_SAMPLE_RATE = 22050
DEFAULT_CHANNELS = 1

# Time allowed between SIGTERM and SIGKILL; the decoder has nothing to flush
KILL_ESCALATION_SECONDS = 1.0

Output = Union[int, IO[bytes]]


class FFmpegDecoder:
    """
    Audio file → WAV (s16le) decoder using ffmpeg.

    - Reads any container ffmpeg understands
    - Writes a WAV stream with fixed sample rate and channel count to ``stdout``
    - Diagnostic output is suppressed, stdin is closed

    The decoder never reads its own output: the caller hands it the write end
    of whatever connects it to the next stage.
    """

    def __init__(
        self,
        path: str,
        stdout: Output,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
        ffmpeg_path: str = "ffmpeg",
        _command: Optional[List[str]] = None,
        _list_file: Optional[str] = None,
    ):
        """
        Launch ffmpeg for a single input file.

        Args:
            path: Path to audio file
            stdout: File descriptor or binary file object receiving the WAV stream
            sample_rate: Output sample rate in Hz (default: 22050)
            channels: Output channel count (default: 1)
            ffmpeg_path: ffmpeg executable to run

        Raises:
            ConversionFailedError: If ffmpeg cannot be started
        """
        self.path = path
        self.sample_rate = sample_rate
        self.channels = channels
        self._list_file = _list_file

        command = _command or self.build_command(path, sample_rate, channels, ffmpeg_path)

        # Use preexec_fn=os.setsid to isolate FFmpeg from Ctrl-C (SIGINT) sent to parent
        try:
            self.proc: Optional[subprocess.Popen] = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=subprocess.DEVNULL,
                preexec_fn=os.setsid,
            )
        except OSError as e:
            self._remove_list_file()
            raise ConversionFailedError(path, details=f"could not start {command[0]}: {e}")

        self.pid = self.proc.pid
        self._returncode: Optional[int] = None
        logger.debug(f"[DECODER] FFmpeg started (pid={self.pid}): {path}")

    @staticmethod
    def build_command(
        path: str,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
        ffmpeg_path: str = "ffmpeg",
    ) -> List[str]:
        """Build the ffmpeg argv that decodes ``path`` to WAV on stdout."""
        return [
            ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-i", path,
            *_output_args(sample_rate, channels),
        ]

    @classmethod
    def concat(
        cls,
        paths: Sequence[str],
        stdout: Output,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
        ffmpeg_path: str = "ffmpeg",
    ) -> "FFmpegDecoder":
        """
        Decode several files back to back into one continuous WAV stream.

        Uses ffmpeg's concat demuxer driven by a temporary list file. The list
        file is removed once the process ends, whether or not it succeeded.

        Args:
            paths: Input files in playback order (must not be empty)
            stdout: File descriptor or binary file object receiving the stream

        Returns:
            A running FFmpegDecoder

        Raises:
            ValueError: If ``paths`` is empty
            ConversionFailedError: If ffmpeg cannot be started
        """
        if not paths:
            raise ValueError("concat requires at least one input")

        fd, list_file = tempfile.mkstemp(prefix="ffmpeg_concat_", suffix=".txt")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(build_concat_list(paths))

        command = [
            ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-f", "concat",
            "-safe", "0",
            "-i", list_file,
            *_output_args(sample_rate, channels),
        ]
        logger.info(f"[DECODER] Concatenating {len(paths)} inputs via {list_file}")
        return cls(
            paths[0],
            stdout,
            sample_rate=sample_rate,
            channels=channels,
            ffmpeg_path=ffmpeg_path,
            _command=command,
            _list_file=list_file,
        )

    @property
    def list_file(self) -> Optional[str]:
        """Concat list file path while it still exists, else None."""
        return self._list_file

    @property
    def returncode(self) -> Optional[int]:
        proc = self.proc
        if proc is not None:
            return proc.poll()
        return self._returncode

    @property
    def is_running(self) -> bool:
        proc = self.proc
        return proc is not None and proc.poll() is None

    def wait(self, timeout: Optional[float] = None) -> int:
        """
        Block until ffmpeg exits.

        Args:
            timeout: Maximum seconds to wait (None = wait indefinitely)

        Returns:
            ffmpeg's exit code (negative for a signal)

        Raises:
            subprocess.TimeoutExpired: If the timeout elapses first
        """
        proc = self.proc
        if proc is None:
            return self._returncode
        returncode = proc.wait(timeout=timeout)
        self._finish(returncode)
        return returncode

    def kill(self) -> None:
        """
        Terminate ffmpeg immediately.

        The process group gets SIGTERM and, if still alive after a short
        escalation window, SIGKILL. Idempotent and safe to call from a thread
        other than the one blocked in wait().
        """
        proc = self.proc
        if proc is None:
            return
        returncode = terminate_process_group(proc, KILL_ESCALATION_SECONDS, "DECODER")
        if returncode is not None:
            self._finish(returncode)

    def _finish(self, returncode: int) -> None:
        if self.proc is not None:
            logger.debug(f"[DECODER] FFmpeg exited (pid={self.pid}, code={returncode})")
        self._returncode = returncode
        self.proc = None
        self._remove_list_file()

    def _remove_list_file(self) -> None:
        list_file, self._list_file = self._list_file, None
        if list_file is None:
            return
        try:
            os.remove(list_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[DECODER] Could not remove concat list {list_file}: {e}")


def build_concat_list(paths: Sequence[str]) -> str:
    """Render the concat demuxer list, one ``file '<path>'`` line per input."""
    lines = []
    for path in paths:
        escaped = os.path.abspath(path).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


def _output_args(sample_rate: int, channels: int) -> List[str]:
    return [
        "-f", "wav",
        "-acodec", "pcm_s16le",
        "-ar", str(sample_rate),
        "-ac", str(channels),
        "-",
    ]
