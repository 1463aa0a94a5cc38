"""Exceptions raised by the pirate radio broadcast engine and its stages."""

from typing import Optional


class PirateRadioError(Exception):
    """Base exception for all pirate radio errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class InitFailedError(PirateRadioError):
    """Raised when the signal emitter cannot be created."""

    def __init__(self, details: Optional[str] = None):
        super().__init__("Failed to initialize transmitter", details)


class DirectoryNotFoundError(PirateRadioError):
    """Raised when the watched music directory does not exist."""

    def __init__(self, directory: str):
        super().__init__("Directory not found", directory)
        self.directory = directory


class NoTracksFoundError(PirateRadioError):
    """Raised when a broadcast is started on a directory with no playable tracks."""

    def __init__(self, directory: str):
        super().__init__("No supported audio files found", directory)
        self.directory = directory


class TrackFileNotFoundError(PirateRadioError):
    """Raised when the emitter is asked to transmit a file that does not exist."""

    def __init__(self, path: str):
        super().__init__("File not found", path)
        self.path = path


class InvalidFormatError(PirateRadioError):
    """Raised when the emitter is handed audio it cannot read."""

    def __init__(self, path: Optional[str] = None):
        super().__init__("Unsupported audio format", path)
        self.path = path


class ConversionFailedError(PirateRadioError):
    """Raised when the decode stage fails for a track."""

    def __init__(self, track: str, returncode: Optional[int] = None, details: Optional[str] = None):
        if details is None and returncode is not None:
            details = f"ffmpeg exited with code {returncode}"
        super().__init__(f"Failed to convert {track}", details)
        self.track = track
        self.returncode = returncode


class TransmissionFailedError(PirateRadioError):
    """Raised when the emission stage fails."""

    def __init__(self, reason: str):
        super().__init__("Transmission failed", reason)
        self.reason = reason


class PermissionDeniedError(PirateRadioError):
    """Raised when the process lacks the privileges an operation needs."""

    def __init__(self, details: Optional[str] = None):
        super().__init__("Permission denied (try running with sudo)", details)


class AlreadyRunningError(PirateRadioError):
    """Raised when starting something that is already running."""

    def __init__(self, details: Optional[str] = None):
        super().__init__("Already running", details)


class NotRunningError(PirateRadioError):
    """Raised when an operation requires something that is not running."""

    def __init__(self, details: Optional[str] = None):
        super().__init__("Not running", details)


class UnknownRadioError(PirateRadioError):
    """Raised for failures that fit no other category."""

    def __init__(self, details: str):
        super().__init__("Unknown error", details)
