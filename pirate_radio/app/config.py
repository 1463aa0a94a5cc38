"""
Configuration management for Pirate Radio.

Reads configuration from an optional .env file and environment variables with
sensible defaults. Command line flags override whatever is loaded here.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from pirate_radio.broadcast_core.ffmpeg_decoder import DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE
from pirate_radio.broadcast_core.track_pipeline import DEFAULT_DRAIN_SECONDS
from pirate_radio.outputs.fm_transmitter import DEFAULT_TRANSMITTER_PATH, TransmitterConfig

# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/pirate-radio/radio.env")

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _load_env_file() -> None:
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("PIRATE_RADIO_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars
        logger.debug(f"[CONFIG] Loaded environment from {env_path}")


def _get_float(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be a number)")


def _get_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


@dataclass
class RadioConfig:
    """Station configuration loaded from .env file and environment variables."""

    # Library
    music_dir: str = "./music"
    shuffle: bool = False

    # Transmission
    frequency: float = 100.0
    bandwidth: float = 200.0
    dma_channel: int = 0
    transmitter_path: str = DEFAULT_TRANSMITTER_PATH

    # Decoding
    ffmpeg_path: str = "ffmpeg"
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS

    # Timing
    drain_seconds: float = DEFAULT_DRAIN_SECONDS
    idle_rescan_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def transmitter_config(self) -> TransmitterConfig:
        """Emitter settings derived from this configuration."""
        return TransmitterConfig(
            frequency=self.frequency,
            bandwidth=self.bandwidth,
            dma_channel=self.dma_channel,
        )

    @classmethod
    def load_config(cls) -> "RadioConfig":
        """
        Load configuration from environment variables.

        Values are not range-checked here; call validate() once command line
        overrides have been applied.

        Returns:
            RadioConfig instance with loaded values

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        # Load .env file first (if it exists)
        _load_env_file()

        log_file = os.getenv("PIRATE_RADIO_LOG_FILE")
        if log_file == "":
            log_file = None

        config = cls(
            music_dir=os.getenv("PIRATE_RADIO_MUSIC_DIR", "./music"),
            shuffle=os.getenv("PIRATE_RADIO_SHUFFLE", "").lower() in _TRUE_VALUES,
            frequency=_get_float("PIRATE_RADIO_FREQUENCY", "100.0"),
            bandwidth=_get_float("PIRATE_RADIO_BANDWIDTH", "200.0"),
            dma_channel=_get_int("PIRATE_RADIO_DMA_CHANNEL", "0"),
            transmitter_path=os.getenv("PIRATE_RADIO_TRANSMITTER_PATH", DEFAULT_TRANSMITTER_PATH),
            ffmpeg_path=os.getenv("PIRATE_RADIO_FFMPEG_PATH", "ffmpeg"),
            sample_rate=_get_int("PIRATE_RADIO_SAMPLE_RATE", str(DEFAULT_SAMPLE_RATE)),
            channels=_get_int("PIRATE_RADIO_CHANNELS", str(DEFAULT_CHANNELS)),
            drain_seconds=_get_float("PIRATE_RADIO_DRAIN_SECONDS", str(DEFAULT_DRAIN_SECONDS)),
            idle_rescan_seconds=_get_float("PIRATE_RADIO_IDLE_RESCAN_SECONDS", "5.0"),
            log_level=os.getenv("PIRATE_RADIO_LOG_LEVEL", "INFO").upper(),
            log_file=log_file,
        )

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        self.transmitter_config.validate()

        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {self.sample_rate} (must be positive)")

        if self.channels not in (1, 2):
            raise ValueError(f"Invalid channel count: {self.channels} (must be 1 or 2)")

        if self.drain_seconds < 0:
            raise ValueError(f"Invalid drain period: {self.drain_seconds} (must be >= 0)")

        if self.idle_rescan_seconds <= 0:
            raise ValueError(f"Invalid idle rescan interval: {self.idle_rescan_seconds} (must be positive)")

        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {self.log_level}")
