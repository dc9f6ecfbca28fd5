"""
Configuration management for JamCapture.

Reads configuration from an optional .env file and environment variables with
sensible defaults. The channel list is given as JSON in JAMCAPTURE_CHANNELS;
profile and reference resolution of richer config files happens upstream.
"""

import enum
import json
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from jamcapture.routing.source import ActiveSource, SourceRef, parse_sources

# Default .env file location
DEFAULT_ENV_FILE = Path("~/.config/jamcapture/jamcapture.env")

DEFAULT_OUTPUT_DIR = "~/Audio/JamCapture"

logger = logging.getLogger(__name__)


class ChannelRole(enum.Enum):
    INPUT = "input"
    MONITOR = "monitor"


@dataclass(frozen=True)
class Channel:
    """
    One logical input to the recording.

    ``sources`` is ordered: one entry is mono, two entries are left/right.
    Gain and delay are carried for the mixing stage and not used here.
    """
    name: str
    sources: Tuple[SourceRef, ...]
    role: ChannelRole = ChannelRole.INPUT
    gain: float = 1.0
    delay_ms: int = 0

    @property
    def active_sources(self) -> List[str]:
        return [s.name for s in self.sources if isinstance(s, ActiveSource)]

    @property
    def has_active_source(self) -> bool:
        return bool(self.active_sources)

    @property
    def input_channels(self) -> int:
        """Encoder input width: 1 for mono, capped at 2 for stereo."""
        return min(max(len(self.sources), 1), 2)


def _default_channels() -> List[Channel]:
    return [
        Channel("guitar", parse_sources(["system:capture_1"]), ChannelRole.INPUT, 4.0, 0),
        Channel("monitor_left", parse_sources(["system:monitor_FL"]), ChannelRole.MONITOR, 0.8, 0),
        Channel("monitor_right", parse_sources(["system:monitor_FR"]), ChannelRole.MONITOR, 0.8, 0),
    ]


def _load_env_file() -> None:
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("JAMCAPTURE_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file).expanduser()

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _is_valid_source_name(source: str) -> bool:
    """
    Accept JACK/PipeWire "device:port" names.

    Device names may themselves contain colons ("Scarlett 2i2 USB: Audio
    (hw:1,0):0"), so the port part is whatever follows the last colon.
    """
    source = source.strip()
    if ":" not in source:
        return bool(source)
    device, _, port = source.rpartition(":")
    return bool(device.strip()) and bool(port.strip())


def _pick(entry: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in entry:
            return entry[key]
    return default


def parse_channel(entry: Dict[str, Any], index: int) -> Channel:
    """
    Build a Channel from one JSON object.

    Raises:
        ValueError: If the entry is malformed
    """
    prefix = f"channel[{index}]"
    if not isinstance(entry, dict):
        raise ValueError(f"{prefix} must be an object")

    name = str(entry.get("name") or "").strip()
    if not name:
        raise ValueError(f"{prefix} must have a name")
    prefix = f"{prefix} '{name}'"

    raw_sources = entry.get("sources")
    if not isinstance(raw_sources, list) or not raw_sources:
        raise ValueError(f"{prefix} must have at least one source")
    if len(raw_sources) > 2:
        raise ValueError(f"{prefix} can have at most 2 sources, got {len(raw_sources)}")

    audio_mode = entry.get("audioMode") or entry.get("audio_mode")
    if audio_mode is not None:
        if audio_mode not in ("mono", "stereo"):
            raise ValueError(f"{prefix} audioMode must be 'mono' or 'stereo', got: {audio_mode}")
        expected = 2 if audio_mode == "stereo" else 1
        if len(raw_sources) != expected:
            raise ValueError(
                f"{prefix} with audioMode '{audio_mode}' must have exactly {expected} source(s), "
                f"got {len(raw_sources)}"
            )

    sources = parse_sources(None if s is None else str(s) for s in raw_sources)
    for j, source in enumerate(sources):
        if isinstance(source, ActiveSource) and not _is_valid_source_name(source.name):
            raise ValueError(f"{prefix} source[{j}] must be a valid audio source (JACK port), got: {source.name}")

    role_str = _pick(entry, "role", "type", default="input")
    try:
        role = ChannelRole(role_str)
    except ValueError:
        raise ValueError(f"{prefix} role must be 'input' or 'monitor', got: {role_str}")

    try:
        gain = float(_pick(entry, "gain", "volume", default=1.0))
    except (TypeError, ValueError):
        raise ValueError(f"{prefix} gain must be a number")
    if gain <= 0:
        raise ValueError(f"{prefix} gain must be > 0, got: {gain:.2f}")

    try:
        delay_ms = int(_pick(entry, "delay_ms", "delay", default=0))
    except (TypeError, ValueError):
        raise ValueError(f"{prefix} delay must be an integer")
    if delay_ms < 0:
        raise ValueError(f"{prefix} delay must be >= 0, got: {delay_ms}")

    return Channel(name=name, sources=sources, role=role, gain=gain, delay_ms=delay_ms)


def parse_channels(raw_json: str) -> List[Channel]:
    """
    Parse the JAMCAPTURE_CHANNELS JSON list.

    Raises:
        ValueError: If the JSON is invalid, a channel is malformed, or names repeat
    """
    try:
        entries = json.loads(raw_json)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JAMCAPTURE_CHANNELS: {e}")
    if not isinstance(entries, list):
        raise ValueError("Invalid JAMCAPTURE_CHANNELS: must be a JSON list of channel objects")

    channels = [parse_channel(entry, i) for i, entry in enumerate(entries)]
    seen = set()
    for channel in channels:
        if channel.name in seen:
            raise ValueError(f"Duplicate channel name: {channel.name}")
        seen.add(channel.name)
    return channels


def _env_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


def _env_float(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be a number)")


@dataclass
class CaptureConfig:
    """JamCapture configuration loaded from .env file and environment variables."""

    # Output
    output_dir: Path = field(default_factory=lambda: Path(DEFAULT_OUTPUT_DIR).expanduser())
    output_format: str = "flac"
    sample_rate: int = 48000

    # Channels
    channels: List[Channel] = field(default_factory=_default_channels)

    # Encoder
    encoder_cmd: List[str] = field(default_factory=lambda: ["pw-jack", "ffmpeg"])
    stop_timeout_sec: float = 5.0

    # Source monitoring
    ready_timeout_sec: float = 30.0
    poll_interval_sec: float = 0.5

    # Port connection (after encoder start)
    connect_settle_sec: float = 1.0
    port_wait_timeout_sec: float = 5.0

    # Logging
    log_level: str = "INFO"

    @classmethod
    def load_config(cls) -> "CaptureConfig":
        """
        Load configuration from environment variables.

        Returns:
            CaptureConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        output_dir = Path(os.getenv("JAMCAPTURE_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)).expanduser()
        output_format = os.getenv("JAMCAPTURE_OUTPUT_FORMAT", "flac")
        sample_rate = _env_int("JAMCAPTURE_SAMPLE_RATE", "48000")

        channels_json = os.getenv("JAMCAPTURE_CHANNELS")
        channels = parse_channels(channels_json) if channels_json else _default_channels()

        encoder_cmd = shlex.split(os.getenv("JAMCAPTURE_ENCODER_CMD", "pw-jack ffmpeg"))
        stop_timeout_sec = _env_float("JAMCAPTURE_STOP_TIMEOUT_SEC", "5")

        ready_timeout_sec = _env_float("JAMCAPTURE_READY_TIMEOUT_SEC", "30")
        poll_interval_sec = _env_int("JAMCAPTURE_POLL_INTERVAL_MS", "500") / 1000.0

        log_level = os.getenv("JAMCAPTURE_LOG_LEVEL", "INFO")

        config = cls(
            output_dir=output_dir,
            output_format=output_format,
            sample_rate=sample_rate,
            channels=channels,
            encoder_cmd=encoder_cmd,
            stop_timeout_sec=stop_timeout_sec,
            ready_timeout_sec=ready_timeout_sec,
            poll_interval_sec=poll_interval_sec,
            log_level=log_level,
        )

        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {self.sample_rate} (must be > 0)")

        if not self.output_format:
            raise ValueError("Output format cannot be empty")

        if not self.encoder_cmd:
            raise ValueError("Encoder command cannot be empty")

        for label, value in (
            ("stop timeout", self.stop_timeout_sec),
            ("ready timeout", self.ready_timeout_sec),
            ("poll interval", self.poll_interval_sec),
            ("port wait timeout", self.port_wait_timeout_sec),
        ):
            if value <= 0:
                raise ValueError(f"Invalid {label}: {value} (must be > 0)")

        if self.connect_settle_sec < 0:
            raise ValueError(f"Invalid connect settle time: {self.connect_settle_sec} (must be >= 0)")

        names = [c.name for c in self.channels]
        if len(names) != len(set(names)):
            raise ValueError(f"Channel names must be unique: {names}")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> CaptureConfig:
    """
    Load and validate JamCapture configuration from environment variables.

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return CaptureConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise
