"""
Recording Bot Configuration.

Centralizes all configuration for a single bot session:
- Meeting target and display name
- Automatic leave timeouts
- Capture (ffmpeg) device and encoder settings
- Telemetry endpoint and debug switches

The configuration arrives as JSON in the ``BOT_DATA`` environment variable
(camelCase keys, as the bot service sends them) or as a YAML file with the
same structure. It is validated once at session start and never mutated.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from meet_recorder.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "MeetingBot"
DEFAULT_RECORDINGS_DIR = Path.home() / ".local/share/meet_recorder/recordings"
SUPPORTED_PLATFORMS = ("google",)

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class AutomaticLeaveConfig:
    """Conditions under which the bot leaves on its own. All values in milliseconds."""

    waiting_room_timeout_ms: int = 15 * 60 * 1000
    everyone_left_timeout_ms: int = 60 * 1000
    max_duration_ms: int = 3 * 60 * 60 * 1000
    inactivity_timeout_ms: int = 30 * 60 * 1000


@dataclass(frozen=True)
class CaptureSettings:
    """ffmpeg capture settings (virtual X display + PulseAudio sink monitor)."""

    ffmpeg_cmd: str = "ffmpeg"
    display: str = ":99.0"
    audio_source: str = "VirtualSink.monitor"
    video_size: str = "1280x720"
    framerate: int = 15
    video_codec: str = "libx264"
    preset: str = "medium"
    crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    thread_queue_size: int = 512
    content_type: str = "video/mp4"

    # Seconds to wait for ffmpeg to finalize the file after SIGINT
    stop_timeout: float = 30.0


@dataclass(frozen=True)
class BotConfig:
    """Main configuration for one bot session."""

    bot_id: str
    meeting_url: str
    display_name: str = DEFAULT_DISPLAY_NAME
    platform: str = "google"
    heartbeat_interval_ms: int = 5000
    automatic_leave: AutomaticLeaveConfig = field(default_factory=AutomaticLeaveConfig)
    capture: CaptureSettings = field(default_factory=CaptureSettings)

    # Open the People panel before monitoring (participant observer lives there)
    requires_people_panel: bool = True

    telemetry_url: Optional[str] = None
    debug: bool = False
    recordings_dir: Path = DEFAULT_RECORDINGS_DIR
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def recording_path(self) -> Path:
        extension = self.capture.content_type.split("/")[-1]
        return self.recordings_dir / f"{self.bot_id}.{extension}"

    def ensure_directories(self) -> None:
        """Create the recordings directory."""
        self.recordings_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None) -> "BotConfig":
        """Build and validate a config from the bot service payload.

        Args:
            data: Parsed payload (camelCase keys)
            environ: Environment used for ``BOT_TELEMETRY_URL`` and ``DEBUG`` fallbacks

        Raises:
            ConfigError: If a required field is missing or a value is invalid
        """
        if not isinstance(data, Mapping):
            raise ConfigError("Bot data must be a JSON object")
        environ = os.environ if environ is None else environ

        bot_id = _required_str(data, "id")
        meeting_info = data.get("meetingInfo") or {}
        if not isinstance(meeting_info, Mapping):
            raise ConfigError("meetingInfo must be an object")
        meeting_url = _required_str(meeting_info, "meetingUrl", prefix="meetingInfo.")
        if not meeting_url.startswith(("https://", "http://")):
            raise ConfigError(f"meetingInfo.meetingUrl is not a URL: {meeting_url}")

        platform = meeting_info.get("platform") or "google"
        if platform not in SUPPORTED_PLATFORMS:
            raise ConfigError(f"Unsupported platform: {platform}")

        leave = data.get("automaticLeave") or {}
        if not isinstance(leave, Mapping):
            raise ConfigError("automaticLeave must be an object")
        defaults = AutomaticLeaveConfig()
        automatic_leave = AutomaticLeaveConfig(
            waiting_room_timeout_ms=_positive_ms(
                leave, "waitingRoomTimeout", defaults.waiting_room_timeout_ms
            ),
            everyone_left_timeout_ms=_positive_ms(
                leave, "everyoneLeftTimeout", defaults.everyone_left_timeout_ms
            ),
            max_duration_ms=_positive_ms(leave, "maxDuration", defaults.max_duration_ms),
            inactivity_timeout_ms=_positive_ms(
                leave, "inactivityTimeout", defaults.inactivity_timeout_ms
            ),
        )

        capture_overrides = data.get("capture") or {}
        if not isinstance(capture_overrides, Mapping):
            raise ConfigError("capture must be an object")
        capture = _capture_settings(capture_overrides)

        recordings_dir = data.get("recordingsDir")
        debug = _flag(data, "debug", str(environ.get("DEBUG", "")).lower() in _TRUTHY)

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise ConfigError("metadata must be an object")

        return cls(
            bot_id=bot_id,
            meeting_url=meeting_url,
            display_name=data.get("botDisplayName") or DEFAULT_DISPLAY_NAME,
            platform=platform,
            heartbeat_interval_ms=_positive_ms(data, "heartbeatInterval", 5000),
            automatic_leave=automatic_leave,
            capture=capture,
            requires_people_panel=_flag(data, "peoplePanel", True),
            telemetry_url=data.get("telemetryUrl") or environ.get("BOT_TELEMETRY_URL") or None,
            debug=debug,
            recordings_dir=Path(recordings_dir).expanduser() if recordings_dir else DEFAULT_RECORDINGS_DIR,
            metadata=dict(metadata),
        )


def _required_str(data: Mapping[str, Any], key: str, prefix: str = "") -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Missing required field: {prefix}{key}")
    return value.strip()


def _positive_ms(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number of milliseconds, got {value!r}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {value}")
    return int(value)


def _flag(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUTHY + _FALSY:
        return value.strip().lower() in _TRUTHY
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


# camelCase key -> (CaptureSettings field, accepted type)
_CAPTURE_FIELDS = {
    "ffmpegCmd": ("ffmpeg_cmd", str),
    "display": ("display", str),
    "audioSource": ("audio_source", str),
    "videoSize": ("video_size", str),
    "framerate": ("framerate", int),
    "stopTimeout": ("stop_timeout", (int, float)),
}


def _capture_settings(overrides: Mapping[str, Any]) -> CaptureSettings:
    kwargs = {}
    for key, value in overrides.items():
        if key not in _CAPTURE_FIELDS:
            raise ConfigError(f"Unknown capture setting: {key}")
        field_name, expected = _CAPTURE_FIELDS[key]

        if isinstance(value, bool) or not isinstance(value, expected):
            raise ConfigError(f"capture.{key} has the wrong type: {value!r}")
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ConfigError(f"capture.{key} must not be empty")
        elif value <= 0:
            raise ConfigError(f"capture.{key} must be positive, got {value}")
        if key == "videoSize" and not re.fullmatch(r"\d+x\d+", value):
            raise ConfigError(f"capture.videoSize must look like 1280x720, got {value!r}")

        kwargs[field_name] = value
    return CaptureSettings(**kwargs)


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BotConfig:
    """Load the bot configuration.

    Reads the YAML file at ``config_path`` when given, otherwise the JSON
    payload in the ``BOT_DATA`` environment variable.

    Raises:
        ConfigError: If no configuration is available or it does not validate
    """
    environ = os.environ if environ is None else environ

    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        logger.info(f"Loaded bot config from {path}")
    else:
        raw = environ.get("BOT_DATA")
        if not raw:
            raise ConfigError("Missing required environment variable: BOT_DATA")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"BOT_DATA is not valid JSON: {e}") from e
        logger.info("Loaded bot config from BOT_DATA")

    config = BotConfig.from_dict(data, environ=environ)
    logger.debug(f"Bot {config.bot_id} config: {config}")
    return config
