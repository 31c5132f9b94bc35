"""
Radio Track ID Settings Manager
Handles dynamic configuration management using settings.json
"""

import ast
import json
import os
import shutil
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from logging_config import get_logger

logger = get_logger(__name__)

# Allow overriding the settings file location via environment variable
if getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

SETTINGS_FILE = Path(os.getenv("RADIO_TRACK_ID_SETTINGS_FILE", str(ROOT_DIR / "settings.json")))

DEFAULT_ENCODINGS = ["audio/webm;codecs=opus", "audio/webm", "audio/mp4", "audio/wav"]


def _parse_list(raw: str) -> list:
    """Parse "['a', 'b']" or "a, b" (env var style). MIME types never contain commas."""
    raw = raw.strip()
    try:
        parsed = ast.literal_eval(raw)
    except (ValueError, SyntaxError):
        parsed = None
    if isinstance(parsed, (list, tuple)):
        return list(parsed)
    items = (item.strip().strip("'\"") for item in raw.strip("[]").split(','))
    return [item for item in items if item]


@dataclass
class Setting:
    """One entry of the settings schema"""
    name: str
    type: type
    default: Any
    requires_restart: bool = False
    category: Optional[str] = None
    description: Optional[str] = None
    min_val: Optional[float] = None
    max_val: Optional[float] = None

    def validate_and_convert(self, value: Any) -> Any:
        """Coerce value to this setting's type; anything invalid or out of range yields the default."""
        if self.type == bool and isinstance(value, str):
            return value.strip().lower() in ('true', '1', 'yes', 'on')

        if self.type == list:
            if isinstance(value, (list, tuple)):
                return list(value)
            return _parse_list(value) if isinstance(value, str) else self.default

        try:
            converted = self.type(value)
        except (ValueError, TypeError):
            logger.warning(f"Setting '{self.name}' has invalid value {value!r}, using default")
            return self.default

        out_of_range = (
            (self.min_val is not None and converted < self.min_val)
            or (self.max_val is not None and converted > self.max_val)
        )
        if out_of_range:
            logger.warning(f"Setting '{self.name}' out of range [{self.min_val}, {self.max_val}]: {converted}, using default")
            return self.default
        return converted

    def describe(self, value: Any) -> Dict[str, Any]:
        """Schema entry plus current value, as served by the settings API"""
        return {
            "value": value,
            "name": self.name,
            "description": self.description,
            "type": self.type.__name__,
            "requires_restart": self.requires_restart,
            "min": self.min_val,
            "max": self.max_val,
        }


class SettingsManager:
    def __init__(self, settings_file: Path = SETTINGS_FILE):
        self.settings_file = Path(settings_file)
        self._settings: Dict[str, Any] = {}

        self._definitions = {
            # Debug
            "debug.enabled": Setting("Debug Mode", bool, False, True, "Debug", "Enable debug features"),
            "debug.log_file": Setting("Log File", str, "radio_track_id.log", True, "Debug", "Log file name"),
            "debug.log_level": Setting("Log Level", str, "INFO", True, "Debug", "Logging verbosity"),
            "debug.log_recognition": Setting("Log Recognition", bool, True, False, "Debug", "Log recognition backend requests"),

            # Server
            "server.port": Setting("Port", int, 9015, True, "Server", "Server port", min_val=1, max_val=65535),
            "server.host": Setting("Host", str, "0.0.0.0", True, "Server", "Bind address"),

            # Stream
            "stream.url": Setting("Stream URL", str, "https://streaming.shoutcast.com/dhr", True, "Stream", "Live radio stream to monitor"),
            "stream.audio_output": Setting("Audio Output", bool, True, True, "Stream", "Play the stream on the local sound device"),
            "stream.initial_volume": Setting("Initial Volume", float, 0.7, False, "Stream", "Volume on start (0-1)", 0.0, 1.0),
            "stream.connect_timeout": Setting("Connect Timeout", float, 10.0, False, "Stream", "Seconds to wait for the first audio", 1.0, 60.0),

            # Identification
            "identify.auto_identify": Setting("Auto Identify", bool, True, False, "Identify", "Identify periodically while playing"),
            "identify.record_seconds": Setting("Recording Window", float, 20.0, True, "Identify", "Seconds of audio per attempt", 14.0, 30.0),
            "identify.tick_interval_seconds": Setting("Auto Interval", float, 60.0, True, "Identify", "Seconds between automatic attempts", 30.0, 60.0),
            "identify.preferred_encodings": Setting("Encodings", list, DEFAULT_ENCODINGS, True, "Identify", "Container preference order"),
            "identify.min_sample_bytes": Setting("Minimum Sample", int, 5000, True, "Identify", "Smallest sample worth submitting (bytes)", 0),
            "identify.dedup_window_seconds": Setting("Duplicate Window", float, 7200.0, True, "Identify", "Suppress repeats within this window (s)", 0.0),
            "identify.history_limit": Setting("History Size", int, 50, True, "Identify", "Tracks kept in history", 1),
            "identify.status_clear_seconds": Setting("Status Timeout", float, 3.0, False, "Identify", "Seconds before transient status clears", 0.5, 30.0),

            # Recognition backends
            "shazam.enabled": Setting("Shazam Fallback", bool, True, True, "Recognition", "Use Shazam when ACRCloud misses"),
            "acrcloud.daily_limit": Setting("ACRCloud Daily Limit", int, 1000, False, "Recognition", "Max requests per day (0 = unlimited)", 0),
            "artwork.enabled": Setting("Artwork Lookup", bool, True, False, "Recognition", "Fill missing cover art from iTunes"),
            "artwork.size": Setting("Artwork Size", int, 600, False, "Recognition", "Cover art edge length (px)", 100, 3000),

            # Features
            "features.track_identification": Setting("Track Identification", bool, True, True, "Features", "Subscriber access to identification"),
        }

        self.load_settings()

    def load_settings(self) -> None:
        """Load settings from JSON, fall back to defaults"""
        self._settings = {}

        for key, definition in self._definitions.items():
            self._settings[key] = definition.default

        if not self.settings_file.exists():
            return

        try:
            with open(self.settings_file, 'r') as f:
                saved = json.load(f)
            for key, val in saved.items():
                if key in self._definitions:
                    self._settings[key] = self._definitions[key].validate_and_convert(val)
                else:
                    # Unknown keys are kept as-is
                    self._settings[key] = val
        except Exception as e:
            logger.error(f"Failed to load {self.settings_file.name}: {e} - resetting to defaults")
            backup_path = self.settings_file.with_suffix('.json.corrupted')
            try:
                shutil.copy2(self.settings_file, backup_path)
                logger.info(f"Backed up corrupted settings to {backup_path}")
            except OSError as copy_error:
                logger.warning(f"Could not back up corrupted settings: {copy_error}")
            for key, definition in self._definitions.items():
                self._settings[key] = definition.default
            self.save_to_config()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value.
        Priority:
        1. Loaded value (from JSON or Schema Default)
        2. Provided 'default' argument (if key unknown)
        """
        if key in self._settings:
            return self._settings[key]
        return default

    def is_known(self, key: str) -> bool:
        return key in self._definitions

    def convert(self, key: str, value: Any) -> Any:
        """Convert a raw value (e.g. an env var string) to the setting's type."""
        definition = self._definitions.get(key)
        if definition is None:
            return value
        return definition.validate_and_convert(value)

    def set(self, key: str, value: Any) -> bool:
        """Set a known setting. Returns True when the change needs a restart."""
        if key not in self._definitions:
            raise KeyError(key)

        setting = self._definitions[key]
        self._settings[key] = setting.validate_and_convert(value)
        return setting.requires_restart

    def save_to_config(self) -> None:
        """Save current memory settings to JSON file"""
        # Unique temp name so concurrent saves never share a file
        temp_path = self.settings_file.parent / f"settings_{uuid.uuid4().hex}.json.tmp"
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w') as f:
                json.dump(self._settings, f, indent=4, sort_keys=True)
            os.replace(temp_path, self.settings_file)
        except Exception as e:
            logger.error(f"Failed to save settings: {e}")
            if temp_path.exists():
                temp_path.unlink()

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        """Current values with their schema, grouped by category"""
        grouped: Dict[str, Dict[str, Any]] = {}
        for key, definition in self._definitions.items():
            category = definition.category or "Misc"
            grouped.setdefault(category, {})[key] = definition.describe(self._settings.get(key, definition.default))
        return grouped

    def reset_to_defaults(self):
        if self.settings_file.exists():
            self.settings_file.unlink()
        self.load_settings()


settings = SettingsManager()
