"""
Radio Track ID Configuration Loader
Loads values from settings.json via the settings manager.
"""
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

from settings import settings

# ==========================================
# Path Configuration
# ==========================================
if getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

# ==========================================
# Version
# ==========================================
VERSION = "1.0.0"

# Only load .env if it exists
env_file = ROOT_DIR / '.env'
if env_file.exists():
    load_dotenv(env_file)


# Helper to prefer Env Var > Settings JSON > Default
def conf(key, default=None):
    # 1. Env Var (highest priority - good for docker/dev)
    env_val = os.getenv(key.upper().replace('.', '_'))
    if env_val is not None:
        return settings.convert(key, env_val)

    # 2. Settings JSON
    json_val = settings.get(key)
    if json_val is not None:
        return json_val

    # 3. Default
    return default


# ==========================================
# EXPORTED CONFIG DICTS
# ==========================================

DEBUG = {
    "enabled": conf("debug.enabled", False),
    "log_file": conf("debug.log_file", "radio_track_id.log"),
    "log_level": conf("debug.log_level", "INFO"),
    "log_recognition": conf("debug.log_recognition", True),
}

SERVER = {
    "port": conf("server.port", 9015),
    "host": conf("server.host", "0.0.0.0"),
}

STREAM = {
    "url": conf("stream.url", "https://streaming.shoutcast.com/dhr"),
    "ffmpeg_path": os.getenv("FFMPEG_PATH", "ffmpeg"),
    "sample_rate": 44100,
    "channels": 2,
    "audio_output": conf("stream.audio_output", True),
    "output_device": os.getenv("AUDIO_OUTPUT_DEVICE"),  # None = system default
    "initial_volume": conf("stream.initial_volume", 0.7),
    "connect_timeout": conf("stream.connect_timeout", 10.0),
}

IDENTIFY = {
    "auto_identify": conf("identify.auto_identify", True),
    "record_seconds": conf("identify.record_seconds", 20.0),
    "tick_interval_seconds": conf("identify.tick_interval_seconds", 60.0),
    "preferred_encodings": conf("identify.preferred_encodings"),
    "min_sample_bytes": conf("identify.min_sample_bytes", 5000),
    "dedup_window_seconds": conf("identify.dedup_window_seconds", 7200.0),
    "history_limit": conf("identify.history_limit", 50),
    "status_clear_seconds": conf("identify.status_clear_seconds", 3.0),
}

# Credentials are read from the environment only (.env), never settings.json
ACRCLOUD = {
    "host": os.getenv("ACRCLOUD_HOST", "identify-eu-west-1.acrcloud.com"),
    "access_key": os.getenv("ACRCLOUD_ACCESS_KEY"),
    "access_secret": os.getenv("ACRCLOUD_ACCESS_SECRET"),
    "timeout": 10,
    "daily_limit": conf("acrcloud.daily_limit", 1000),
}

SHAZAM = {
    "enabled": conf("shazam.enabled", True),
}

ARTWORK = {
    "enabled": conf("artwork.enabled", True),
    "size": conf("artwork.size", 600),
    "timeout": 5,
    "search_url": "https://itunes.apple.com/search",
}

FEATURES = {
    # Subscriber-tier precondition, consumed as a plain flag
    "track_identification": conf("features.track_identification", True),
    "search_url_template": "https://www.google.com/search?q={query}",
}
