"""
Logging setup for Radio Track ID.

Console output stays short; the rotating file under LOGS_DIR gets the full
record with logger name and timestamp. Every module just calls
get_logger(__name__); the entry point calls setup_logging() once.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

if getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.argv[0]).parent
else:
    ROOT_DIR = Path(__file__).parent

# Logs can live outside the install dir (containers mount a volume there)
LOGS_DIR = Path(os.getenv("RADIO_TRACK_ID_LOGS_DIR", str(ROOT_DIR / "logs")))
DEFAULT_LOG_FILE = "radio_track_id.log"

CONSOLE_FORMAT = '%(levelname)s [%(name)s] %(message)s'
FILE_FORMAT = '%(asctime)s %(levelname)-8s %(name)s:%(lineno)d - %(message)s'

LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUP_COUNT = 10

# Loggers that talk to the recognition services (one line per request)
RECOGNITION_LOGGERS = ("track_id.acrcloud", "track_id.shazam", "track_id.artwork", "track_id.client")

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("urllib3", "hypercorn.access", "hypercorn.error", "asyncio", "shazamio")

_logging_initialized = False


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    console: bool = True,
    log_file: Optional[str] = None,
    log_recognition: bool = True
) -> None:
    """
    Configure the root logger. Safe to call more than once; only the first
    call has any effect.

    Args:
        console_level: Level for stdout
        file_level: Level for the rotating log file
        console: Disable to log to the file only (service mode)
        log_file: File name inside LOGS_DIR
        log_recognition: When False, recognition backends only log warnings
    """
    global _logging_initialized
    if _logging_initialized:
        return

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_path = LOGS_DIR / (log_file or DEFAULT_LOG_FILE)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers = []

    if console:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setLevel(_level(console_level))
        stream_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root_logger.addHandler(stream_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding='utf-8'
    )
    file_handler.setLevel(_level(file_level))
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    root_logger.addHandler(file_handler)

    if not log_recognition:
        for name in RECOGNITION_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logging_initialized = True
    root_logger.info(f"Logging ready (console: {console_level if console else 'off'}, file: {file_level})")
    root_logger.debug(f"Writing log file to {log_path}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name"""
    return logging.getLogger(name)
