"""
Centralized logging setup for the RoomCall client.

Every record goes through the ``roomcall`` logger tree: module-level code
uses :func:`debug_log`, classes mix in :class:`LoggerMixin` and log under
``roomcall.<ClassName>``. The WebRTC and websocket libraries are very chatty
at DEBUG, so they stay at WARNING unless ``ROOMCALL_LIBRARY_DEBUG`` is set.
"""
import logging
import datetime
import json
import os
import sys
import tempfile
from typing import Any, Optional


ROOT_LOGGER = "roomcall"
DEFAULT_LOG_FILE = "roomcall_client.log"

# Third-party loggers kept at WARNING by default
LIBRARY_LOGGERS = ("aioice", "aiortc", "websockets", "libav")


def _resolve_log_dir() -> Optional[str]:
    """First writable directory among $ROOMCALL_LOG_DIR and the temp dir, or None."""
    candidates = [
        os.environ.get("ROOMCALL_LOG_DIR"),
        os.path.join(tempfile.gettempdir(), "roomcall-logs"),
    ]

    for directory in candidates:
        if not directory:
            continue
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError:
            continue
        if os.access(directory, os.W_OK):
            return directory
    return None


def _level(name: str) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Setup console logging plus a best-effort log file; returns the ``roomcall`` logger."""
    handlers = [logging.StreamHandler()]

    log_dir = _resolve_log_dir()
    log_path = None
    if log_dir is not None:
        log_path = os.path.join(log_dir, log_file or os.environ.get("ROOMCALL_LOG_FILE", DEFAULT_LOG_FILE))
        try:
            handlers.append(logging.FileHandler(log_path, mode='a', encoding='utf-8'))
        except OSError as e:
            print(f"WARNING: Cannot write to log file {log_path}: {e}", file=sys.stderr)
            log_path = None

    logging.basicConfig(
        level=_level(level),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S',
        handlers=handlers
    )

    if not os.environ.get("ROOMCALL_LIBRARY_DEBUG"):
        for name in LIBRARY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(_level(level))
    logger.info(f"Logging initialized - output will be written to: {log_path or 'console only'}")
    return logger


def format_record(message: str, data: Optional[Any] = None) -> str:
    """Render a message with its optional structured data (dicts as indented JSON)."""
    timestamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
    if not data:
        return f"[{timestamp}] {message}"
    if isinstance(data, dict):
        return f"[{timestamp}] {message}\nData: {json.dumps(data, indent=2, default=str)}"
    return f"[{timestamp}] {message} - {data}"


def debug_log(message: str, data: Optional[Any] = None, level: str = "INFO",
              logger: Optional[logging.Logger] = None) -> None:
    """
    Structured logging helper.

    Args:
        message: The log message, conventionally ``"<emoji> [Component] text"``
        data: Optional data to log (dicts are pretty printed)
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        logger: Logger to use, defaults to the ``roomcall`` logger
    """
    target = logger or logging.getLogger(ROOT_LOGGER)
    log_level = _level(level)
    if target.isEnabledFor(log_level):
        target.log(log_level, format_record(message, data))


class LoggerMixin:
    """Mixin class giving each component its own ``roomcall.<ClassName>`` logger."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.logger = logging.getLogger(f"{ROOT_LOGGER}.{self.__class__.__name__}")

    def log_debug(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "DEBUG", logger=self.logger)

    def log_info(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "INFO", logger=self.logger)

    def log_warning(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "WARNING", logger=self.logger)

    def log_error(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "ERROR", logger=self.logger)
