"""Logging configuration for rotbackup.

This module provides logging setup for the backup tool: a console handler,
an optional rotating log file with gzip compression of rotated files, and
RunLog, a handler that collects the log of a single run for the report mail.
"""

import gzip
import logging
import os
import shutil
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from rotbackup.config import LoggingConfig


# Logger name for the rotbackup package
LOGGER_NAME = "rotbackup"

# Default rotation settings
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB

# Valid log levels
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Severity names used in report subjects, most severe first
REPORT_LEVEL_NAMES = [
    (logging.CRITICAL, "FATAL"),
    (logging.ERROR, "ERROR"),
    (logging.WARNING, "WARN"),
]


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


class GzipRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that compresses rotated files with gzip.

    Rotated files are named with a .gz extension.
    """

    def rotation_filename(self, default_name: str) -> str:
        return default_name + ".gz"

    def rotate(self, source: str, dest: str) -> None:
        """
        Compress the source file into dest and remove the source.

        Falls back to a plain rename if compression fails.
        """
        if not os.path.exists(source):
            return

        try:
            with open(source, 'rb') as f_in:
                with gzip.open(dest, 'wb') as f_out:
                    shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError:
            if os.path.exists(source):
                fallback_dest = dest[:-3] if dest.endswith('.gz') else dest
                os.replace(source, fallback_dest)


class RunLog(logging.Handler):
    """
    Collects the formatted log records of one run in memory.

    Attach with start(), read with output() and detach with close(). The
    highest severity seen is kept for the report subject.
    """

    def __init__(self, level: int = logging.DEBUG):
        super().__init__(level)
        self.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        self._lines: List[str] = []
        self._max_level = logging.NOTSET
        self._logger: Optional[logging.Logger] = None

    @classmethod
    def start(
        cls,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG,
    ) -> "RunLog":
        """Create a RunLog and attach it to logger (the rotbackup logger by default)."""
        run_log = cls(level)
        run_log._logger = logger or get_logger()
        run_log._logger.addHandler(run_log)
        return run_log

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._lines.append(self.format(record))
        except Exception:
            self.handleError(record)
            return
        self._max_level = max(self._max_level, record.levelno)

    def output(self) -> str:
        """Return everything collected so far, one record per line."""
        return "\n".join(self._lines) + ("\n" if self._lines else "")

    @property
    def max_level(self) -> int:
        return self._max_level

    def max_level_name(self) -> str:
        """Return FATAL, ERROR, WARN or INFO for the most severe record."""
        for level, name in REPORT_LEVEL_NAMES:
            if self._max_level >= level:
                return name
        return "INFO"

    def reset(self) -> None:
        self.acquire()
        try:
            self._lines = []
            self._max_level = logging.NOTSET
        finally:
            self.release()

    def close(self) -> None:
        if self._logger is not None:
            self._logger.removeHandler(self)
            self._logger = None
        super().close()


def _ensure_log_directory(log_path: Path) -> None:
    """Ensure the parent directory for a log file exists."""
    log_dir = log_path.parent
    if not log_dir.exists():
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoggingError(f"Failed to create log directory {log_dir}: {e}")


def _get_log_level(level_str: str) -> int:
    """Convert log level string to logging constant."""
    level_str = level_str.upper()
    if level_str not in VALID_LOG_LEVELS:
        raise LoggingError(
            f"Invalid log level '{level_str}'. Must be one of: "
            f"{', '.join(sorted(VALID_LOG_LEVELS))}"
        )
    return getattr(logging, level_str)


def setup_logging(
    config: Optional[LoggingConfig] = None,
    level: Optional[str] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure logging for rotbackup.

    Sets up logging with:
    - A rotating file handler (if a log file is configured), with gzip
      compression of rotated files
    - Console output on stderr

    Args:
        config: LoggingConfig with settings; defaults are used if omitted
        level: Overrides the configured level (e.g. "DEBUG" for --debug)
        console: Whether to log to the console

    Returns:
        Configured logger instance

    Raises:
        LoggingError: If log directory cannot be created or level is invalid
    """
    if config is None:
        config = LoggingConfig(log_file=None)

    log_level = _get_log_level(level or config.level)

    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        if not isinstance(handler, RunLog):
            logger.removeHandler(handler)
            handler.close()

    # Allow all levels, handlers filter
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if config.log_file is not None:
        log_file = Path(os.path.expanduser(str(config.log_file)))
        _ensure_log_directory(log_file)

        try:
            file_handler = GzipRotatingFileHandler(
                log_file,
                maxBytes=config.log_max_bytes or DEFAULT_MAX_BYTES,
                backupCount=config.log_backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            raise LoggingError(f"Failed to open log file {log_file}: {e}")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger() -> logging.Logger:
    """
    Get the rotbackup logger instance.

    Module loggers (rotbackup.snapshot etc.) are children of it.
    """
    return logging.getLogger(LOGGER_NAME)
