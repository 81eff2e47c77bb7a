"""
Logging utilities with custom formatters for time tracking.

This module provides utilities for logging with time-from-app-start tracking
and a per-process surface name, so lines written by the control, output and
presenter processes into the shared log file can be told apart.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s - %(app_time)s - [%(surface)s] %(name)s - %(levelname)s - %(message)s"

NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "fastapi",
    "uvicorn.protocols.websockets",
    "websockets",
)


class AppTimeFormatter(logging.Formatter):
    """Custom formatter that includes time from application start."""

    def __init__(
        self, fmt: Optional[str] = None, datefmt: Optional[str] = None, app_start_time: Optional[float] = None
    ):
        """
        Initialize the formatter.

        Args:
            fmt: Log format string
            datefmt: Date format string
            app_start_time: Application start time (time.time()). If None, uses current time.
        """
        super().__init__(fmt, datefmt)
        self.app_start_time = app_start_time or time.time()

    def format(self, record):
        """Format the log record with app start time."""
        elapsed_seconds = max(0.0, record.created - self.app_start_time)

        # mm:ss.xxx
        minutes = int(elapsed_seconds // 60)
        seconds = elapsed_seconds % 60
        record.app_time = f"{minutes:02d}:{seconds:06.3f}"

        if not hasattr(record, "surface"):
            record.surface = "-"

        return super().format(record)


class SurfaceContextFilter(logging.Filter):
    """Stamp every record with the name of the surface process that emitted it."""

    def __init__(self, surface: str):
        super().__init__()
        self.surface = surface

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "surface"):
            record.surface = self.surface
        return True


# Global app start time - set when logging is first configured
_app_start_time: Optional[float] = None


def get_app_start_time() -> float:
    """Get the application start time."""
    global _app_start_time
    if _app_start_time is None:
        _app_start_time = time.time()
    return _app_start_time


def set_app_start_time(start_time: float) -> None:
    """Set the application start time."""
    global _app_start_time
    _app_start_time = start_time


def create_app_time_formatter(fmt: Optional[str] = None, datefmt: Optional[str] = None) -> AppTimeFormatter:
    """
    Create a formatter with app start time tracking.

    Args:
        fmt: Log format string. If None, uses default with app_time and surface fields.
        datefmt: Date format string

    Returns:
        AppTimeFormatter instance
    """
    if fmt is None:
        fmt = DEFAULT_FORMAT

    return AppTimeFormatter(fmt=fmt, datefmt=datefmt, app_start_time=get_app_start_time())


def setup_process_logging(
    surface: str,
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False,
    console_level: int = logging.WARNING,
    app_start_time: Optional[float] = None,
) -> logging.Logger:
    """
    Configure the root logger of a process.

    Console output is limited to ``console_level``; the log file (if any)
    receives everything at DEBUG or INFO. Child processes call this again
    after fork/spawn with their own surface name and the parent's start time.

    Returns:
        The configured root logger
    """
    if app_start_time is not None:
        set_app_start_time(app_start_time)

    formatter = create_app_time_formatter()
    context = SurfaceContextFilter(surface)

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(console_level)
    console_handler.addFilter(context)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(context)
        root_logger.addHandler(file_handler)

    # Reduce noise from some modules
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
