"""Centralized logging configuration.

Each process gets its own log files:
- {log_dir}/{process}.log (+ .YYYY-MM-DD rotations)

Usage in each process entry point:
    from .logging_config import setup_process_logging
    setup_process_logging("session-build")

Then in any module:
    from .logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("Hello")

Session processes run inside a tmux pane, so they log to files only;
anything written to their stderr would land on the user's screen.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler

from .config import log_dir

# Track which process we're in (set by setup_process_logging)
_current_process: str | None = None


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def setup_process_logging(
    process_name: str,
    level: int = logging.INFO,
    console: bool = True,
    file: bool = True,
) -> logging.Logger:
    """
    Set up logging for a shell-canvas process.

    Call this ONCE at the entry point of each process:
    - cli show   -> setup_process_logging(f"session-{id}", console=False)
    - cli others -> setup_process_logging("cli", level=logging.WARNING, file=False)

    Args:
        process_name: Process identifier (e.g. "session-build", "cli")
        level: Minimum log level (default INFO)
        console: Whether to log to stderr
        file: Whether to log to rotating files

    Returns:
        Root logger for this process
    """
    global _current_process
    _current_process = process_name

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    # Format: [HH:MM:SS] [process] [LEVEL] module: message
    console_fmt = logging.Formatter(
        fmt=f"[%(asctime)s] [{process_name}] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    file_fmt = logging.Formatter(
        fmt=f"[%(asctime)s] [{process_name}] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if console:
        console_handler = FlushingStreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(console_fmt)
        root.addHandler(console_handler)

    if file:
        directory = log_dir()
        directory.mkdir(parents=True, exist_ok=True)

        # Daily rotation, 14 days of history
        daily_handler = TimedRotatingFileHandler(
            directory / f"{process_name}.log",
            when="midnight",
            interval=1,
            backupCount=14,
            encoding="utf-8",
        )
        daily_handler.setLevel(level)
        daily_handler.setFormatter(file_fmt)
        daily_handler.suffix = "%Y-%m-%d"
        root.addHandler(daily_handler)

        # Size cap for a single chatty session: 5MB x 5
        size_handler = RotatingFileHandler(
            directory / f"{process_name}-current.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        size_handler.setLevel(level)
        size_handler.setFormatter(file_fmt)
        root.addHandler(size_handler)

    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Call at module level: logger = get_logger(__name__)

    Until setup_process_logging() runs, records go to the default
    last-resort handler.
    """
    return logging.getLogger(name)
