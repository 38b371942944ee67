"""
Logging utilities for the shop archiver.

Console output goes through rich; an optional plain log file can be attached.
"""

import logging
from typing import Dict, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)


ROOT_LOGGER = "shop_archiver"

# Shared console so progress bars and log lines do not interleave
console = Console()

_loggers: Dict[str, logging.Logger] = {}
_level = logging.INFO
_log_file: Optional[str] = None


def setup_logger(
    name: str = ROOT_LOGGER,
    level: int = logging.INFO,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up and configure a logger writing to the rich console.

    Calling it on the root package logger also sets the level and log file
    used for every logger created afterwards by get_logger().

    Args:
        name: Logger name
        level: Logging level (default: INFO)
        log_file: Optional file path to write logs

    Returns:
        Configured logger instance
    """
    global _level, _log_file

    if name == ROOT_LOGGER:
        _level = level
        _log_file = log_file
        for existing in list(_loggers.values()):
            if existing.name != ROOT_LOGGER:
                existing.setLevel(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()

    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True
    )
    console_handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    _loggers[name] = logger
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get or create a named logger.

    Args:
        name: Logger name (e.g. "capture", "discovery", "server")

    Returns:
        Logger instance
    """
    if name not in _loggers:
        return setup_logger(name, level=_level, log_file=_log_file)
    return _loggers[name]


def create_progress() -> Progress:
    """Create a rich progress bar bound to the shared console."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True
    )


def print_status(message: str, style: str = "bold blue") -> None:
    """
    Print a styled status message.

    Args:
        message: Message to print
        style: Rich style string
    """
    console.print(message, style=style, highlight=False)


def print_error(message: str) -> None:
    print_status(f"❌ {message}", "bold red")


def print_success(message: str) -> None:
    print_status(f"✅ {message}", "bold green")


def print_warning(message: str) -> None:
    print_status(f"⚠️ {message}", "bold yellow")


def print_info(message: str) -> None:
    print_status(f"ℹ️ {message}", "bold cyan")
