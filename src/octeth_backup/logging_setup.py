"""
Logging configuration.

Every run logs timestamped, leveled lines to stderr (through rich) and to
the persistent log file, so a failed run leaves a durable record even when
notifications cannot be delivered.
"""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def configure_logging(
    log_file: Path | None = None,
    verbose: bool = False,
    quiet: bool = False,
) -> None:
    """
    Configure the package logger.

    Args:
        log_file: Persistent log file, created with its parent directory
        verbose: Emit DEBUG records on the console
        quiet: Only emit errors on the console
    """
    root = logging.getLogger("octeth_backup")
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console_level = logging.DEBUG if verbose else logging.INFO
    if quiet:
        console_level = logging.ERROR

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        log_time_format=f"[{DATE_FORMAT}]",
    )
    console_handler.setLevel(console_level)
    root.addHandler(console_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot write log file {log_file}: {e}")
        else:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
            file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
            root.addHandler(file_handler)
