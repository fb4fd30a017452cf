"""Root logger setup for the rescoord CLI.

The CLI callback calls setup_logging once per invocation. The level comes
from `logging.level` (WARNING unless configured) and `--verbose` forces
DEBUG. Console records go through rich by default; `logging.rich: false`
switches to plain stdout lines for piped or scheduled runs. `logging.file`
adds a plain-text file handler.

Component loggers log construction and clears at INFO.
Per-operation detail such as hits and evictions is DEBUG.
Failed batches and unreachable storage are WARNING; a retry that gives up
is ERROR.
"""

import logging
import sys
from typing import Optional

from rich.logging import RichHandler

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_LOG_FILE = None

def setup_logging(
    log_level: int = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = DEFAULT_LOG_FILE,
    rich_console: bool = False,
) -> None:
    """Configures the root logger for the application.

    Args:
        log_level: The minimum logging level (e.g., logging.DEBUG, logging.INFO).
        log_format: The format string for log messages.
        log_file: Optional path to a file for logging output.
        rich_console: Render console records with rich instead of plain text.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers attached to the root logger
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(log_format)

    console_handler: logging.Handler
    if rich_console:
        # rich renders time and level itself
        console_handler = RichHandler(rich_tracebacks=True, show_path=False)
        console_handler.setFormatter(logging.Formatter('%(name)s - %(message)s'))
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            logging.info(f"Logging to file: {log_file}")
        except OSError as e:
            logging.error(f"Failed to set up file logging to {log_file}: {e}", exc_info=True)

    logging.info(f"Logging configured. Level={logging.getLevelName(log_level)}")

def level_from_name(name: str) -> int:
    """Maps a level name such as 'debug' to its logging constant (INFO if unknown)."""
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else DEFAULT_LOG_LEVEL
