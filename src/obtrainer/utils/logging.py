"""
Logging configuration for scripts and long-running services.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional, Union
import logging
import sys

CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(name)s | %(levelname)s | %(message)s'


def setup_logging(
    output_dir: Optional[Union[str, Path]] = None,
    log_level: str = "INFO",
    prefix: str = "train",
) -> Optional[Path]:
    """
    Configure logging to console and (optionally) a timestamped file.

    Args:
        output_dir: Directory whose `logs/` subdirectory receives the log file.
            None logs to console only.
        log_level: Console level name (DEBUG, INFO, ...).
        prefix: Log file name prefix.

    Returns:
        Path of the log file, or None.

    Raises:
        ValueError: If log_level is not a logging level name.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, '%H:%M:%S'))

    logging.root.setLevel(logging.DEBUG)
    logging.root.addHandler(console_handler)

    log_file = None
    if output_dir is not None:
        log_dir = Path(output_dir) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"{prefix}_{timestamp}.log"

        # Always log everything to file
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logging.root.addHandler(file_handler)
        logging.info(f"Logging to {log_file}")

    return log_file
