"""
Run-log and console logging setup for the Zabbix agent installer.
"""

import logging
import os
import sys
import tempfile
from datetime import datetime
from typing import Optional

from src.zabbix_installer.utils.logging_formatter import (
    SUCCESS,
    ConsoleFormatter,
    UTCTimestampFormatter,
)


def default_log_file(timestamp: Optional[datetime] = None) -> str:
    """Timestamped run log path under the system temp directory."""
    timestamp = timestamp or datetime.now()
    return os.path.join(
        tempfile.gettempdir(),
        f"zabbix_install_{timestamp.strftime('%Y%m%d_%H%M%S')}.log",
    )


def setup_logging(debug: bool = False, log_file: Optional[str] = None) -> str:
    """
    Route all installer logging to the run log and the console.

    Returns the path of the run log.
    """
    log_file = log_file or default_log_file()
    level = logging.DEBUG if debug else logging.INFO

    # Clear any existing handlers to prevent double logging
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(UTCTimestampFormatter("%(levelname)s: %(message)s"))
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter(use_colour=sys.stderr.isatty()))
    root_logger.addHandler(console_handler)

    root_logger.setLevel(level)

    # aiohttp is chatty at DEBUG and adds nothing to the run log
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    return log_file


def log_success(logger: logging.Logger, msg: str, *args) -> None:
    """Log a completed stage at the SUCCESS level."""
    logger.log(SUCCESS, msg, *args)
