"""
Logging formatters for the Zabbix agent installer.

The run log gets UTC timestamps in square brackets; the console gets a
coloured level tag when attached to a terminal.
"""

import datetime
import logging

# Between INFO (20) and WARNING (30); used for completed stages
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

_RESET = "\033[0m"
_LEVEL_COLOURS = {
    logging.DEBUG: "\033[0;34m",
    logging.INFO: "\033[0;34m",
    SUCCESS: "\033[0;32m",
    logging.WARNING: "\033[1;33m",
    logging.ERROR: "\033[0;31m",
    logging.CRITICAL: "\033[0;31m",
}


class UTCTimestampFormatter(logging.Formatter):
    """
    Custom logging formatter that adds UTC timestamps in square brackets.

    Format: [YYYY-MM-DD HH:MM:SS.sss UTC] LEVEL: message
    """

    def format(self, record):
        utc_now = datetime.datetime.now(datetime.timezone.utc)
        timestamp = utc_now.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        original_message = super().format(record)

        return f"[{timestamp} UTC] {original_message}"


class ConsoleFormatter(logging.Formatter):
    """Formats console lines as "[LEVEL] message", optionally coloured."""

    def __init__(self, use_colour: bool = True):
        super().__init__("%(message)s")
        self.use_colour = use_colour

    def format(self, record):
        message = super().format(record)
        tag = f"[{record.levelname}]"
        if self.use_colour:
            colour = _LEVEL_COLOURS.get(record.levelno, "")
            if colour:
                tag = f"{colour}{tag}{_RESET}"
        return f"{tag} {message}"
