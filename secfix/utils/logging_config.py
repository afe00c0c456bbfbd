"""
Logging Setup
=============
Console output is colourised by level; the optional file handler keeps the
same layout without escape codes. Colours are dropped when stderr is not a
terminal (CI logs, piped CLI output).
"""
import logging
import sys
import os
from datetime import datetime

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_RESET = "\x1b[0m"
_LEVEL_COLOURS = {
    logging.DEBUG: "\x1b[36m",       # cyan
    logging.INFO: "\x1b[32m",        # green
    logging.WARNING: "\x1b[33m",     # yellow
    logging.ERROR: "\x1b[31m",       # red
    logging.CRITICAL: "\x1b[31;1m",  # bold red
}


class ColoredFormatter(logging.Formatter):
    """LOG_FORMAT wrapped in the colour of the record's level."""

    def __init__(self, use_colour: bool = True) -> None:
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)
        self.use_colour = use_colour

    def format(self, record):
        text = super().format(record)
        colour = _LEVEL_COLOURS.get(record.levelno) if self.use_colour else None
        return f"{colour}{text}{_RESET}" if colour else text


def setup_logging(level=logging.INFO, log_dir: str = "logs", to_file: bool = True):
    """Install the console handler (stderr) and, when ``to_file``, a dated file under ``log_dir``."""
    root_logger = logging.getLogger()

    # Repeated calls (CLI + tests) must not stack handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter(use_colour=sys.stderr.isatty()))
    root_logger.addHandler(console_handler)

    if to_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(
            os.path.join(log_dir, f"secfix_{datetime.now().strftime('%Y%m%d')}.log")
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for logger_name in ["secfix", "uvicorn", "uvicorn.error", "uvicorn.access", "main"]:
        named = logging.getLogger(logger_name)
        named.setLevel(level)
        named.propagate = True

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    root_logger.info("Logging initialized (console%s).", " + file" if to_file else "")
