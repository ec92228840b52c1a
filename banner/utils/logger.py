#!/usr/bin/env python3
"""
Banner logging setup.

Console output mirrors the shell installer: every line is prefixed with
a colored [INFO], [WARN], [ERROR] or [SUCCESS] tag. The optional log file
gets plain timestamped lines.
"""
import os
import sys
import logging
from logging.handlers import RotatingFileHandler

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

logger = logging.getLogger("banner")
file_formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

COLORS = {
    "RED": "\033[0;31m",
    "GREEN": "\033[0;32m",
    "YELLOW": "\033[0;33m",
    "BLUE": "\033[0;34m",
    "RESET": "\033[0m",
}

LEVEL_TAGS = {
    logging.DEBUG: ("DEBUG", "BLUE"),
    logging.INFO: ("INFO", "BLUE"),
    SUCCESS: ("SUCCESS", "GREEN"),
    logging.WARNING: ("WARN", "YELLOW"),
    logging.ERROR: ("ERROR", "RED"),
    logging.CRITICAL: ("ERROR", "RED"),
}


class ConsoleFormatter(logging.Formatter):
    """Formats records as ``[TAG] message`` with optional ANSI colors."""

    def __init__(self, color=True):
        super().__init__('%(message)s')
        self.color = color

    def format(self, record):
        message = super().format(record)
        tag, color = LEVEL_TAGS.get(record.levelno, (record.levelname, "RESET"))
        if self.color:
            return f"{COLORS[color]}[{tag}]{COLORS['RESET']} {message}"
        return f"[{tag}] {message}"


class LevelRangeFilter(logging.Filter):
    """Passes records whose level is below ``upper``."""

    def __init__(self, upper):
        super().__init__()
        self.upper = upper

    def filter(self, record):
        return record.levelno < self.upper


def success(log, msg, *args, **kwargs):
    """Log ``msg`` at the SUCCESS level."""
    log.log(SUCCESS, msg, *args, **kwargs)


def colorize(text, color, enabled=True):
    if not enabled:
        return text
    return f"{COLORS[color]}{text}{COLORS['RESET']}"


def use_color(stream=None, no_color=False):
    stream = stream or sys.stdout
    if no_color or os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def setup_logging(verbose=False, quiet=False, log_file=None, no_color=False,
                  stdout=None, stderr=None):
    """Configure the ``banner`` logger for a CLI run.

    Info and success go to stdout, warnings and errors to stderr. A file
    handler is added when ``log_file`` is writable; failure to open it is
    reported once and otherwise ignored.
    """
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    out_handler = logging.StreamHandler(stdout)
    out_handler.setLevel(level)
    out_handler.addFilter(LevelRangeFilter(logging.WARNING))
    out_handler.setFormatter(ConsoleFormatter(color=use_color(stdout, no_color)))
    logger.addHandler(out_handler)

    err_handler = logging.StreamHandler(stderr)
    err_handler.setLevel(max(level, logging.WARNING))
    err_handler.setFormatter(ConsoleFormatter(color=use_color(stderr, no_color)))
    logger.addHandler(err_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=3)
            file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
            file_handler.setFormatter(file_formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.debug("File logging disabled for %s: %s", log_file, e)

    return logger
