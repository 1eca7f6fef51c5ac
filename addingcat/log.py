"""Logging setup shared by the app and its stores.

Loggers live under the ``addingcat`` namespace. Debug output is enabled by
setting ADDINGCAT_DEBUG=1; in that mode messages are also written to
~/.addingcat_debug.log because Textual captures stdout/stderr while running.
"""
import logging
import os
import sys
from pathlib import Path

DEBUG_LOG_FILE = Path.home() / ".addingcat_debug.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(debug: bool = None) -> logging.Logger:
    """Install handlers on the ``addingcat`` root logger (once)."""
    if debug is None:
        debug = bool(os.getenv("ADDINGCAT_DEBUG"))

    logger = logging.getLogger("addingcat")
    if logger.handlers:
        return logger

    level = logging.DEBUG if debug else logging.WARNING
    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT)

    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(level)
    stream.setFormatter(fmt)
    logger.addHandler(stream)

    if debug:
        try:
            fh = logging.FileHandler(DEBUG_LOG_FILE, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            logger.addHandler(fh)
        except OSError:
            logger.warning("Could not open debug log file %s", DEBUG_LOG_FILE)

    return logger
