"""
Process-wide logging setup, done once on first import.

Every record goes to a timestamped file under ``~/logs_mono_live/``; INFO
and above are echoed to stdout.  Per-frame events (drops, replaced frames)
are DEBUG, so they only show up in the file.

    from mono_live.logger import get_logger
    log = get_logger("capture")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

_LOG_DIR = Path.home() / "logs_mono_live"
_LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = _LOG_DIR / f"{datetime.now():%Y-%m-%d_%H-%M-%S}.log"

_formatter = logging.Formatter(
    "%(asctime)s [%(levelname)-5s] %(name)-20s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(_formatter)
    return handler


_root = logging.getLogger()
_root.setLevel(logging.DEBUG)
# An embedding application (or pytest) may already own the root handlers.
if not _root.handlers:
    _root.addHandler(_handler(logging.FileHandler(str(LOG_FILE), encoding="utf-8"), logging.DEBUG))
    _root.addHandler(_handler(logging.StreamHandler(sys.stdout), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """Logger for one pipeline part, named ``mono_live.<name>``."""
    return logging.getLogger(f"mono_live.{name}")


log = get_logger("app")
log.debug("Log file: %s", LOG_FILE)
