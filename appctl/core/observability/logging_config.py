"""
Logging setup for the appctl CLI.

``main.cli`` calls ``setup_logging`` once per invocation; every module logs
through ``logging.getLogger(__name__)``. Console records go to stderr so
stdout stays clean for ``ls-installed`` and ``--json`` output.

The console format grows with verbosity. Fan-out workers are named after
the command (``install_0``, ``install_1``, ...), so INFO and DEBUG lines
carry the thread name to tell interleaved apps apart.
"""

from __future__ import annotations

import logging
import sys

_TIME = "%H:%M:%S"

# Most verbose level first; the first threshold the level reaches wins
_CONSOLE_FORMATS = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s: %(message)s"),
    (logging.INFO, "%(asctime)s [%(threadName)s] %(message)s"),
    (logging.CRITICAL, "%(levelname)s: %(message)s"),
)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d %(message)s"


def parse_level(name: str | None, default: int = logging.WARNING) -> int:
    """Level name (any case) to its number; unknown names give ``default``."""
    level = logging.getLevelName(name.upper()) if name else None
    return level if isinstance(level, int) else default


def _console_handler(level: int) -> logging.Handler:
    fmt = next(f for threshold, f in _CONSOLE_FORMATS if level <= threshold)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(fmt, datefmt=None if "asctime" not in fmt else _TIME)
    )
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers with appctl's.

    Args:
        level: Console level name.
        log_file: Also append full-detail records to this file.
        log_file_level: Level for the file; defaults to ``level``.
    """
    console_level = parse_level(level)
    handlers = [_console_handler(console_level)]
    root_level = console_level

    if log_file:
        file_level = parse_level(log_file_level, default=console_level)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        handlers.append(file_handler)
        root_level = min(root_level, file_level)

    root = logging.getLogger()
    root.handlers[:] = handlers
    root.setLevel(root_level)
