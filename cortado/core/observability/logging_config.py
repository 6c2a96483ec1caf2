"""
Logging setup for the cortado CLI.

``setup_logging`` runs once from the click group callback; modules log
through ``logging.getLogger(__name__)``. The console level comes from
``--debug`` / ``-v`` / ``-q``, then ``CORTADO_LOG_LEVEL``, then WARNING.
``CORTADO_LOG_FILE`` adds a file handler so a bootstrap run can be
reviewed afterwards, at ``CORTADO_LOG_FILE_LEVEL`` if given.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Mapping

LEVEL_ENV = "CORTADO_LOG_LEVEL"
FILE_ENV = "CORTADO_LOG_FILE"
FILE_LEVEL_ENV = "CORTADO_LOG_FILE_LEVEL"

_DETAILED = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s"

# (ceiling level, format, datefmt); first match wins
_CONSOLE_FORMATS = (
    (logging.DEBUG, _DETAILED, "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)
_FILE_FORMAT = (_DETAILED, "%Y-%m-%d %H:%M:%S")


def resolve_level(
    verbose: bool = False,
    quiet: bool = False,
    debug: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if environ is None else environ
    return env.get(LEVEL_ENV, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root handlers with a stderr handler and an optional file.

    Args:
        level: Console level name. Unknown names mean WARNING.
        log_file: Path of a log file to append to. Parent directories
            are created.
        log_file_level: Level for the file; defaults to ``level``.
    """
    console_level = _parse_level(level)
    fmt, datefmt = next(
        (fmt, datefmt) for ceiling, fmt, datefmt in _CONSOLE_FORMATS if console_level <= ceiling
    )
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(*_FILE_FORMAT))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
