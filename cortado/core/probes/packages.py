"""
Probes — package database queries (pacman).

Read-only. ``pacman -Q`` exits 0 when a package is installed and 1
when it is not; anything else (database locked, pacman missing,
timeout) is reported as unknown.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from cortado.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)

_QUERY_TIMEOUT = 15

SYNC_DB_DIR = Path("/var/lib/pacman/sync")


def is_package_installed(runner: CommandRunner, name: str) -> bool | None:
    """Whether ``name`` is installed locally (None = unknown)."""
    result = runner.run(["pacman", "-Q", name], timeout=_QUERY_TIMEOUT)
    if result.returncode == 0:
        return True
    if result.returncode == 1:
        return False
    logger.debug("Package query for %s inconclusive: %s", name, result.error)
    return None


def packages_installed(runner: CommandRunner, names: list[str]) -> bool | None:
    """Whether every package in ``names`` is installed.

    A single definite "no" wins over unknowns, so the caller runs the
    step either way.
    """
    unknown = False
    for name in names:
        state = is_package_installed(runner, name)
        if state is False:
            return False
        if state is None:
            unknown = True
    return None if unknown else True


def package_available(runner: CommandRunner, name: str) -> bool:
    """Whether the sync databases know about ``name``."""
    return runner.run(["pacman", "-Si", name], timeout=_QUERY_TIMEOUT).ok


def available_packages_installed(runner: CommandRunner, names: list[str]) -> bool | None:
    """Like ``packages_installed``, ignoring packages the sync db does not know.

    Best-effort groups are satisfied once everything installable is
    installed; only missing packages are looked up with ``-Si``.
    """
    unknown = False
    for name in names:
        state = is_package_installed(runner, name)
        if state is True:
            continue
        if not package_available(runner, name):
            logger.debug("Ignoring %s: not in the sync databases", name)
            continue
        if state is False:
            return False
        unknown = True
    return None if unknown else True


def sync_db_fresh(
    max_age: float,
    db_dir: Path | None = None,
    clock: Callable[[], float] = time.time,
) -> bool:
    """Whether every sync database was refreshed within ``max_age`` seconds."""
    mtimes = [db.stat().st_mtime for db in (db_dir or SYNC_DB_DIR).glob("*.db")]
    return bool(mtimes) and clock() - min(mtimes) <= max_age
