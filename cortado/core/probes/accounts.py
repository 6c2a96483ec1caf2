"""
Probes — users and groups.

Resolves the target user from the invoking environment and answers
group-membership questions through ``getent``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

from cortado.adapters.shell.command import CommandRunner
from cortado.core.errors import ProbeError
from cortado.core.models.target import TargetUser

logger = logging.getLogger(__name__)

_QUERY_TIMEOUT = 5


def _getent(runner: CommandRunner, database: str, key: str) -> list[str] | None:
    """Return the colon-split entry, [] when absent, None when unknown."""
    result = runner.run(["getent", database, key], timeout=_QUERY_TIMEOUT)
    if result.returncode == 2:
        return []
    if not result.ok:
        return None
    line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
    return line.split(":") if line else []


def group_exists(runner: CommandRunner, group: str) -> bool | None:
    entry = _getent(runner, "group", group)
    return None if entry is None else bool(entry)


def group_contains_user(runner: CommandRunner, group: str, user: str) -> bool | None:
    """Whether ``user`` is a supplementary member of ``group``."""
    entry = _getent(runner, "group", group)
    if entry is None:
        return None
    if not entry or len(entry) < 4:
        return False
    members = [m for m in entry[3].split(",") if m]
    return user in members


def resolve_target_user(environ: Mapping[str, str], runner: CommandRunner) -> TargetUser:
    """Determine the login user whose home receives user configs.

    ``SUDO_USER`` wins over ``USER`` so that ``sudo cortado apply``
    still writes into the real user's home.

    Raises:
        ProbeError: If no user can be determined or it has no home.
    """
    name = environ.get("SUDO_USER") or environ.get("USER") or ""
    if not name:
        raise ProbeError("Could not determine target user (SUDO_USER and USER are unset)")

    entry = _getent(runner, "passwd", name)
    if entry is None:
        raise ProbeError(f"Could not query passwd database for '{name}'")
    if len(entry) < 6:
        raise ProbeError(f"User '{name}' not found in passwd database")

    home = Path(entry[5])
    if not home.is_dir():
        raise ProbeError(f"Home directory for '{name}' does not exist: {home}")

    try:
        uid, gid = int(entry[2]), int(entry[3])
    except ValueError:
        uid = gid = -1

    logger.info("Target user: %s (%s)", name, home)
    return TargetUser(name=name, home=home, uid=uid, gid=gid)
