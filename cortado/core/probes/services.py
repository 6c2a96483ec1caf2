"""
Probes — service manager queries (systemd).

Read-only: ``systemctl is-enabled`` / ``is-active`` never change
unit state.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable

from cortado.adapters.shell.command import CommandRunner

_QUERY_TIMEOUT = 5

# is-enabled states that mean "will start at boot"
_ENABLED_STATES = {"enabled", "enabled-runtime", "static", "indirect", "alias"}
_DISABLED_STATES = {"disabled", "masked", "masked-runtime", "linked", "linked-runtime"}


def is_service_enabled(runner: CommandRunner, name: str) -> bool | None:
    result = runner.run(["systemctl", "is-enabled", name], timeout=_QUERY_TIMEOUT)
    state = result.stdout.strip()
    if state in _ENABLED_STATES:
        return True
    if state in _DISABLED_STATES or state == "not-found":
        return False
    return None


def is_service_active(runner: CommandRunner, name: str) -> bool | None:
    result = runner.run(["systemctl", "is-active", name], timeout=_QUERY_TIMEOUT)
    state = result.stdout.strip()
    if state == "active":
        return True
    if state in ("inactive", "failed", "activating", "deactivating"):
        return False
    return None


def is_service_active_enabled(
    runner: CommandRunner,
    name: str,
    require_active: bool = True,
) -> bool | None:
    """Whether ``name`` is enabled and (optionally) running."""
    enabled = is_service_enabled(runner, name)
    if enabled is not True or not require_active:
        return enabled
    return is_service_active(runner, name)


def service_unit_exists(runner: CommandRunner, name: str) -> bool | None:
    unit = name if "." in name else f"{name}.service"
    result = runner.run(
        ["systemctl", "list-unit-files", unit, "--no-legend"],
        timeout=_QUERY_TIMEOUT,
    )
    if not result.ok and result.returncode != 1:
        return None
    return any(line.split()[0] == unit for line in result.stdout.splitlines() if line.strip())


def started_after(
    runner: CommandRunner,
    name: str,
    paths: list[Path],
    clock: Callable[[], float] = time.time,
    monotonic: Callable[[], float] = time.monotonic,
) -> bool | None:
    """Whether ``name`` last (re)started after every existing path was modified.

    systemd reports the start on the monotonic clock; it is shifted onto
    the wall clock to compare with file mtimes.
    """
    result = runner.run(
        ["systemctl", "show", "-p", "ActiveEnterTimestampMonotonic", "--value", name],
        timeout=_QUERY_TIMEOUT,
    )
    if not result.ok:
        return None
    try:
        usec = int(result.stdout.strip())
    except ValueError:
        return None
    if usec == 0:
        return False
    started = clock() - (monotonic() - usec / 1_000_000)
    return all(p.stat().st_mtime <= started for p in paths if p.exists())


def unit_absent_or_running(runner: CommandRunner, name: str) -> bool | None:
    """True when there is nothing to start: no such unit, or it is up."""
    if service_unit_exists(runner, name) is False:
        return True
    return is_service_active_enabled(runner, name)
