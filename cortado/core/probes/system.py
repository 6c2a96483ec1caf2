"""
Probes — host preflight.

Checks that the machine is something we know how to bootstrap: a
pacman-based distribution with the tools the adapters shell out to.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from cortado.adapters.shell.command import CommandRunner
from cortado.core.errors import ProbeError

PACMAN_DISTROS = frozenset({
    "arch", "endeavouros", "manjaro", "garuda", "artix",
    "arcolinux", "cachyos", "omarchy",
})

REQUIRED_TOOLS = ("pacman", "systemctl", "getent")


def read_os_release(path: Path = Path("/etc/os-release")) -> dict[str, str]:
    """Parse os-release(5) into a dict ({} when unreadable)."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    data: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        data[key] = value.strip().strip('"').strip("'")
    return data


def is_pacman_system(os_release: dict[str, str]) -> bool:
    ids = {os_release.get("ID", "")} | set(os_release.get("ID_LIKE", "").split())
    return bool(ids & PACMAN_DISTROS)


def missing_tools(names: tuple[str, ...] | list[str] = REQUIRED_TOOLS) -> list[str]:
    return [name for name in names if shutil.which(name) is None]


def preflight(
    os_release_path: Path = Path("/etc/os-release"),
    tools: tuple[str, ...] | list[str] = REQUIRED_TOOLS,
) -> dict[str, str]:
    """Raise ProbeError unless the host can be bootstrapped.

    Returns the parsed os-release on success.
    """
    os_release = read_os_release(os_release_path)
    if not os_release:
        raise ProbeError(f"{os_release_path} missing or unreadable")
    if not is_pacman_system(os_release):
        raise ProbeError(
            f"Not a pacman-based system (ID={os_release.get('ID', 'unknown')})"
        )
    missing = missing_tools(tools)
    if missing:
        raise ProbeError("Missing required command(s): " + ", ".join(missing))
    return os_release


def ensure_privileges(runner: CommandRunner) -> None:
    """Raise ProbeError unless privileged commands can run unattended.

    Commands run in their own session without a terminal, so sudo can
    never prompt: we need root or non-interactive sudo.
    """
    if runner.is_root:
        return
    result = runner.run(["sudo", "-n", "true"], timeout=10)
    if result.missing:
        raise ProbeError("Not running as root and sudo is not installed")
    if not result.ok:
        raise ProbeError("sudo requires a password; run 'sudo cortado apply' instead")
