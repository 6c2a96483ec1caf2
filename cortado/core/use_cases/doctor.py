"""
Doctor use case — read-only health report of the host.

Runs the probes that ``apply`` depends on (OS, required tools, target
user, DNS, HTTP reachability, adapter backends) and aggregates them.
Nothing here changes the system.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from cortado.adapters.shell.command import CommandRunner
from cortado.core.config.loader import load_manifest
from cortado.core.errors import ConfigError, ProbeError
from cortado.core.probes.accounts import resolve_target_user
from cortado.core.probes.network import is_host_resolvable, is_url_reachable
from cortado.core.probes.system import (
    REQUIRED_TOOLS,
    is_pacman_system,
    missing_tools,
    read_os_release,
)
from cortado.core.use_cases.plan import build_registry

logger = logging.getLogger(__name__)

REACHABILITY_URLS = ("https://archlinux.org", "https://github.com")

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health of a single probed component."""

    name: str
    status: str = HEALTHY
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class DoctorReport:
    """Aggregate health: unhealthy if any component is, else degraded if any is."""

    components: list[ComponentHealth] = field(default_factory=list)

    @property
    def status(self) -> str:
        statuses = {c.status for c in self.components}
        if UNHEALTHY in statuses:
            return UNHEALTHY
        if DEGRADED in statuses:
            return DEGRADED
        return HEALTHY

    @property
    def ok(self) -> bool:
        return self.status != UNHEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "components": [c.to_dict() for c in self.components],
        }


def check_os(os_release_path: Path = Path("/etc/os-release")) -> ComponentHealth:
    os_release = read_os_release(os_release_path)
    if not os_release:
        return ComponentHealth("os", UNHEALTHY, f"{os_release_path} missing or unreadable")
    name = os_release.get("PRETTY_NAME", os_release.get("ID", "unknown"))
    if not is_pacman_system(os_release):
        return ComponentHealth("os", UNHEALTHY, f"{name} is not pacman-based", details=os_release)
    return ComponentHealth("os", HEALTHY, name)


def check_tools(tools: tuple[str, ...] = REQUIRED_TOOLS) -> ComponentHealth:
    missing = missing_tools(tools)
    if missing:
        return ComponentHealth("tools", UNHEALTHY, "missing: " + ", ".join(missing))
    return ComponentHealth("tools", HEALTHY, ", ".join(tools))


def check_target_user(environ: Mapping[str, str], runner: CommandRunner) -> ComponentHealth:
    try:
        target = resolve_target_user(environ, runner)
    except ProbeError as e:
        return ComponentHealth("target_user", UNHEALTHY, str(e))
    return ComponentHealth(
        "target_user",
        HEALTHY,
        f"{target.name} ({target.home})",
        details={"uid": target.uid, "gid": target.gid},
    )


def check_dns(runner: CommandRunner, hosts: list[str], timeout: float = 5) -> ComponentHealth:
    states = {host: is_host_resolvable(runner, host, timeout=timeout) for host in hosts}
    failing = [h for h, ok in states.items() if ok is not True]
    if not failing:
        return ComponentHealth("dns", HEALTHY, ", ".join(hosts))
    return ComponentHealth(
        "dns",
        DEGRADED,
        "not resolving: " + ", ".join(failing),
        details=dict(states),
    )


def check_http(
    urls: tuple[str, ...] = REACHABILITY_URLS,
    probe: Callable[[str], dict] = is_url_reachable,
) -> ComponentHealth:
    results = [probe(url) for url in urls]
    down = [r["url"] for r in results if not r["reachable"]]
    status = HEALTHY if not down else DEGRADED
    message = "all reachable" if not down else "unreachable: " + ", ".join(down)
    return ComponentHealth("http", status, message, details={"results": results})


def check_adapters(runner: CommandRunner, environ: Mapping[str, str]) -> ComponentHealth:
    try:
        target = resolve_target_user(environ, runner)
    except ProbeError:
        return ComponentHealth("adapters", DEGRADED, "skipped: no target user")
    status = build_registry(runner, target).adapter_status()
    unavailable = [name for name, s in status.items() if not s["available"]]
    if unavailable:
        return ComponentHealth(
            "adapters", DEGRADED, "unavailable: " + ", ".join(unavailable), details=status
        )
    return ComponentHealth("adapters", HEALTHY, f"{len(status)} available", details=status)


def run_doctor(
    manifest_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    runner: CommandRunner | None = None,
    http_probe: Callable[[str], dict] = is_url_reachable,
) -> DoctorReport:
    """Probe everything ``apply`` needs and report it."""
    environ = os.environ if environ is None else environ
    runner = runner or CommandRunner()
    report = DoctorReport()

    report.components.append(check_os())
    report.components.append(check_tools())
    report.components.append(check_target_user(environ, runner))

    try:
        hosts = load_manifest(manifest_path).network.hosts
    except ConfigError as e:
        report.components.append(ComponentHealth("manifest", UNHEALTHY, str(e)))
        hosts = []
    if hosts:
        report.components.append(check_dns(runner, hosts))

    report.components.append(check_http(probe=http_probe))
    report.components.append(check_adapters(runner, environ))

    logger.info("Doctor: %s", report.status)
    return report
