"""
Plan use case — load the manifest, resolve settings and build the plan.

Shared by ``cortado plan`` and ``cortado apply``. With ``check`` the
preconditions are evaluated (read-only) so each step can be reported
as "would skip" or "would run".
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from cortado.adapters.registry import AdapterRegistry
from cortado.adapters.shell.command import CommandAdapter, CommandRunner
from cortado.adapters.shell.filesystem import FilesystemAdapter
from cortado.adapters.system.accounts import AccountsAdapter
from cortado.adapters.system.network import NetworkAdapter
from cortado.adapters.system.pacman import PacmanAdapter
from cortado.adapters.system.systemd import SystemdAdapter
from cortado.adapters.vcs.git import GitAdapter
from cortado.core.config.loader import load_manifest, resolve_manifest_path
from cortado.core.config.settings import BootstrapConfig, load_settings
from cortado.core.config.templates import TEMPLATES_DIR
from cortado.core.engine.executor import evaluate
from cortado.core.engine.planner import Plan, build_plan
from cortado.core.engine.report import EXIT_BUILD_ERROR, EXIT_OK, EXIT_PROBE_ERROR
from cortado.core.errors import BuildError, ConfigError, ProbeError
from cortado.core.models.manifest import Manifest
from cortado.core.models.target import TargetUser

logger = logging.getLogger(__name__)

WOULD_SKIP = "would skip"
WOULD_RUN = "would run"
UNKNOWN = "unknown"


@dataclass
class PlanResult:
    """Result of building (and optionally checking) a plan."""

    plan: Plan | None = None
    manifest: Manifest | None = None
    config: BootstrapConfig | None = None
    manifest_path: Path | None = None
    checks: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    exit_code: int = EXIT_OK

    @property
    def pending(self) -> int:
        return sum(1 for state in self.checks.values() if state != WOULD_SKIP)

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error, "exit_code": self.exit_code}
        result: dict = {
            "manifest": str(self.manifest_path),
            "target_user": self.config.target.name if self.config else None,
            "flags": self.config.flags if self.config else {},
        }
        if self.plan is not None:
            result["plan"] = self.plan.to_dict()
        if self.checks:
            result["checks"] = self.checks
        return result


def build_registry(
    runner: CommandRunner,
    target: TargetUser,
    cancel: threading.Event | None = None,
) -> AdapterRegistry:
    """Registry with every adapter a bootstrap plan can dispatch to."""
    registry = AdapterRegistry()
    registry.register(NetworkAdapter(runner, cancel=cancel))
    registry.register(PacmanAdapter(runner))
    registry.register(SystemdAdapter(runner))
    registry.register(AccountsAdapter(runner))
    registry.register(FilesystemAdapter(runner))
    registry.register(GitAdapter(runner, target))
    registry.register(CommandAdapter(runner, target))
    return registry


def check_plan(plan: Plan) -> dict[str, str]:
    """Evaluate every precondition without acting on any of them."""
    checks: dict[str, str] = {}
    for step in plan:
        state = evaluate(step.id, "precondition", step.precondition)
        if state is True:
            checks[step.id] = WOULD_SKIP
        elif state is False:
            checks[step.id] = WOULD_RUN
        else:
            checks[step.id] = UNKNOWN
    return checks


def plan_bootstrap(
    manifest_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    runner: CommandRunner | None = None,
    check: bool = False,
    target: TargetUser | None = None,
    jobs: int = 1,
    templates_dir: Path = TEMPLATES_DIR,
) -> PlanResult:
    """Build the plan for the current system.

    Args:
        manifest_path: Explicit manifest; None = auto-detect.
        environ: Environment to read flags and the user from.
        runner: Command runner for probes.
        check: Also evaluate preconditions.
        target: Pre-resolved target user (skips SUDO_USER/USER lookup).
        jobs: Parallelism recorded on the resulting config.
        templates_dir: Where bundled templates live.

    Returns:
        PlanResult; on failure ``error`` and ``exit_code`` are set.
    """
    result = PlanResult()
    environ = os.environ if environ is None else environ
    runner = runner or CommandRunner()

    try:
        result.manifest_path = resolve_manifest_path(manifest_path)
        result.manifest = load_manifest(result.manifest_path)
        result.config = load_settings(result.manifest, environ, runner, target=target, jobs=jobs)
        result.plan = build_plan(result.manifest, result.config, runner, templates_dir)
        if check:
            result.checks = check_plan(result.plan)
    except (ConfigError, BuildError) as e:
        logger.error("Cannot build plan: %s", e)
        result.error = str(e)
        result.exit_code = EXIT_BUILD_ERROR
    except ProbeError as e:
        logger.error("Cannot determine system state: %s", e)
        result.error = str(e)
        result.exit_code = EXIT_PROBE_ERROR

    return result
