"""
Apply use case — preflight, build the plan, execute it, summarize.

The full vertical slice from manifest to exit code. Build and probe
errors stop the run before any action executes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from cortado.adapters.registry import AdapterRegistry
from cortado.adapters.shell.command import CommandRunner
from cortado.core.config.templates import TEMPLATES_DIR
from cortado.core.engine.executor import ExecutionReport, execute_plan
from cortado.core.engine.planner import Plan
from cortado.core.engine.report import EXIT_OK, EXIT_PROBE_ERROR, Summary, summarize
from cortado.core.engine.retry import RetryPolicy
from cortado.core.errors import ProbeError
from cortado.core.models.target import TargetUser
from cortado.core.probes.system import ensure_privileges, preflight
from cortado.core.use_cases.plan import build_registry, plan_bootstrap

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of applying the manifest."""

    plan: Plan | None = None
    report: ExecutionReport | None = None
    summary: Summary | None = None
    error: str | None = None
    exit_code: int = EXIT_OK

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error, "exit_code": self.exit_code}
        result: dict = {"exit_code": self.exit_code}
        if self.summary:
            result["summary"] = self.summary.to_dict()
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def apply_bootstrap(
    manifest_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    runner: CommandRunner | None = None,
    registry: AdapterRegistry | None = None,
    run_preflight: bool = True,
    jobs: int = 1,
    cancel: threading.Event | None = None,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] | None = None,
    target: TargetUser | None = None,
    templates_dir: Path = TEMPLATES_DIR,
) -> ApplyResult:
    """Bring the system to the state the manifest describes.

    Args:
        manifest_path: Explicit manifest; None = auto-detect.
        environ: Environment to read flags and the user from.
        runner: Command runner shared by probes and adapters.
        registry: Pre-configured adapter registry (tests use mocks).
        run_preflight: Check OS and required tools first.
        jobs: Upper bound on concurrently running parallel-safe steps.
        cancel: Set (e.g. on SIGINT) to stop scheduling more steps.
        policy: Retry policy; defaults to the configured one.
        sleep: Backoff sleep override.
        target: Pre-resolved target user.
        templates_dir: Where bundled templates live.

    Returns:
        ApplyResult with the execution report and exit code.
    """
    result = ApplyResult()
    runner = runner or CommandRunner()

    if run_preflight:
        try:
            os_release = preflight()
            ensure_privileges(runner)
            logger.info("Preflight OK: %s", os_release.get("PRETTY_NAME", os_release.get("ID")))
        except ProbeError as e:
            logger.error("Preflight failed: %s", e)
            result.error = str(e)
            result.exit_code = EXIT_PROBE_ERROR
            return result

    planned = plan_bootstrap(
        manifest_path=manifest_path,
        environ=environ,
        runner=runner,
        target=target,
        jobs=jobs,
        templates_dir=templates_dir,
    )
    if planned.error:
        result.error = planned.error
        result.exit_code = planned.exit_code
        return result

    assert planned.plan is not None and planned.config is not None
    result.plan = planned.plan
    config = planned.config

    if registry is None:
        registry = build_registry(runner, config.target, cancel=cancel)

    try:
        report = execute_plan(
            planned.plan,
            registry,
            policy=policy or config.retry,
            sleep=sleep,
            cancel=cancel,
            jobs=config.jobs,
        )
    except ProbeError as e:
        logger.error("Cannot determine system state: %s", e)
        result.error = str(e)
        result.exit_code = EXIT_PROBE_ERROR
        return result

    result.report = report
    result.summary = summarize(report)
    result.exit_code = result.summary.exit_code
    logger.info("Apply finished: %s", result.summary.headline())
    return result
