"""
Reporter — turns an ExecutionReport into a summary and an exit code.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from cortado.core.engine.executor import ExecutionReport
from cortado.core.models.step import StepResult

EXIT_OK = 0
EXIT_STEP_FAILED = 1
EXIT_BUILD_ERROR = 2
EXIT_PROBE_ERROR = 3


@dataclass
class Failure:
    step_id: str
    reason: str
    error: str
    stderr_tail: str = ""


@dataclass
class Summary:
    """Counts per outcome plus the failures in plan order."""

    applied: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[Failure] = field(default_factory=list)
    exit_code: int = EXIT_OK

    @property
    def total(self) -> int:
        return self.applied + self.skipped + self.failed

    def headline(self) -> str:
        return f"{self.applied} applied, {self.skipped} skipped, {self.failed} failed"

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "exit_code": self.exit_code,
            "failures": [vars(f) for f in self.failures],
        }


def exit_code_for(report: ExecutionReport) -> int:
    return EXIT_OK if report.all_ok else EXIT_STEP_FAILED


def summarize(report: ExecutionReport) -> Summary:
    return Summary(
        applied=report.applied,
        skipped=report.skipped,
        failed=report.failed,
        failures=[
            Failure(
                step_id=r.step_id,
                reason=r.reason.value if r.reason else "",
                error=r.error or "",
                stderr_tail=r.stderr_tail,
            )
            for r in report.failures()
        ],
        exit_code=exit_code_for(report),
    )


def format_step_line(result: StepResult) -> str:
    """One line per step, e.g. ``✓ service:docker  applied (2 attempts)``."""
    if result.outcome == "applied":
        detail = "applied"
        if result.attempts > 1:
            detail += f" ({result.attempts} attempts)"
        return f"✓ {result.step_id:<32} {detail}"
    if result.outcome == "skipped":
        return f"⊘ {result.step_id:<32} skipped (already satisfied)"
    reason = result.reason.value if result.reason else "failed"
    return f"✗ {result.step_id:<32} {reason}: {result.error or ''}"
