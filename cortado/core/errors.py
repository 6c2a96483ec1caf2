"""
Error taxonomy — what can go wrong, and where it stops the run.

Build-time errors abort before any action runs. Step failures never
propagate as exceptions out of the executor: adapters capture them in
Receipts, the executor classifies them as StepFailure instances and
records them on failed StepResults.
"""

from __future__ import annotations


class CortadoError(Exception):
    """Base class for all orchestrator errors."""


# ── Configuration / build (exit 2) ──────────────────────────────


class ConfigError(CortadoError):
    """Raised when the manifest or settings are missing or invalid."""


class BuildError(CortadoError):
    """Raised when a Plan cannot be built from the manifest."""


class DuplicateStep(BuildError):
    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Duplicate step id: {step_id}")


class UnknownDependency(BuildError):
    def __init__(self, step_id: str, dependency: str):
        self.step_id = step_id
        self.dependency = dependency
        super().__init__(f"Step '{step_id}' depends on unknown step '{dependency}'")


class CyclicDependency(BuildError):
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Dependency cycle detected: " + " -> ".join(cycle))


class TemplateError(BuildError):
    """A file template is missing substitutions or has leftover placeholders."""


# ── System state (exit 3) ───────────────────────────────────────


class ProbeError(CortadoError):
    """Raised when the current system state cannot be determined."""


# ── Step failures (exit 1) ──────────────────────────────────────


class StepFailure(CortadoError):
    kind = "permanent"

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


class TransientFailure(StepFailure):
    """Network timeout, package database lock — worth retrying."""

    kind = "transient"


class PermanentFailure(StepFailure):
    """Invalid input, permission denied — retrying will not help."""


class PostconditionFailure(StepFailure):
    """The action reported success but the system disagrees."""
