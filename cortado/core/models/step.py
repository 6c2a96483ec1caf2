"""
Step model — a unit of desired state.

A Step pairs an Action (what to do) with the predicates that decide
whether it must run and whether it actually took effect. Steps are
immutable once the planner has built them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Literal, Optional

from pydantic import BaseModel, Field

from cortado.core.models.action import Action

# True = holds, False = does not hold, None = could not be determined.
Predicate = Callable[[], Optional[bool]]

Outcome = Literal["applied", "skipped", "failed"]


class FailureReason(str, Enum):
    ACTION_FAILED = "action_failed"
    TRANSIENT_EXHAUSTED = "transient_exhausted"
    POSTCONDITION_NOT_MET = "postcondition_not_met"
    DEPENDENCY_FAILED = "dependency_failed"
    HALTED = "halted"
    CANCELLED = "cancelled"


def never() -> Optional[bool]:
    """Predicate for steps that have no cheap "already done" check."""
    return False


@dataclass(frozen=True)
class Step:
    """A declarative unit of work.

    Attributes:
        id:              Unique, stable key (``service:docker``).
        description:     Human-readable summary for logs.
        action:          What to execute through the adapter registry.
        precondition:    If it returns True the step is skipped.
        postcondition:   Checked after the action; defaults to precondition.
        retryable:       Whether transient failures are retried.
        depends_on:      Step ids that must be Applied or Skipped first.
        parallel_safe:   May run concurrently with other parallel-safe steps.
        halt_on_failure: A failure stops scheduling of every unstarted step.
        kind:            Manifest section the step came from (``service``).
    """

    id: str
    description: str
    action: Action
    precondition: Predicate = never
    postcondition: Optional[Predicate] = None
    retryable: bool = False
    depends_on: tuple[str, ...] = ()
    parallel_safe: bool = False
    halt_on_failure: bool = False
    kind: str = ""

    def check_postcondition(self) -> Optional[bool]:
        probe = self.postcondition or self.precondition
        return probe()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "description": self.description,
            "action": self.action.describe(),
            "depends_on": list(self.depends_on),
            "retryable": self.retryable,
            "parallel_safe": self.parallel_safe,
            "halt_on_failure": self.halt_on_failure,
        }


class StepResult(BaseModel):
    """Outcome of one step within one run."""

    step_id: str
    description: str = ""
    outcome: Outcome
    reason: FailureReason | None = None
    error: str | None = None
    stderr_tail: str = ""
    attempts: int = 0
    delays: list[float] = Field(default_factory=list)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome != "failed"

    @classmethod
    def applied(cls, step: Step, attempts: int, **kwargs) -> StepResult:
        return cls(
            step_id=step.id,
            description=step.description,
            outcome="applied",
            attempts=attempts,
            **kwargs,
        )

    @classmethod
    def skipped(cls, step: Step) -> StepResult:
        return cls(step_id=step.id, description=step.description, outcome="skipped")

    @classmethod
    def failed(
        cls,
        step: Step,
        reason: FailureReason,
        error: str,
        **kwargs,
    ) -> StepResult:
        return cls(
            step_id=step.id,
            description=step.description,
            outcome="failed",
            reason=reason,
            error=error,
            **kwargs,
        )
