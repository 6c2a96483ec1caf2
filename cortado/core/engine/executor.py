"""
Engine executor — runs a Plan step by step.

Flow per step:
    dependencies ok? → precondition → action (with retries) → postcondition

The executor never raises for a failing step. Failures are recorded on
the StepResult and contained to the failing step and its dependents;
independent branches keep running. Only a step marked
``halt_on_failure`` (or cancellation) stops the rest of the run.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

from cortado.adapters.registry import AdapterRegistry
from cortado.core.engine.dag import enforce_parallel_safety
from cortado.core.engine.planner import Plan
from cortado.core.engine.retry import RetryPolicy
from cortado.core.errors import (
    PermanentFailure,
    ProbeError,
    PostconditionFailure,
    StepFailure,
    TransientFailure,
)
from cortado.core.models.action import Receipt
from cortado.core.models.step import FailureReason, Predicate, Step, StepResult

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


@dataclass
class ExecutionReport:
    """Result of executing a plan."""

    results: list[StepResult] = field(default_factory=list)
    cancelled: bool = False
    halted_by: str | None = None

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def applied(self) -> int:
        return sum(1 for r in self.results if r.outcome == "applied")

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.outcome == "skipped")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome == "failed")

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.applied or self.skipped:
            return "partial"
        return "failed"

    def result_for(self, step_id: str) -> StepResult | None:
        for result in self.results:
            if result.step_id == step_id:
                return result
        return None

    def failures(self) -> list[StepResult]:
        return [r for r in self.results if not r.ok]

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "total": self.total,
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "halted_by": self.halted_by,
            "results": [r.model_dump(mode="json") for r in self.results],
        }


def failure_from_receipt(receipt: Receipt) -> StepFailure:
    """Turn a failed receipt into the matching StepFailure."""
    message = receipt.error or "action failed"
    if receipt.transient:
        return TransientFailure(message, stderr=receipt.stderr)
    return PermanentFailure(message, stderr=receipt.stderr)


def stderr_tail(stderr: str, lines: int = STDERR_TAIL_LINES) -> str:
    return "\n".join(stderr.strip().splitlines()[-lines:])


def evaluate(step_id: str, label: str, predicate: Predicate) -> bool | None:
    """Run a step predicate; anything it raises other than ProbeError means unknown."""
    try:
        return predicate()
    except ProbeError:
        raise
    except Exception:
        logger.warning("%s: %s raised, state unknown", step_id, label, exc_info=True)
        return None


class _Run:
    """Mutable state of one plan execution."""

    def __init__(
        self,
        plan: Plan,
        registry: AdapterRegistry,
        policy: RetryPolicy,
        sleep: Callable[[float], None] | None,
        cancel: threading.Event | None,
        jobs: int,
    ):
        self.plan = plan
        self.registry = registry
        self.policy = policy
        self.sleep = sleep
        self.cancel = cancel
        self.jobs = jobs
        self.results: dict[str, StepResult] = {}
        self.halted_by: str | None = None

    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def wait(self, delay: float) -> bool:
        """Sleep through a backoff delay; False if cancelled meanwhile."""
        if self.sleep is not None:
            self.sleep(delay)
        elif self.cancel is not None:
            self.cancel.wait(delay)
        else:
            time.sleep(delay)
        return not self.cancelled()

    def record(self, result: StepResult) -> None:
        self.results[result.step_id] = result
        marker = {"applied": "✓", "skipped": "⊘", "failed": "✗"}[result.outcome]
        if result.ok:
            logger.info("%s %s → %s", marker, result.step_id, result.outcome)
        else:
            logger.error(
                "%s %s → %s (%s): %s",
                marker,
                result.step_id,
                result.outcome,
                result.reason.value if result.reason else "",
                result.error,
            )

    def failed_dependency(self, step: Step) -> str | None:
        for dep in step.depends_on:
            if not self.results[dep].ok:
                return dep
        return None

    def deps_ok(self, step: Step) -> bool:
        return all(dep in self.results and self.results[dep].ok for dep in step.depends_on)

    # ── Scheduling ──────────────────────────────────────────────

    def execute(self) -> ExecutionReport:
        pending = list(self.plan.steps)
        pool = ThreadPoolExecutor(max_workers=self.jobs) if self.jobs > 1 else None

        try:
            while pending:
                step = pending[0]

                if self.cancelled():
                    for s in pending:
                        self.record(StepResult.failed(s, FailureReason.CANCELLED, "run cancelled"))
                    break

                if self.halted_by is not None:
                    for s in pending:
                        self.record(StepResult.failed(
                            s, FailureReason.HALTED, f"run halted after {self.halted_by} failed"
                        ))
                    break

                dep = self.failed_dependency(step)
                if dep is not None:
                    pending.pop(0)
                    self.record(StepResult.failed(
                        step, FailureReason.DEPENDENCY_FAILED, f"dependency {dep} failed"
                    ))
                    continue

                ready = [s for s in pending if self.deps_ok(s)]
                batch = enforce_parallel_safety(ready, self.jobs) if pool else [step]
                for s in batch:
                    pending.remove(s)

                if len(batch) == 1:
                    outcomes = [self.run_step(step)]
                else:
                    logger.info("Running %d steps in parallel", len(batch))
                    outcomes = list(pool.map(self.run_step, batch))

                for s, result in zip(batch, outcomes):
                    self.record(result)
                    if not result.ok and s.halt_on_failure and self.halted_by is None:
                        self.halted_by = s.id
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

        return ExecutionReport(
            results=[self.results[s.id] for s in self.plan.steps if s.id in self.results],
            cancelled=self.cancelled(),
            halted_by=self.halted_by,
        )

    # ── One step ────────────────────────────────────────────────

    def run_step(self, step: Step) -> StepResult:
        if evaluate(step.id, "precondition", step.precondition) is True:
            logger.debug("%s already satisfied", step.id)
            return StepResult.skipped(step)

        start = time.monotonic()
        delays: list[float] = []
        attempt = 0

        def elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        while True:
            if self.cancelled():
                return StepResult.failed(
                    step, FailureReason.CANCELLED, "run cancelled",
                    attempts=attempt, delays=delays, duration_ms=elapsed(),
                )

            attempt += 1
            logger.info("→ %s (attempt %d): %s", step.id, attempt, step.description)
            receipt = self.registry.execute_action(step.action, attempt=attempt)

            if receipt.ok:
                if evaluate(step.id, "postcondition", step.check_postcondition) is True:
                    return StepResult.applied(
                        step, attempt, delays=delays, duration_ms=elapsed()
                    )
                failure = PostconditionFailure(
                    f"{step.description}: action succeeded but the desired state is not present"
                )
                return StepResult.failed(
                    step, FailureReason.POSTCONDITION_NOT_MET, str(failure),
                    attempts=attempt, delays=delays, duration_ms=elapsed(),
                )

            failure = failure_from_receipt(receipt)
            transient = isinstance(failure, TransientFailure)

            if self.policy.should_retry(attempt, transient, step.retryable):
                delay = self.policy.next_delay(attempt, delays[-1] if delays else 0.0)
                logger.warning(
                    "%s failed transiently (attempt %d/%d), retrying in %.1fs: %s",
                    step.id, attempt, self.policy.max_attempts, delay, failure,
                )
                delays.append(delay)
                if not self.wait(delay):
                    return StepResult.failed(
                        step, FailureReason.CANCELLED, f"run cancelled while retrying: {failure}",
                        stderr_tail=stderr_tail(failure.stderr),
                        attempts=attempt, delays=delays, duration_ms=elapsed(),
                    )
                continue

            reason = (
                FailureReason.TRANSIENT_EXHAUSTED
                if transient and step.retryable
                else FailureReason.ACTION_FAILED
            )
            return StepResult.failed(
                step, reason, str(failure),
                stderr_tail=stderr_tail(failure.stderr),
                attempts=attempt, delays=delays, duration_ms=elapsed(),
            )


def execute_plan(
    plan: Plan,
    registry: AdapterRegistry,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] | None = None,
    cancel: threading.Event | None = None,
    jobs: int = 1,
) -> ExecutionReport:
    """Execute every step of a plan through the adapter registry.

    Args:
        plan: The ordered plan.
        registry: Adapter registry for dispatch.
        policy: Retry policy for transient failures.
        sleep: Backoff sleep; defaults to waiting on ``cancel``.
        cancel: Set to stop scheduling further steps.
        jobs: Upper bound on concurrently running parallel-safe steps.

    Returns:
        ExecutionReport with one StepResult per step, in plan order.
    """
    return _Run(plan, registry, policy or RetryPolicy(), sleep, cancel, max(jobs, 1)).execute()
